# tests/test_numeric_driver.py

import random

import pytest

from aeq_core.drivers.numeric import (
    GenericNumericDriver,
    compute_error,
    credit_from_error,
    extract_number_with_regex,
    normalize_unit,
    read_judge_number,
)
from aeq_core.errors import DriverConfigError
from aeq_core.schema import ItemDefinition, SchemaDefinition, TurnInput

SCORING = {"target": 100, "mode": "log-error", "thresholds": {"full": 0.05}}


def _schema(driver_config=None, scoring=None):
    return SchemaDefinition(
        schema_id="NUM",
        guidance_version="n1",
        judge_contract=True,
        engine={"kind": "generic.numeric"},
        scoring_spec=SCORING if scoring is None else scoring,
        driver_config=driver_config or {},
    )


ITEM = ItemDefinition(item_id="NUM_1", schema_id="NUM", stem="Guess.")


def _run(judge, text="", schema=None, state=None):
    driver = GenericNumericDriver()
    schema = schema or _schema()
    turn = TurnInput(
        schema=schema,
        item=ITEM,
        state=state if state is not None else driver.init_state(schema, ITEM),
        judge=driver.parse_judge_output(judge, schema, ITEM),
        user_text=text,
        policy={},
        scoring=schema.scoring_spec,
        rng=random.Random(0),
    )
    return driver.apply_turn(turn)


def test_exact_value_gets_full_credit_and_completes():
    d = _run(100)
    assert d.credited == 1.0
    assert d.completed
    assert d.budget_signal == "productive"
    assert d.probe.id == "done_1"


def test_within_log_threshold_is_full_credit():
    d = _run({"value": 112})
    assert d.credited == 1.0
    assert d.telemetry["error"] == pytest.approx(0.0492, abs=1e-3)
    assert d.completed


def test_far_off_gets_zero_and_directional_probe():
    high = _run(200)
    assert high.credited == 0.0
    assert not high.completed
    assert high.budget_signal == "unproductive"
    assert high.probe.id == "high_1"

    low = _run(20)
    assert low.probe.id == "low_1"


def test_regex_fallback_when_judge_has_no_value():
    d = _run(None, text="I'd say roughly 104")
    assert d.telemetry["source"] == "regex"
    assert d.credited == 1.0


def test_judge_only_strategy_reports_unreadable():
    schema = _schema({"Extraction": {"strategy": "aj"}})
    d = _run(None, text="maybe 100", schema=schema)

    assert d.error_code == "NO_NUMERIC_VALUE"
    assert d.probe.id == "fmt_1"
    assert d.budget_signal == "unproductive"
    assert d.new_state["attempts"] == 1


def test_units_are_normalized():
    schema = _schema({"Units": {"table": {"m": 1, "km": 1000}, "aliases": {"kilometers": "km"}}})
    d = _run({"value": 0.1, "unit": "Kilometers"}, schema=schema)
    assert d.telemetry["normalized_value"] == pytest.approx(100.0)


def test_missing_target_or_mode_is_config_error():
    with pytest.raises(DriverConfigError):
        _run(100, schema=_schema(scoring={"mode": "abs"}))
    with pytest.raises(DriverConfigError):
        _run(100, schema=_schema(scoring={"target": 1}))
    with pytest.raises(DriverConfigError):
        _run(100, schema=_schema(scoring={"target": 1, "mode": "ratio"}))


def test_best_error_tracks_minimum_across_turns():
    first = _run(200)
    second = _run(150, state=first.new_state)
    third = _run(300, state=second.new_state)

    assert third.new_state["attempts"] == 3
    assert third.new_state["best_error"] == pytest.approx(second.telemetry["error"])


def test_compute_error_fallbacks():
    assert compute_error(5, 0, "percent") == (5, 1)
    assert compute_error(-10, 100, "log-error") == (110, -1)
    err, sign = compute_error(50, 100, "percent")
    assert err == pytest.approx(0.5) and sign == -1


def test_credit_shapes():
    assert credit_from_error(0.1, {"thresholds": {"full": 0.05, "partial": 0.2, "partialCredit": 0.4}}) == 0.4
    assert credit_from_error(0.075, {"thresholds": {"full": 0.05}}) == pytest.approx(0.5)
    assert credit_from_error(5, {"ramp": {"tolerance": 10}}) == pytest.approx(0.5)
    assert credit_from_error(0, {"gaussian": {"sigma": 1}}) == 1.0
    assert credit_from_error(0.5, {}) == pytest.approx(0.75)


def test_readers_and_regex_helpers():
    assert read_judge_number({"NumericAnswer": {"value": "1,200"}}).value == 1200
    assert read_judge_number(True) is None
    assert read_judge_number({"note": "none"}) is None

    assert extract_number_with_regex("between 10 and 30 km", {"pick": "max"}) == (30.0, "km")
    assert extract_number_with_regex("between 10 and 30", {"pick": "first"})[0] == 10.0
    assert extract_number_with_regex("no digits", {}) is None
    assert normalize_unit({"table": {"cm": 0.01}}, 250, "cm") == pytest.approx(2.5)
    assert normalize_unit({"table": {"cm": 0.01}}, 250, "furlong") == 250


def test_migrate_state_accepts_legacy_keys_and_is_idempotent():
    driver = GenericNumericDriver()
    migrated = driver.migrate_state({"attempts": 2, "bestError": 0.3, "lastValue": "40"})
    assert migrated == {"attempts": 2, "best_error": 0.3, "last_value": 40.0, "completed": False}
    assert driver.migrate_state(migrated) == migrated
    assert driver.migrate_state(None)["attempts"] == 0


def test_regex_accepts_js_named_groups_and_rejects_broken_patterns():
    assert extract_number_with_regex("about 42 km", {"regex": r"(?<value>\d+)\s*(?<unit>km)?"}) == (42.0, "km")
    with pytest.raises(DriverConfigError):
        extract_number_with_regex("42", {"regex": "(unclosed"})
