# tests/test_theta_engine.py

import math
import pytest

from aeq_core.schema import ScorePayload
from aeq_core.theta_engine import get_component, score_value, standard_error, update_theta


def test_update_moves_mean_by_step_times_score():
    theta = update_theta({}, "alt", 1.0, {})

    # θ mặc định {0, 1}, step 0.25
    assert theta["alt"]["mean"] == pytest.approx(0.25)
    assert theta["alt"]["var"] == pytest.approx(0.9)


def test_negative_score_lowers_mean_and_knobs_apply():
    scoring = {"theta": {"step": 0.5, "varDecay": 0.5, "minVar": 0.6}, "irt": {"a": 2.0}}
    theta = update_theta({"alt": {"mean": 1.0, "var": 1.0}}, "alt", ScorePayload(value=-0.5), scoring)

    assert theta["alt"]["mean"] == pytest.approx(0.5)
    # var * 0.5 = 0.5 nhưng không được dưới minVar
    assert theta["alt"]["var"] == pytest.approx(0.6)


def test_other_keys_untouched_and_input_not_mutated():
    before = {"a": {"mean": 0.3, "var": 0.8}, "b": {"mean": -1.0, "var": 0.7}}
    after = update_theta(before, "a", 2.0, {})

    assert after["b"] == {"mean": -1.0, "var": 0.7}
    assert before["a"] == {"mean": 0.3, "var": 0.8}


def test_scores_are_not_clamped():
    theta = update_theta({}, "bias", -2.5, {})
    assert theta["bias"]["mean"] == pytest.approx(-0.625)


def test_score_value_accepts_several_shapes():
    assert score_value({"value": 0.4}) == 0.4
    assert score_value(ScorePayload(value=1.5)) == 1.5
    assert score_value(float("nan")) == 0.0
    assert score_value("oops") == 0.0


def test_standard_error_is_sqrt_var():
    theta = {"x": {"mean": 0.0, "var": 0.64}}
    assert standard_error(theta, "x") == pytest.approx(0.8)
    assert math.isclose(standard_error({}, "missing"), 1.0)
    assert get_component({}, "missing") == {"mean": 0.0, "var": 1.0}
