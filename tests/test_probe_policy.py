# tests/test_probe_policy.py

import pytest

from aeq_core.contract import compile_pattern
from aeq_core.errors import DriverConfigError
from aeq_core.probe_policy import ELLIPSIS, enforce_probe_policy
from aeq_core.schema import Probe, SchemaDefinition


def _schema(policy):
    return SchemaDefinition(schema_id="S", guidance_version="g", judge_contract=True, probe_policy=policy)


def test_library_probe_passes_even_when_disabled():
    probe = Probe(id="p1", text="For example, consider the weather.", category="Good")
    check = enforce_probe_policy(_schema({"GeneratedProbeMode": "disabled"}), probe, "disabled")

    assert check.probe is probe
    assert not check.blocked


def test_generated_probe_needs_allowed_category():
    schema = _schema({"AllowGeneratedFor": ["RunsThroughA"]})

    ok = enforce_probe_policy(schema, Probe(id=None, text="Does it work without A?", category="RunsThroughA"))
    assert ok.probe is not None and not ok.blocked

    blocked = enforce_probe_policy(schema, Probe(id=None, text="Say more.", category="NotClear"))
    assert blocked.probe is None
    assert blocked.reason == "category_not_allowed"


def test_disabled_at_any_layer_wins():
    probe = Probe(id=None, text="Anything else?", category="Good")
    allow = {"AllowGeneratedFor": ["Good"]}

    assert enforce_probe_policy(_schema(allow), probe, "disabled").reason == "generated_probes_disabled"
    schema_off = _schema(dict(allow, GeneratedProbeMode="disabled"))
    assert enforce_probe_policy(schema_off, probe, "allowlist").blocked


def test_hint_patterns_block():
    schema = _schema({"AllowGeneratedFor": ["Good"], "DisallowHintPatterns": [r"\bweather\b"]})

    assert enforce_probe_policy(schema, Probe(None, "What about, e.g. pricing?", "Good")).reason == "hint_pattern"
    assert enforce_probe_policy(schema, Probe(None, "Think of the weather.", "Good")).reason == "hint_pattern"


def test_long_probe_is_truncated_to_cap():
    schema = _schema({"AllowGeneratedFor": ["Good"], "MaxGeneratedChars": 20})
    check = enforce_probe_policy(schema, Probe(None, "x" * 50, "Good"))

    assert check.truncated
    assert len(check.probe.text) == 20
    assert check.probe.text.endswith(ELLIPSIS)


def test_none_probe_is_noop():
    check = enforce_probe_policy(_schema({}), None)
    assert check.probe is None and not check.blocked


def test_broken_hint_pattern_is_a_config_error():
    schema = _schema({"AllowGeneratedFor": ["RunsThroughA"], "DisallowHintPatterns": ["(unclosed"]})
    with pytest.raises(DriverConfigError):
        enforce_probe_policy(schema, Probe(id=None, text="Does it work without A?", category="RunsThroughA"))


def test_compile_pattern_keeps_lookbehind():
    assert compile_pattern(r"(?<=a)b").search("ab")
    assert compile_pattern(r"(?<!a)b").search("cb")
    assert compile_pattern(r"(?<n>\d+)").match("7").group("n") == "7"
