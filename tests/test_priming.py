# tests/test_priming.py

from aeq_core import new_session
from aeq_core.drivers import AlternativeExplanationDriver
from aeq_core.priming import ensure_judge_primed, is_primed
from aeq_core.schema import ItemDefinition, SchemaDefinition, SessionSnapshot

from conftest import AEG_ITEM, AEG_SCHEMA

SCHEMA = SchemaDefinition.from_dict(AEG_SCHEMA)
ITEM = ItemDefinition.from_dict(AEG_ITEM)
DRIVER = AlternativeExplanationDriver()


def test_no_transport_marks_optimistically():
    s = new_session("s1")
    result = ensure_judge_primed(s, SCHEMA, DRIVER, ITEM)

    assert result.primed and result.reason == "transport_skipped"
    assert result.payload.system_guidance == "Classify the answer."
    assert is_primed(s, DRIVER.id, "g1")

    again = ensure_judge_primed(s, SCHEMA, DRIVER, ITEM)
    assert again.reason == "cache_hit"


def test_transport_failure_leaves_session_unprimed():
    s = new_session("s1")

    def declined(**_kw):
        return False

    def broken(**_kw):
        raise ConnectionError("judge offline")

    assert ensure_judge_primed(s, SCHEMA, DRIVER, ITEM, transport=declined).reason == "transport_failed"
    assert ensure_judge_primed(s, SCHEMA, DRIVER, ITEM, transport=broken).reason == "transport_failed"
    assert s.judge_priming == {}

    ok = ensure_judge_primed(s, SCHEMA, DRIVER, ITEM, transport=lambda **kw: None)
    assert ok.reason == "initialized"


def test_new_guidance_version_reprimes():
    s = new_session("s1")
    ensure_judge_primed(s, SCHEMA, DRIVER, ITEM)

    bumped = SchemaDefinition.from_dict(dict(AEG_SCHEMA, GuidanceVersion="g2"))
    result = ensure_judge_primed(s, bumped, DRIVER, ITEM)
    assert result.reason == "transport_skipped"
    assert s.judge_priming[DRIVER.id]["guidance_version"] == "g2"


def test_legacy_camel_case_priming_is_still_primed():
    s = SessionSnapshot.from_dict({"id": "s1", "ajPriming": {DRIVER.id: {"guidanceVersion": "g1", "primed": True}}})
    assert is_primed(s, DRIVER.id, "g1")
    assert ensure_judge_primed(s, SCHEMA, DRIVER, ITEM).reason == "cache_hit"
