# tests/test_contract.py

import pytest

from aeq_core.contract import (
    inspect_definitions,
    validate_definitions_or_raise,
    validate_judge_output,
)
from aeq_core.errors import AuthoringError, BankValidationError, ContractViolation
from aeq_core.schema import SchemaDefinition


def _schema(contract, schema_id="S"):
    return SchemaDefinition(schema_id=schema_id, guidance_version="g", judge_contract=contract)


def test_object_contract_accepts_and_rejects():
    s = _schema({"type": "object", "required": ["AnswerType"], "properties": {"AnswerType": {"type": "string"}}})
    validate_judge_output(s, {"AnswerType": "Good"})

    with pytest.raises(ContractViolation) as exc:
        validate_judge_output(s, {"Other": 1})
    assert exc.value.schema_id == "S"
    assert any("AnswerType" in e for e in exc.value.errors)


def test_boolean_contracts():
    validate_judge_output(_schema(True, "T"), {"anything": [1, 2]})
    validate_judge_output(_schema(True, "T"), 42)

    with pytest.raises(ContractViolation):
        validate_judge_output(_schema(False, "F"), {})


def test_missing_or_broken_contract_is_authoring_error():
    with pytest.raises(AuthoringError):
        validate_judge_output(_schema(None, "N"), {})
    with pytest.raises(AuthoringError):
        validate_judge_output(_schema({"type": "no-such-type"}, "B"), {})


def test_inspect_reports_without_raising(schema_dicts, item_dicts):
    broken = dict(schema_dicts[0], SchemaID="Broken")
    broken.pop("Engine")
    orphan = {"ItemID": "X", "SchemaID": "Nope", "Stem": "?"}

    report = inspect_definitions(schema_dicts + [broken], item_dicts + [orphan])

    bad_schemas = [r for r in report["schema_results"] if not r["ok"]]
    bad_items = [r for r in report["item_results"] if not r["ok"]]
    assert [r["schema_id"] for r in bad_schemas] == ["Broken"]
    assert [r["item_id"] for r in bad_items] == ["X"]
    assert "No matching schema" in bad_items[0]["error"]


def test_strict_validation_raises_with_problems(schema_dicts):
    with pytest.raises(BankValidationError) as exc:
        validate_definitions_or_raise(schema_dicts, [{"ItemID": "X", "SchemaID": "Nope", "Stem": "?"}])
    assert exc.value.problems
