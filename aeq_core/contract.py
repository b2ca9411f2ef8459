# aeq_core/contract.py

"""
Contract Validator.

1) Contract của judge: mỗi schema mang một JSON Schema (object hoặc boolean
   true/false). Validator được compile một lần và cache theo SchemaID.
2) Kiểm tra tĩnh định nghĩa Schema/Item khi nạp bank (fail fast).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .errors import AuthoringError, BankValidationError, ContractViolation, DriverConfigError
from .schema import SchemaDefinition

logger = logging.getLogger(__name__)

_validators: Dict[str, Draft202012Validator] = {}


# ============================
# Contract của judge
# ============================

def get_contract_validator(schema: SchemaDefinition) -> Draft202012Validator:
    """Lấy (hoặc compile + cache) validator cho contract của schema."""
    cached = _validators.get(schema.schema_id)
    if cached is not None:
        return cached

    contract = schema.judge_contract
    # Không kiểm tra truthiness: `False` là contract hợp lệ
    if contract is None:
        raise AuthoringError(f"Schema '{schema.schema_id}' has missing or null AJ_Contract_JsonSchema")
    if not isinstance(contract, (dict, bool)):
        raise AuthoringError(f"Schema '{schema.schema_id}' AJ_Contract_JsonSchema must be an object or boolean")

    try:
        Draft202012Validator.check_schema(contract)
    except SchemaError as e:
        raise AuthoringError(f"Schema '{schema.schema_id}' AJ_Contract_JsonSchema failed compilation: {e.message}") from e

    validator = Draft202012Validator(contract)
    _validators[schema.schema_id] = validator
    logger.debug(f"Compiled judge contract for schema {schema.schema_id}")
    return validator


def validate_judge_output(schema: SchemaDefinition, raw: Any) -> None:
    """Ném ContractViolation (kèm danh sách lỗi) nếu output không khớp contract."""
    validator = get_contract_validator(schema)
    errors = sorted(validator.iter_errors(raw), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        messages = [_format_error(e) for e in errors]
        raise ContractViolation(
            f"Judge output failed schema validation for '{schema.schema_id}': {'; '.join(messages)}",
            schema_id=schema.schema_id,
            errors=messages,
        )


def clear_contract_cache() -> None:
    _validators.clear()


def _format_error(err: Any) -> str:
    path = "/".join(str(p) for p in err.absolute_path)
    return f"{path}: {err.message}" if path else err.message


# ============================
# Kiểm tra tĩnh Schema/Item
# ============================

SCHEMA_DEFINITION_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["SchemaID", "GuidanceVersion", "AJ_Contract_JsonSchema", "Engine"],
    "properties": {
        "SchemaID": {"type": "string", "minLength": 1},
        "Description": {"type": "string"},
        "GuidanceVersion": {"type": "string", "minLength": 1},
        "Engine": {
            "type": "object",
            "properties": {
                "driverId": {"type": "string"},
                "kind": {"type": "string"},
                "version": {"type": "string"},
            },
            "anyOf": [{"required": ["driverId"]}, {"required": ["kind"]}],
        },
        "Ability": {
            "type": "object",
            "properties": {
                "key": {"type": "string"},
                "keys": {"type": "array", "items": {"type": "string"}, "minItems": 1},
            },
        },
        "PolicyDefaults": {"type": "object"},
        "ScoringSpec": {"type": "object"},
        "DriverConfig": {"type": "object"},
        "ProbePolicy": {"type": "object"},
        # object HOẶC boolean
        "AJ_Contract_JsonSchema": {"type": ["object", "boolean"]},
    },
}

ITEM_DEFINITION_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["ItemID", "SchemaID", "Stem"],
    "properties": {
        "ItemID": {"type": "string", "minLength": 1},
        "SchemaID": {"type": "string", "minLength": 1},
        "Stem": {"type": "string", "minLength": 1},
        "DriverOverrides": {"type": "object"},
        "Content": {"type": "object"},
    },
}

# Nhóm tên kiểu JS (?<name>...) -> (?P<name>...); giữ nguyên lookbehind (?<= và (?<!
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")
REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def compile_pattern(pattern: Any, flags: Any = 0, where: str = "pattern") -> "re.Pattern[str]":
    """
    Compile regex do người soạn bank cung cấp. flags nhận int hoặc chuỗi kiểu JS ("im").
    Pattern sai -> DriverConfigError (một AuthoringError), không để re.error lọt ra.
    """
    if not isinstance(pattern, str):
        raise DriverConfigError(f"{where} must be a string, got {type(pattern).__name__}")
    if isinstance(flags, str):
        bits = 0
        for ch in flags:
            bits |= REGEX_FLAGS.get(ch, 0)
        flags = bits
    try:
        return re.compile(_JS_NAMED_GROUP.sub("(?P<", pattern), flags)
    except re.error as e:
        raise DriverConfigError(f"{where} is not a valid regex ({pattern!r}): {e}") from e


def check_schema_patterns(data: Mapping[str, Any]) -> None:
    """Compile trước mọi regex trong schema để lỗi lộ ra lúc nạp bank."""
    sid = data.get("SchemaID") or "<schema>"
    extraction = (data.get("DriverConfig") or {}).get("Extraction") or {}
    if isinstance(extraction, Mapping) and extraction.get("regex") is not None:
        compile_pattern(extraction["regex"], str(extraction.get("flags", "i")), f"{sid} DriverConfig.Extraction.regex")
    hints = (data.get("ProbePolicy") or {}).get("DisallowHintPatterns")
    if hints is None:
        return
    if not isinstance(hints, list):
        raise DriverConfigError(f"{sid} ProbePolicy.DisallowHintPatterns must be a list")
    for i, p in enumerate(hints):
        compile_pattern(p, re.IGNORECASE, f"{sid} ProbePolicy.DisallowHintPatterns[{i}]")


_schema_def_validator = Draft202012Validator(SCHEMA_DEFINITION_JSON_SCHEMA)
_item_def_validator = Draft202012Validator(ITEM_DEFINITION_JSON_SCHEMA)


def _check(validator: Draft202012Validator, data: Any, what: str) -> None:
    errors = [_format_error(e) for e in validator.iter_errors(data)]
    if errors:
        raise BankValidationError(f"{what} invalid: {'; '.join(errors)}", errors)


def validate_schema_definition(data: Any) -> None:
    _check(_schema_def_validator, data, "Schema definition")


def validate_item_definition(data: Any) -> None:
    _check(_item_def_validator, data, "Item definition")


def inspect_definitions(schemas: Iterable[Mapping[str, Any]], items: Iterable[Mapping[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Kiểm tra không ném lỗi: validate envelope + compile contract, trả về báo cáo.
    Dùng cho bank health và cho loader (bản strict bên dưới).
    """
    schemas = list(schemas)
    schema_results: List[Dict[str, Any]] = []
    for index, raw in enumerate(schemas):
        label = raw.get("SchemaID") if isinstance(raw, Mapping) else None
        label = label or f"Schema at index {index}"
        try:
            validate_schema_definition(raw)
            check_schema_patterns(raw)
            get_contract_validator(SchemaDefinition.from_dict(dict(raw)))
            schema_results.append({"schema_id": label, "ok": True, "error": None})
        except AuthoringError as e:
            schema_results.append({"schema_id": label, "ok": False, "error": str(e)})

    item_results: List[Dict[str, Any]] = []
    all_schema_ids = {s.get("SchemaID") for s in schemas if isinstance(s, Mapping)}
    for index, raw in enumerate(items):
        item_id = (raw.get("ItemID") if isinstance(raw, Mapping) else None) or f"Item at index {index}"
        schema_id = (raw.get("SchemaID") if isinstance(raw, Mapping) else None) or "<unknown>"
        try:
            validate_item_definition(raw)
            if schema_id not in all_schema_ids:
                raise BankValidationError(f"No matching schema '{schema_id}' for item '{item_id}'")
            item_results.append({"item_id": item_id, "schema_id": schema_id, "ok": True, "error": None})
        except AuthoringError as e:
            item_results.append({"item_id": item_id, "schema_id": schema_id, "ok": False, "error": str(e)})

    return {"schema_results": schema_results, "item_results": item_results}


def validate_definitions_or_raise(
    schemas: Iterable[Mapping[str, Any]],
    items: Iterable[Mapping[str, Any]],
) -> Dict[str, List[Dict[str, Any]]]:
    """Bản strict: ném BankValidationError nếu có bất kỳ schema/item hỏng."""
    report = inspect_definitions(schemas, items)
    problems: List[str] = []
    for r in report["schema_results"]:
        if not r["ok"]:
            problems.append(f"Schema {r['schema_id']}: {r['error']}")
    for r in report["item_results"]:
        if not r["ok"]:
            problems.append(f"Item {r['item_id']} (schema {r['schema_id']}): {r['error']}")
    if problems:
        raise BankValidationError("Bank validation failed:\n" + "\n".join(problems), problems)
    return report


def describe_contract(schema: SchemaDefinition) -> Optional[str]:
    """Mô tả ngắn cho log/CLI: 'accept-all', 'accept-none' hoặc 'object'."""
    c = schema.judge_contract
    if c is True:
        return "accept-all"
    if c is False:
        return "accept-none"
    return "object" if isinstance(c, dict) else None
