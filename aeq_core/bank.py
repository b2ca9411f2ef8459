# aeq_core/bank.py

"""
Bank câu hỏi: schema + item, nạp từ thư mục JSON.

Bố cục:
    <root>/schemas/**/*.json
    <root>/items/**/*.json
    <root>/modules/<tên>/{schemas,items}/**/*.json

Mỗi file là một object hoặc một mảng object. Toàn bộ bank được validate
khi nạp (envelope + compile contract); lỗi -> BankValidationError.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .contract import clear_contract_cache, inspect_definitions, validate_definitions_or_raise
from .errors import BankValidationError, NotFoundError
from .schema import ItemDefinition, SchemaDefinition

logger = logging.getLogger(__name__)


@dataclass
class Bank:
    schemas: Dict[str, SchemaDefinition] = field(default_factory=dict)
    items: Dict[str, ItemDefinition] = field(default_factory=dict)

    def get_schema_by_id(self, schema_id: str) -> SchemaDefinition:
        s = self.schemas.get(schema_id)
        if s is None:
            raise NotFoundError(f"Schema '{schema_id}' not found")
        return s

    def get_item_by_id(self, item_id: str) -> ItemDefinition:
        it = self.items.get(item_id)
        if it is None:
            raise NotFoundError(f"Item '{item_id}' not found")
        return it

    def items_for_schema(self, schema_id: str) -> List[ItemDefinition]:
        return [it for it in self.items.values() if it.schema_id == schema_id]

    @classmethod
    def from_dicts(cls, schemas: Iterable[Mapping[str, Any]], items: Iterable[Mapping[str, Any]]) -> "Bank":
        """Validate (strict) rồi dựng bank. Trùng SchemaID/ItemID cũng là lỗi."""
        schemas = [dict(s) for s in schemas]
        items = [dict(i) for i in items]
        # Nạp lại có thể đổi contract dưới cùng SchemaID
        clear_contract_cache()
        validate_definitions_or_raise(schemas, items)

        problems = _duplicates(schemas, "SchemaID") + _duplicates(items, "ItemID")
        if problems:
            raise BankValidationError("Bank validation failed:\n" + "\n".join(problems), problems)

        bank = cls(
            schemas={s["SchemaID"]: SchemaDefinition.from_dict(s) for s in schemas},
            items={i["ItemID"]: ItemDefinition.from_dict(i) for i in items},
        )
        logger.info(f"📚 Loaded bank: {len(bank.schemas)} schemas, {len(bank.items)} items")
        return bank


def _duplicates(rows: List[Dict[str, Any]], key: str) -> List[str]:
    seen: Dict[str, int] = {}
    for r in rows:
        seen[r[key]] = seen.get(r[key], 0) + 1
    return [f"Duplicate {key} '{k}'" for k, n in seen.items() if n > 1]


# ============================
# Đọc thư mục JSON
# ============================

def _walk_json(directory: str) -> List[str]:
    out: List[str] = []
    if not os.path.isdir(directory):
        return out
    for root, _dirs, files in os.walk(directory):
        for name in sorted(files):
            if name.lower().endswith(".json"):
                out.append(os.path.join(root, name))
    return sorted(out)


def _read_json_rows(path: str) -> List[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BankValidationError(f"Failed to parse JSON '{path}': {e}", [f"{path}: {e}"]) from e
    rows = data if isinstance(data, list) else [data]
    return [r for r in rows if isinstance(r, dict)]


def _collect(root: str, kind: str) -> List[Dict[str, Any]]:
    files = _walk_json(os.path.join(root, kind))
    modules = os.path.join(root, "modules")
    sep = os.sep
    files += [f for f in _walk_json(modules) if f"{sep}{kind}{sep}" in f]
    rows: List[Dict[str, Any]] = []
    for f in files:
        rows.extend(_read_json_rows(f))
    return rows


def read_bank_dir(root: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Đọc dữ liệu thô (chưa validate): (schemas, items)."""
    return _collect(root, "schemas"), _collect(root, "items")


def load_bank(root: str = "data") -> Bank:
    schemas, items = read_bank_dir(root)
    logger.debug(f"Read {len(schemas)} schema files / {len(items)} item rows from {root}")
    return Bank.from_dicts(schemas, items)


def inspect_bank_dir(root: str = "data") -> Dict[str, List[Dict[str, Any]]]:
    """Báo cáo không ném lỗi cho bank health (lỗi JSON vẫn ném BankValidationError)."""
    schemas, items = read_bank_dir(root)
    return inspect_definitions(schemas, items)
