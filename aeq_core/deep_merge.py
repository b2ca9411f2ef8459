# aeq_core/deep_merge.py

"""
Configuration Composer: ghép cấu hình nhiều tầng (schema defaults -> item overrides -> ...).

Quy tắc:
- dict + dict: ghép theo từng khóa, đệ quy
- list + list: theo ArrayStrategy (REPLACE mặc định, CONCAT, MERGE_BY_ID)
- scalar hoặc khác kiểu: bản override thắng
Hàm thuần: không sửa input, luôn trả về cấu trúc mới.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List


class ArrayStrategy(str, Enum):
    REPLACE = "replace"
    CONCAT = "concat"
    MERGE_BY_ID = "merge-by-id"


def _clone(x: Any) -> Any:
    if isinstance(x, dict):
        return {k: _clone(v) for k, v in x.items()}
    if isinstance(x, list):
        return [_clone(v) for v in x]
    return x


def _merge_lists(base: List[Any], override: List[Any], strategy: ArrayStrategy, id_key: str) -> List[Any]:
    if strategy == ArrayStrategy.CONCAT:
        return [_clone(x) for x in base] + [_clone(x) for x in override]

    if strategy == ArrayStrategy.MERGE_BY_ID:
        # Giữ thứ tự: phần tử base trước, phần tử mới nối cuối
        out: List[Any] = []
        index: Dict[Any, int] = {}
        for el in base:
            if isinstance(el, dict) and el.get(id_key) is not None:
                index[el[id_key]] = len(out)
            out.append(_clone(el))
        for el in override:
            key = el.get(id_key) if isinstance(el, dict) else None
            if key is not None and key in index:
                pos = index[key]
                out[pos] = deep_merge(out[pos], el, strategy, id_key)
            else:
                if key is not None:
                    index[key] = len(out)
                out.append(_clone(el))
        return out

    return [_clone(x) for x in override]


def deep_merge(
    base: Any,
    override: Any,
    strategy: ArrayStrategy = ArrayStrategy.REPLACE,
    id_key: str = "id",
) -> Any:
    """Ghép `override` lên `base` và trả về bản sao mới."""
    strategy = ArrayStrategy(strategy)
    if override is None:
        return _clone(base)

    if isinstance(base, dict) and isinstance(override, dict):
        out: Dict[str, Any] = {}
        for key in list(base.keys()) + [k for k in override.keys() if k not in base]:
            if key not in override:
                out[key] = _clone(base[key])
            elif key not in base:
                out[key] = _clone(override[key])
            else:
                out[key] = deep_merge(base[key], override[key], strategy, id_key)
        return out

    if isinstance(base, list) and isinstance(override, list):
        return _merge_lists(base, override, strategy, id_key)

    return _clone(override)


def compose(*layers: Any, strategy: ArrayStrategy = ArrayStrategy.REPLACE, id_key: str = "id") -> Dict[str, Any]:
    """Gộp lần lượt các tầng cấu hình từ trái sang phải (tầng sau thắng)."""
    result: Any = {}
    for layer in layers:
        result = deep_merge(result, layer or {}, strategy, id_key)
    return result
