# aeq_core/drivers/base.py

"""
Hợp đồng chung của Skill Driver + các hàm tiện ích dùng lại giữa các driver.

Một driver:
    build_judge_init(schema, item)  -> payload priming cho judge
    init_state(schema, item)        -> payload mới cho một lần làm item
    migrate_state(stored)           -> dựng lại payload từ dữ liệu cũ (không bao giờ ném lỗi)
    parse_judge_output(raw, ...)    -> kiểu dữ liệu riêng của driver
    apply_turn(TurnInput)           -> DriverDecision (hàm thuần)
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import JudgeOutputError
from ..schema import DriverDecision, ItemDefinition, JudgeInit, Probe, SchemaDefinition, TurnInput

class SkillDriver(ABC):
    id: str = ""
    kind: Optional[str] = None
    version: str = "1.0.0"
    capabilities: Dict[str, bool] = {}
    # Kernel tính điểm cuối theo công thức distinct-count cho driver loại này
    counts_distinct: bool = False

    @abstractmethod
    def build_judge_init(self, schema: SchemaDefinition, item: Optional[ItemDefinition] = None) -> JudgeInit:
        ...

    @abstractmethod
    def init_state(self, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    def migrate_state(self, stored: Any) -> Dict[str, Any]:
        ...

    @abstractmethod
    def parse_judge_output(self, raw: Any, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Any:
        ...

    @abstractmethod
    def apply_turn(self, turn: TurnInput) -> DriverDecision:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"id": self.id, "kind": self.kind, "version": self.version, "capabilities": dict(self.capabilities)}


# ============================
# Ép kiểu an toàn
# ============================

def clamp01(x: float) -> float:
    return 0.0 if x < 0 else 1.0 if x > 1 else x


def as_num(v: Any, default: float = 0.0) -> float:
    """Số hữu hạn, chuỗi số, còn lại -> default."""
    if isinstance(v, bool):
        return default
    if isinstance(v, (int, float)):
        return float(v) if math.isfinite(v) else default
    if isinstance(v, str):
        try:
            x = float(v.strip())
        except ValueError:
            return default
        return x if math.isfinite(x) else default
    return default


def as_int(v: Any, default: int = 0) -> int:
    return int(as_num(v, float(default)))


def first_of(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Giá trị đầu tiên khác None theo danh sách khóa (hỗ trợ tên khóa cũ)."""
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return default


def str_list(v: Any) -> List[str]:
    return [str(x) for x in v] if isinstance(v, (list, tuple)) else []


# ============================
# Kết quả judge dạng phân loại
# ============================

@dataclass
class CategoryJudgement:
    answer_type: str
    theme_tag: Optional[str] = None
    confidence: float = 0.0
    recommended_probe_id: Optional[str] = None
    generated_probe_text: Optional[str] = None


def parse_category_judgement(
    raw: Any,
    allowed: Sequence[str],
    answer_type_map: Mapping[str, str],
    driver_name: str,
) -> CategoryJudgement:
    """Map AnswerType qua alias của schema rồi kiểm tra enum đóng của driver."""
    obj = raw if isinstance(raw, Mapping) else {}
    raw_at = str(obj.get("AnswerType") or "")
    mapped = str(answer_type_map.get(raw_at, raw_at))
    if mapped not in allowed:
        raise JudgeOutputError(
            f"{driver_name}: invalid AnswerType '{raw_at}' (mapped to '{mapped}')",
            errors=[f"AnswerType: '{mapped}' is not one of {list(allowed)}"],
        )

    def opt_str(key: str) -> Optional[str]:
        v = obj.get(key)
        return None if v is None else str(v)

    return CategoryJudgement(
        answer_type=mapped,
        theme_tag=opt_str("ThemeTag"),
        confidence=clamp01(as_num(obj.get("Confidence"), 0.0)),
        recommended_probe_id=opt_str("RecommendedProbeID"),
        generated_probe_text=opt_str("GeneratedProbeText"),
    )


# ============================
# Chọn probe từ thư viện
# ============================

def pick_library_probe(
    library: Mapping[str, Any],
    category: str,
    used: Sequence[str],
    recommended: Optional[str] = None,
    legacy_categories: Sequence[str] = (),
) -> Tuple[Optional[Probe], List[str]]:
    """
    Ưu tiên:
        1) probe judge đề xuất, nếu có trong nhóm và chưa dùng
        2) probe đầu tiên chưa dùng
        3) dùng lại probe đầu tiên
    Trả về (probe | None, danh sách id đã dùng mới).
    """
    group = list(library.get(category) or [])
    for legacy in legacy_categories:
        if group:
            break
        group = list(library.get(legacy) or [])

    used_out = list(used)
    group = [p for p in group if isinstance(p, Mapping) and p.get("id")]
    if recommended:
        for p in group:
            if p["id"] == recommended and recommended not in used:
                return Probe(id=str(p["id"]), text=str(p.get("text", "")), category=category), used_out + [str(p["id"])]

    chosen = next((p for p in group if p["id"] not in used), group[0] if group else None)
    if chosen is None:
        return None, used_out
    return Probe(id=str(chosen["id"]), text=str(chosen.get("text", "")), category=category), used_out + [str(chosen["id"])]


def resolve_probe_library(schema: SchemaDefinition, item: ItemDefinition) -> Dict[str, Any]:
    """ProbeLibrary của item, nếu trống thì của DriverConfig."""
    return dict(item.content.get("ProbeLibrary") or schema.driver_config.get("ProbeLibrary") or {})


def category_probe(
    library: Mapping[str, Any],
    category: str,
    state: Dict[str, Any],
    judgement: CategoryJudgement,
    fallback_text: Optional[str] = None,
    legacy_categories: Sequence[str] = (),
) -> Optional[Probe]:
    """
    Chọn probe cho category và ghi lại id đã dùng vào state["used_probe_ids"].
    Thư viện không có nhóm này -> câu judge tự sinh (GeneratedProbeText),
    rồi tới fallback_text; cả hai đều là probe sinh (id=None), phải qua probe policy.
    """
    probe, used = pick_library_probe(library, category, state.get("used_probe_ids", []), judgement.recommended_probe_id, legacy_categories)
    if probe is not None:
        state["used_probe_ids"] = used
        return probe
    if judgement.generated_probe_text:
        return Probe(id=None, text=judgement.generated_probe_text, category=category)
    if fallback_text:
        return Probe(id=None, text=fallback_text, category=category)
    return None


# ============================
# Ngân sách làm rõ (clarification)
# ============================

CLARIFICATION_TYPES = ("NotSpecific", "NotClear")


def clarification_caps(driver_config: Mapping[str, Any]) -> Dict[str, int]:
    cp = driver_config.get("ClarificationPolicy") or {}
    return {
        "MaxTotal": as_int(cp.get("MaxTotal"), 2),
        "MaxConsecutiveNotSpecific": as_int(cp.get("MaxConsecutiveNotSpecific"), 1),
        "MaxConsecutiveNotClear": as_int(cp.get("MaxConsecutiveNotClear"), 1),
    }


def try_clarify(state: Dict[str, Any], answer_type: str, caps: Mapping[str, int]) -> bool:
    """
    Còn ngân sách (tổng VÀ chuỗi liên tiếp cùng loại) -> True, tăng cả hai bộ đếm.
    Hết ngân sách -> False, chỉ tăng chuỗi.
    """
    streak = state.get("clar_streak", 0) if state.get("clar_streak_type") == answer_type else 0
    can_total = state.get("clarifications_used", 0) < caps["MaxTotal"]
    can_streak = streak < caps.get(f"MaxConsecutive{answer_type}", 1)
    state["clar_streak_type"] = answer_type
    state["clar_streak"] = streak + 1
    if can_total and can_streak:
        state["clarifications_used"] = state.get("clarifications_used", 0) + 1
        return True
    return False


def reset_clarification_streak(state: Dict[str, Any]) -> None:
    state["clar_streak_type"] = None
    state["clar_streak"] = 0


def migrate_clarification_fields(stored: Mapping[str, Any]) -> Dict[str, Any]:
    streak_type = first_of(stored, "clar_streak_type", "clarStreakType", "clStreakType")
    return {
        "clarifications_used": as_int(first_of(stored, "clarifications_used", "clarificationsUsed"), 0),
        "clar_streak_type": streak_type if streak_type in CLARIFICATION_TYPES else None,
        "clar_streak": as_int(first_of(stored, "clar_streak", "clarStreak"), 0),
    }
