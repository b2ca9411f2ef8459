# aeq_core/schema.py

from __future__ import annotations

import copy
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# JSON thuần (dict/list/str/số/bool/None)
Json = Any

# Tín hiệu ngân sách mỗi lượt
PRODUCTIVE = "productive"
NEUTRAL = "neutral"
UNPRODUCTIVE = "unproductive"
BUDGET_SIGNALS = (PRODUCTIVE, NEUTRAL, UNPRODUCTIVE)


# ============================
# Định nghĩa tĩnh (bank)
# ============================

@dataclass(frozen=True)
class SchemaDefinition:
    """
    Một họ câu hỏi (schema) đã nạp từ bank:
    - judge_contract: JSON Schema (dict) hoặc boolean mà judge phải tuân thủ
    - engine: {"driverId": ...} hoặc {"kind": ...}
    - policy_defaults / scoring_spec: cấu hình mặc định, item có thể ghi đè
    - probe_policy: allow-list cho probe do judge sinh ra
    """
    schema_id: str
    guidance_version: str
    judge_contract: Any
    engine: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None
    ability: Dict[str, Any] = field(default_factory=dict)
    policy_defaults: Dict[str, Any] = field(default_factory=dict)
    scoring_spec: Dict[str, Any] = field(default_factory=dict)
    driver_config: Dict[str, Any] = field(default_factory=dict)
    probe_policy: Dict[str, Any] = field(default_factory=dict)

    @property
    def ability_key(self) -> str:
        """Khóa năng lực chính: Ability.key, rồi Ability.keys[0], cuối cùng 'global'."""
        key = self.ability.get("key")
        if key:
            return str(key)
        keys = self.ability.get("keys")
        if isinstance(keys, list) and keys:
            return str(keys[0])
        return "global"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaDefinition":
        return cls(
            schema_id=data["SchemaID"],
            guidance_version=data["GuidanceVersion"],
            judge_contract=copy.deepcopy(data["AJ_Contract_JsonSchema"]),
            engine=dict(data.get("Engine") or {}),
            description=data.get("Description"),
            ability=dict(data.get("Ability") or {}),
            policy_defaults=copy.deepcopy(data.get("PolicyDefaults") or {}),
            scoring_spec=copy.deepcopy(data.get("ScoringSpec") or {}),
            driver_config=copy.deepcopy(data.get("DriverConfig") or {}),
            probe_policy=copy.deepcopy(data.get("ProbePolicy") or {}),
        )


@dataclass(frozen=True)
class ItemDefinition:
    """Một câu hỏi cụ thể: stem + ghi đè policy/scoring + nội dung miền (theme, probe, kịch bản)."""
    item_id: str
    schema_id: str
    stem: str
    overrides: Dict[str, Any] = field(default_factory=dict)
    content: Dict[str, Any] = field(default_factory=dict)

    @property
    def policy_overrides(self) -> Dict[str, Any]:
        return self.overrides.get("Policy") or {}

    @property
    def scoring_overrides(self) -> Dict[str, Any]:
        return self.overrides.get("Scoring") or {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemDefinition":
        return cls(
            item_id=data["ItemID"],
            schema_id=data["SchemaID"],
            stem=data["Stem"],
            overrides=copy.deepcopy(data.get("DriverOverrides") or {}),
            content=copy.deepcopy(data.get("Content") or {}),
        )


# ============================
# Kết quả driver
# ============================

@dataclass
class Probe:
    """Câu hỏi gợi mở. id=None nghĩa là judge tự sinh (không lấy từ thư viện)."""
    id: Optional[str]
    text: str
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "category": self.category}


@dataclass
class ScorePayload:
    value: float
    label: Optional[str] = None
    components: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "label": self.label, "components": copy.deepcopy(self.components)}


@dataclass
class JudgeInit:
    """Payload priming gửi judge một lần cho mỗi (driver, guidance version)."""
    system_guidance: Any
    context: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"system": copy.deepcopy(self.system_guidance), "context": copy.deepcopy(self.context)}


@dataclass
class DriverDecision:
    """Quyết định của một lượt (không lưu trữ)."""
    budget_signal: str
    new_state: Dict[str, Any]
    credited: Optional[float] = None
    score: Optional[ScorePayload] = None
    probe: Optional[Probe] = None
    ui_badges: List[str] = field(default_factory=list)
    completed: bool = False
    telemetry: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credited": self.credited,
            "score": self.score.to_dict() if self.score else None,
            "budget_signal": self.budget_signal,
            "probe": self.probe.to_dict() if self.probe else None,
            "ui_badges": list(self.ui_badges),
            "completed": self.completed,
            "telemetry": copy.deepcopy(self.telemetry),
            "new_state": copy.deepcopy(self.new_state),
            "error_code": self.error_code,
        }


@dataclass
class TurnInput:
    """Đầu vào của SkillDriver.apply_turn."""
    schema: SchemaDefinition
    item: ItemDefinition
    state: Dict[str, Any]
    judge: Any
    user_text: str
    policy: Dict[str, Any]
    scoring: Dict[str, Any]
    rng: random.Random


# ============================
# Trạng thái phiên
# ============================

@dataclass
class UnitMeta:
    driver_id: str
    driver_version: str
    contract_version: str
    schema_id: str
    item_id: str
    ability_key: str
    started_at_ms: int
    turn_count: int = 0
    attempts: int = 0
    consecutive_unproductive: int = 0
    total_unproductive: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitMeta":
        return cls(
            driver_id=data.get("driver_id", data.get("driverId", "")),
            driver_version=data.get("driver_version", data.get("driverVersion", "")),
            contract_version=data.get("contract_version", data.get("contractVersion", "")),
            schema_id=data.get("schema_id", data.get("schemaId", "")),
            item_id=data.get("item_id", data.get("itemId", "")),
            ability_key=data.get("ability_key", data.get("abilityKey", "global")),
            started_at_ms=int(data.get("started_at_ms", data.get("startedAtMs", 0)) or 0),
            turn_count=int(data.get("turn_count", data.get("turnCount", 0)) or 0),
            attempts=int(data.get("attempts", 0) or 0),
            consecutive_unproductive=int(data.get("consecutive_unproductive", data.get("consecutiveUnproductive", 0)) or 0),
            total_unproductive=int(data.get("total_unproductive", data.get("totalUnproductive", 0)) or 0),
        )


@dataclass
class UnitStateEnvelope:
    """Meta do kernel sở hữu + payload riêng của driver."""
    meta: UnitMeta
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"meta": self.meta.to_dict(), "payload": copy.deepcopy(self.payload)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitStateEnvelope":
        return cls(meta=UnitMeta.from_dict(data.get("meta") or {}), payload=copy.deepcopy(data.get("payload") or {}))


@dataclass
class UnitSlot:
    driver_id: str
    state: UnitStateEnvelope
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"driver_id": self.driver_id, "state": self.state.to_dict(), "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitSlot":
        return cls(
            driver_id=data.get("driver_id", data.get("driverId", "")),
            state=UnitStateEnvelope.from_dict(data.get("state") or {}),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class TranscriptExchange:
    probe_text: str
    probe_answer: str = ""
    label: str = "None"

    def to_dict(self) -> Dict[str, Any]:
        return {"probe_text": self.probe_text, "probe_answer": self.probe_answer, "label": self.label}


@dataclass
class TranscriptEntry:
    item_id: str
    text: str
    answer: str
    theta_state_before: Dict[str, Dict[str, float]]
    label: str = "kernel"
    exchanges: List[TranscriptExchange] = field(default_factory=list)
    final_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "text": self.text,
            "answer": self.answer,
            "label": self.label,
            "theta_state_before": copy.deepcopy(self.theta_state_before),
            "exchanges": [x.to_dict() for x in self.exchanges],
            "final_score": self.final_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            item_id=data["item_id"],
            text=data.get("text", ""),
            answer=data.get("answer", ""),
            theta_state_before=copy.deepcopy(data.get("theta_state_before") or {}),
            label=data.get("label", "kernel"),
            exchanges=[
                TranscriptExchange(x.get("probe_text", ""), x.get("probe_answer", ""), x.get("label", "None"))
                for x in data.get("exchanges") or []
            ],
            final_score=data.get("final_score"),
        )


def _priming_from_dict(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Chấp nhận cả khóa camelCase cũ (guidanceVersion)."""
    return {
        driver_id: {
            "guidance_version": entry.get("guidance_version", entry.get("guidanceVersion")),
            "primed": entry.get("primed") is True,
        }
        for driver_id, entry in data.items()
        if isinstance(entry, dict)
    }


@dataclass
class SessionSnapshot:
    """
    Toàn bộ trạng thái một phiên:
    - theta: {ability_key: {"mean", "var"}}, không bao giờ reset giữa phiên
    - judge_priming: {driver_id: {"guidance_version", "primed"}}
    - unit: unit đang chạy (hoặc vừa hoàn tất)
    - transcript: append-only, mỗi item một entry
    """
    id: str
    theta: Dict[str, Dict[str, float]] = field(default_factory=dict)
    current_item_id: Optional[str] = None
    judge_priming: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    unit: Optional[UnitSlot] = None
    transcript: List[TranscriptEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "theta": copy.deepcopy(self.theta),
            "current_item_id": self.current_item_id,
            "judge_priming": copy.deepcopy(self.judge_priming),
            "unit": self.unit.to_dict() if self.unit else None,
            "transcript": [e.to_dict() for e in self.transcript],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        unit = data.get("unit")
        return cls(
            id=data["id"],
            theta=copy.deepcopy(data.get("theta") or {}),
            current_item_id=data.get("current_item_id", data.get("currentItemId")),
            judge_priming=_priming_from_dict(data.get("judge_priming", data.get("ajPriming")) or {}),
            unit=UnitSlot.from_dict(unit) if unit else None,
            transcript=[TranscriptEntry.from_dict(e) for e in data.get("transcript") or []],
        )
