# aeq_core/kernel.py

"""
Turn Kernel: điều phối MỘT lượt trả lời của người làm bài.

    1) Lấy schema/item từ bank
    2) Priming judge (một lần cho mỗi driver + GuidanceVersion)
    3) Resolve driver, ghép policy/scoring (schema defaults -> item overrides)
    4) Tạo envelope mới nếu chưa có / khác item / khác driver / đã hoàn tất
    5) Tăng bộ đếm lượt
    6) Validate output judge theo contract; lỗi -> quyết định "contract invalid"
    7) parse_judge_output + apply_turn với RNG seed tất định
    8) Cập nhật bộ đếm ngân sách (unproductive / productive / neutral)
    9) Hoàn tất = driver xong | hết giờ | quá số lần hỏng liên tiếp | quá tổng số lần hỏng
   10) Chỉ lượt hoàn tất mới tính điểm cuối và cập nhật θ
   11) Lọc probe qua probe policy
   12) Ghi transcript
   13) Persist + trả kết quả

Kernel làm việc trên BẢN SAO của session và trả về session mới; không sửa input.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .contract import validate_judge_output
from .deep_merge import ArrayStrategy, compose
from .drivers.base import as_int
from .errors import ContractViolation, NotFoundError
from .priming import PrimingTransport, ensure_judge_primed
from .probe_policy import enforce_probe_policy
from .schema import (
    PRODUCTIVE,
    UNPRODUCTIVE,
    DriverDecision,
    ItemDefinition,
    Probe,
    SchemaDefinition,
    ScorePayload,
    SessionSnapshot,
    TranscriptEntry,
    TranscriptExchange,
    TurnInput,
    UnitMeta,
    UnitSlot,
    UnitStateEnvelope,
)
from .theta_engine import update_theta

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONSECUTIVE_FAILED = 2
DEFAULT_MAX_TOTAL_FAILED = 3

CONTRACT_INVALID_CODE = "JUDGE_CONTRACT_INVALID"
FORMAT_ERROR_PROBE = Probe(
    id="format_error",
    text="I couldn't parse that. Please answer in the expected format.",
    category="format",
)

PersistHook = Callable[[SessionSnapshot], Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class KernelOptions:
    """
    generated_probe_mode: "allowlist" | "disabled" | None (theo schema)
    clock: hàm trả về thời gian hiện tại (ms), thay được trong test
    priming_transport: transport priming judge (None -> priming lạc quan)
    """
    generated_probe_mode: Optional[str] = None
    clock: Callable[[], int] = _now_ms
    priming_transport: Optional[PrimingTransport] = None


@dataclass
class TurnResult:
    session: SessionSnapshot
    decision: DriverDecision
    credited: Optional[float]
    score: ScorePayload
    ui_badges: List[str]
    probe: Optional[Probe]
    theta: Dict[str, Dict[str, float]]
    completed: bool
    telemetry: Dict[str, Any] = field(default_factory=dict)
    unit_state: Optional[UnitStateEnvelope] = None
    transcript: List[TranscriptEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Dạng JSON trả về cho tầng gọi (không gồm session đầy đủ)."""
        return {
            "credited": self.credited,
            "score": self.score.to_dict(),
            "ui_badges": list(self.ui_badges),
            "probe": self.probe.to_dict() if self.probe else None,
            "theta": copy.deepcopy(self.theta),
            "completed": self.completed,
            "telemetry": copy.deepcopy(self.telemetry),
            "unit_state": self.unit_state.to_dict() if self.unit_state else None,
            "transcript": [e.to_dict() for e in self.transcript],
        }


# ============================
# Helpers
# ============================

def seeded_rng(session_id: str, driver_id: str, item_id: str, turn_count: int) -> random.Random:
    """RNG tất định theo (session, driver, item, lượt)."""
    digest = hashlib.sha256(f"{session_id}:{driver_id}:{item_id}:{turn_count}".encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


def _new_envelope(driver: Any, schema: SchemaDefinition, item: ItemDefinition, now_ms: int) -> UnitStateEnvelope:
    meta = UnitMeta(
        driver_id=driver.id,
        driver_version=driver.version,
        contract_version=schema.guidance_version,
        schema_id=schema.schema_id,
        item_id=item.item_id,
        ability_key=schema.ability_key,
        started_at_ms=now_ms,
    )
    return UnitStateEnvelope(meta=meta, payload=driver.init_state(schema, item))


def _contract_invalid(payload: Dict[str, Any], err: ContractViolation) -> DriverDecision:
    return DriverDecision(
        credited=0.0,
        score=ScorePayload(value=0.0, label="aj_contract_invalid"),
        budget_signal=UNPRODUCTIVE,
        probe=copy.copy(FORMAT_ERROR_PROBE),
        ui_badges=["Judge Contract: Invalid"],
        completed=False,
        telemetry={"error": str(err), "contract_errors": list(err.errors)},
        new_state=payload,
        error_code=CONTRACT_INVALID_CODE,
    )


def _final_score(driver: Any, decision: DriverDecision, scoring: Mapping[str, Any]) -> ScorePayload:
    """perDistinct -> công thức distinct-count -> điểm driver -> credited -> 0."""
    state = decision.new_state or {}
    if getattr(driver, "counts_distinct", False) and "distinct_count" in state:
        distinct = int(state.get("distinct_count") or 0)
        target = max(1, int(state.get("target_distinct") or 2))
        per_distinct = (scoring.get("final") or {}).get("perDistinct")
        if isinstance(per_distinct, Mapping):
            mapped = per_distinct.get(str(distinct))
            if isinstance(mapped, (int, float)) and not isinstance(mapped, bool):
                return ScorePayload(value=float(mapped), label="final_per_distinct")
        value = 1.0 if distinct >= target else -(target - distinct) / target
        return ScorePayload(value=value, label="final_general_formula")

    if decision.score is not None:
        return decision.score
    if decision.credited is not None:
        return ScorePayload(value=float(decision.credited), label="final_credited")
    return ScorePayload(value=0.0, label="final_default_zero")


def _completed_reason(domain_done: bool, time_expired: bool, consec_exceeded: bool, total_exceeded: bool) -> Optional[str]:
    if domain_done:
        return "domain"
    if time_expired:
        return "time_budget"
    if consec_exceeded:
        return "consecutive_failed"
    if total_exceeded:
        return "total_failed"
    return None


def _update_transcript(
    session: SessionSnapshot,
    item: ItemDefinition,
    user_text: str,
    probe: Optional[Probe],
    theta_before: Dict[str, Dict[str, float]],
    new_unit: bool = False,
) -> TranscriptEntry:
    """Unit mới (kể cả làm lại item vừa xong) luôn mở entry mới; entry cũ đã đóng."""
    last = session.transcript[-1] if session.transcript else None
    if new_unit or last is None or last.item_id != item.item_id:
        last = TranscriptEntry(
            item_id=item.item_id,
            text=item.stem,
            answer=user_text,
            theta_state_before=copy.deepcopy(theta_before),
            exchanges=[TranscriptExchange(probe_text=probe.text)] if probe else [],
        )
        session.transcript.append(last)
        return last

    if last.exchanges and not last.exchanges[-1].probe_answer:
        last.exchanges[-1].probe_answer = user_text
    if probe:
        last.exchanges.append(TranscriptExchange(probe_text=probe.text))
    return last


# ============================
# Entry point
# ============================

def apply_turn(
    session: Union[SessionSnapshot, Mapping[str, Any]],
    bank: Any,
    registry: Any,
    schema_id: str,
    item_id: str,
    user_text: str,
    judge_raw: Any,
    persist: Optional[PersistHook] = None,
    options: Optional[KernelOptions] = None,
) -> TurnResult:
    options = options or KernelOptions()
    if isinstance(session, SessionSnapshot):
        session = copy.deepcopy(session)
    else:
        session = SessionSnapshot.from_dict(dict(session))

    # 1) Schema / item
    schema: SchemaDefinition = bank.get_schema_by_id(schema_id)
    item: ItemDefinition = bank.get_item_by_id(item_id)
    if item.schema_id != schema.schema_id:
        raise NotFoundError(f"Item '{item_id}' does not belong to schema '{schema_id}'")

    # 2-3) Driver, priming, cấu hình hiệu lực
    driver = registry.resolve(schema.engine)
    ensure_judge_primed(session, schema, driver, item, transport=options.priming_transport)
    policy = compose(schema.policy_defaults, item.policy_overrides, strategy=ArrayStrategy.REPLACE)
    scoring = compose(schema.scoring_spec, item.scoring_overrides, strategy=ArrayStrategy.REPLACE)

    time_budget_sec = policy.get("TimeBudgetSec")
    try:
        time_budget_sec = float(time_budget_sec) if time_budget_sec is not None else None
    except (TypeError, ValueError):
        time_budget_sec = None
    # null trong override nghĩa là dùng mặc định
    max_consec_fail = as_int(policy.get("MaxConsecutiveFailedAttempts"), DEFAULT_MAX_CONSECUTIVE_FAILED)
    max_total_fail = as_int(policy.get("MaxTotalFailedAttempts"), DEFAULT_MAX_TOTAL_FAILED)

    # 4) Envelope
    now = options.clock()
    unit = session.unit
    new_unit = (
        unit is None
        or unit.completed
        or unit.driver_id != driver.id
        or unit.state.meta.item_id != item.item_id
    )
    if new_unit:
        unit = UnitSlot(driver_id=driver.id, state=_new_envelope(driver, schema, item, now))
        session.unit = unit
        logger.debug(f"New unit envelope: item={item.item_id} driver={driver.id}")
    else:
        unit.state.payload = driver.migrate_state(unit.state.payload)
    env = unit.state
    session.current_item_id = item.item_id

    # 5) Bộ đếm lượt
    env.meta.turn_count += 1
    elapsed_ms = max(0, now - (env.meta.started_at_ms or now))

    # 6-7) Contract + driver
    rng = seeded_rng(session.id, driver.id, item.item_id, env.meta.turn_count)
    try:
        validate_judge_output(schema, judge_raw)
        parsed = driver.parse_judge_output(judge_raw, schema, item)
    except ContractViolation as e:
        logger.warning(f"⚠️ Judge output rejected for item {item.item_id}: {e}")
        decision = _contract_invalid(env.payload, e)
    else:
        decision = driver.apply_turn(
            TurnInput(
                schema=schema,
                item=item,
                state=copy.deepcopy(env.payload),
                judge=parsed,
                user_text=user_text,
                policy=policy,
                scoring=scoring,
                rng=rng,
            )
        )

    # 8) Ngân sách
    meta = env.meta
    meta.attempts += 1
    if decision.budget_signal == UNPRODUCTIVE:
        meta.consecutive_unproductive += 1
        meta.total_unproductive += 1
    elif decision.budget_signal == PRODUCTIVE:
        meta.consecutive_unproductive = 0

    # 9) Hoàn tất?
    time_expired = time_budget_sec is not None and elapsed_ms > time_budget_sec * 1000
    consec_exceeded = meta.consecutive_unproductive >= max_consec_fail
    total_exceeded = meta.total_unproductive >= max_total_fail
    domain_done = bool(decision.completed)
    completed = domain_done or time_expired or consec_exceeded or total_exceeded
    completed_reason = _completed_reason(domain_done, time_expired, consec_exceeded, total_exceeded)

    # 10) θ chỉ đổi ở lượt hoàn tất
    theta_before = copy.deepcopy(session.theta)
    if completed:
        score = _final_score(driver, decision, scoring)
        session.theta = update_theta(session.theta, meta.ability_key, score, scoring)
        logger.info(f"✅ Item {item.item_id} completed (score={score.value:.3f}, {score.label}) after {meta.turn_count} turns")
    else:
        score = ScorePayload(value=0.0, label="intra_turn_no_change")

    # 11) Probe policy; item đã xong thì không hỏi thêm
    check = enforce_probe_policy(schema, decision.probe, options.generated_probe_mode)
    probe = None if completed else check.probe

    env.payload = decision.new_state
    unit.completed = completed

    # 12) Transcript
    entry = _update_transcript(session, item, user_text, probe, theta_before, new_unit=new_unit)
    if completed:
        entry.final_score = score.value

    # 13) Persist
    if persist is not None:
        try:
            persist(session)
        except Exception:
            logger.exception(f"❌ Persist hook failed for session {session.id}")

    telemetry = dict(decision.telemetry)
    telemetry.update({
        "error_code": decision.error_code,
        "ability_key": meta.ability_key,
        "attempts": meta.attempts,
        "consecutive_unproductive": meta.consecutive_unproductive,
        "total_unproductive": meta.total_unproductive,
        "time_elapsed_ms": elapsed_ms,
        "time_expired": time_expired,
        "consecutive_fail_exceeded": consec_exceeded,
        "total_fail_exceeded": total_exceeded,
        "domain_done": domain_done,
        "completed_reason": completed_reason,
        "judge_probe_blocked": check.blocked,
        "judge_probe_truncated": check.truncated,
        "judge_probe_reason": check.reason,
    })

    return TurnResult(
        session=session,
        decision=decision,
        credited=decision.credited,
        score=score,
        ui_badges=list(decision.ui_badges),
        probe=probe,
        theta=copy.deepcopy(session.theta),
        completed=completed,
        telemetry=telemetry,
        unit_state=copy.deepcopy(env),
        transcript=copy.deepcopy(session.transcript),
    )
