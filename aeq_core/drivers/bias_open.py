# aeq_core/drivers/bias_open.py

"""
BiasDirectionOpenDriver: chấm điểm theo ĐƯỜNG ĐI (path) của chuỗi câu trả lời.

Người làm bài cần giải thích cả lợi ích bị che (MaskedBenefit) lẫn tác hại bị che (MaskedHarm).
Điểm phụ thuộc vào việc giải thích được ngay (Spontaneous) hay sau một lần gợi mở (GP),
và việc follow-up (FP) có thành công không:

    P1_Spontaneous_Both            2.0
    P2_GP_Both                     1.0
    P3_Spontaneous_One_FP_Success  0.8
    P4_GP_One_FP_Success           0.0
    P5_Spontaneous_One_FP_Fail    -0.2
    P6_GP_One_FP_Fail             -1.0
    P7_None_Ever                  -2.5   (hết MaxTotalTurns)

Chuỗi `seq` chỉ lưu AnswerType (không timestamp) để replay tất định.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..schema import (
    NEUTRAL,
    PRODUCTIVE,
    UNPRODUCTIVE,
    DriverDecision,
    ItemDefinition,
    JudgeInit,
    Probe,
    SchemaDefinition,
    ScorePayload,
    TurnInput,
)
from .base import (
    CategoryJudgement,
    SkillDriver,
    as_int,
    as_num,
    category_probe,
    clarification_caps,
    first_of,
    migrate_clarification_fields,
    parse_category_judgement,
    reset_clarification_streak,
    resolve_probe_library,
    str_list,
    try_clarify,
)

logger = logging.getLogger(__name__)

BOTH = "Both_Explained"
BENEFIT_ONLY = "MaskedBenefit_Only_Explained"
HARM_ONLY = "MaskedHarm_Only_Explained"

ANSWER_TYPES = (
    BOTH,
    BENEFIT_ONLY,
    HARM_ONLY,
    "NotSpecific",
    "NotDistinct",
    "NotPlausible",
    "NotClear",
    "NotRelevant",
)

# Chỉ các loại này đi vào chuỗi đường đi
PATH_TYPES = (BOTH, BENEFIT_ONLY, HARM_ONLY, "NotSpecific")

DEFAULT_PATH_SCORES: Dict[str, float] = {
    "P1_Spontaneous_Both": 2.0,
    "P2_GP_Both": 1.0,
    "P3_Spontaneous_One_FP_Success": 0.8,
    "P4_GP_One_FP_Success": 0.0,
    "P5_Spontaneous_One_FP_Fail": -0.2,
    "P6_GP_One_FP_Fail": -1.0,
    "P7_None_Ever": -2.5,
}

DEFAULT_MAX_TOTAL_TURNS = 3


def _one_only(t: Optional[str]) -> bool:
    return t in (BENEFIT_ONLY, HARM_ONLY)


def path_scores(scoring: Mapping[str, Any]) -> Dict[str, float]:
    scores = dict(DEFAULT_PATH_SCORES)
    for entry in scoring.get("PathMap") or []:
        if isinstance(entry, Mapping) and entry.get("PathID"):
            scores[str(entry["PathID"])] = as_num(entry.get("Score"), scores.get(str(entry["PathID"]), 0.0))
    return scores


def decide_path(seq: Sequence[str], scores: Mapping[str, float], max_turns: int) -> Optional[Tuple[str, float]]:
    """Trả về (PathID, điểm) khi đường đi đã xác định, ngược lại None."""
    n = len(seq)

    def at(i: int) -> Optional[str]:
        return seq[i] if i < n else None

    path: Optional[str] = None
    if at(0) == BOTH:
        path = "P1_Spontaneous_Both"
    elif n >= 2 and at(0) == "NotSpecific" and at(1) == BOTH:
        path = "P2_GP_Both"
    elif n >= 2 and _one_only(at(0)) and (_one_only(at(1)) or at(1) == BOTH):
        path = "P3_Spontaneous_One_FP_Success"
    elif n >= 3 and at(0) == "NotSpecific" and _one_only(at(1)) and (_one_only(at(2)) or at(2) == BOTH):
        path = "P4_GP_One_FP_Success"
    elif n >= 2 and _one_only(at(0)) and at(1) == "NotSpecific":
        path = "P5_Spontaneous_One_FP_Fail"
    elif n >= 3 and at(0) == "NotSpecific" and _one_only(at(1)) and at(2) == "NotSpecific":
        path = "P6_GP_One_FP_Fail"
    elif n >= max_turns:
        path = "P7_None_Ever"

    if path is None:
        return None
    return path, scores.get(path, DEFAULT_PATH_SCORES[path])


def _migrate_seq(raw: Any) -> List[str]:
    out: List[str] = []
    for rec in raw if isinstance(raw, list) else []:
        # Bản cũ lưu {"t": AnswerType, "at": timestamp}
        t = rec.get("t") if isinstance(rec, Mapping) else rec
        if t in PATH_TYPES:
            out.append(str(t))
    return out


class BiasDirectionOpenDriver(SkillDriver):
    id = "bias.direction.open.v1"
    kind = "bias.direction.open"
    version = "1.0.0"
    capabilities = {"uses_probes": True, "continuous_score": False, "needs_scenario_in_turn": False}

    def build_judge_init(self, schema: SchemaDefinition, item: Optional[ItemDefinition] = None) -> JudgeInit:
        return JudgeInit(system_guidance=schema.driver_config.get("AJ_System_Guidance") or {}, context=None)

    def init_state(self, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Dict[str, Any]:
        return {
            "seq": [],
            "clarifications_used": 0,
            "clar_streak_type": None,
            "clar_streak": 0,
            "used_probe_ids": [],
            "completed": False,
            "path_id": None,
        }

    def migrate_state(self, stored: Any) -> Dict[str, Any]:
        s = stored if isinstance(stored, Mapping) else {}
        path_id = first_of(s, "path_id", "pathId")
        state = {
            "seq": _migrate_seq(s.get("seq")),
            "used_probe_ids": str_list(first_of(s, "used_probe_ids", "usedProbeIDs")),
            "completed": bool(s.get("completed", False)),
            "path_id": None if path_id is None else str(path_id),
        }
        state.update(migrate_clarification_fields(s))
        return state

    def parse_judge_output(self, raw: Any, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> CategoryJudgement:
        mapping = dict((schema.driver_config.get("AnswerTypeMap") if schema else None) or {})
        mapping.setdefault("Neither_Explained_Sufficiently", "NotSpecific")
        return parse_category_judgement(raw, ANSWER_TYPES, mapping, "BiasDirectionOpen")

    def apply_turn(self, turn: TurnInput) -> DriverDecision:
        dc = turn.schema.driver_config
        st = self.migrate_state(turn.state)
        j: CategoryJudgement = turn.judge
        library = resolve_probe_library(turn.schema, turn.item)
        caps = clarification_caps(dc)
        max_turns = max(1, as_int(first_of(turn.policy, "MaxTotalTurns", default=dc.get("MaxTotalTurns")), DEFAULT_MAX_TOTAL_TURNS))
        at = j.answer_type

        def choose(category: str) -> Optional[Probe]:
            legacy = ("Neither_Explained_Sufficiently",) if category == "NotSpecific" else ()
            return category_probe(library, category, st, j, legacy_categories=legacy)

        def decision(signal: str, probe: Optional[Probe], label: str) -> DriverDecision:
            return DriverDecision(
                credited=0.0,
                score=ScorePayload(value=0.0, label=label),
                budget_signal=signal,
                probe=probe,
                ui_badges=[at],
                completed=False,
                telemetry={"seq": list(st["seq"])},
                new_state=st,
            )

        if at == "NotRelevant":
            reset_clarification_streak(st)
            return decision(UNPRODUCTIVE, choose("NotRelevant"), "not_relevant")

        if at == "NotClear":
            if try_clarify(st, "NotClear", caps):
                return decision(NEUTRAL, choose("NotClear"), "not_clear")
            return decision(UNPRODUCTIVE, choose("NotPlausible"), "not_clear_cap_exceeded")

        clarified = False
        if at == "NotSpecific":
            # NotSpecific vẫn vào seq: phân biệt đường đi GP
            clarified = try_clarify(st, "NotSpecific", caps)
        else:
            reset_clarification_streak(st)

        if at in PATH_TYPES:
            st["seq"].append(at)

        outcome = decide_path(st["seq"], path_scores(turn.scoring), max_turns)
        if outcome is not None:
            path_id, value = outcome
            st["completed"] = True
            st["path_id"] = path_id
            logger.debug(f"Path {path_id} reached after seq={st['seq']}")
            return DriverDecision(
                credited=0.0,
                score=ScorePayload(value=value, label="path_dependent", components={"path_id": path_id}),
                budget_signal=PRODUCTIVE if value > 0 else UNPRODUCTIVE,
                probe=None,
                ui_badges=[path_id],
                completed=True,
                telemetry={"seq": list(st["seq"]), "path_id": path_id},
                new_state=st,
            )

        if at == "NotSpecific":
            if clarified:
                return decision(NEUTRAL, choose("NotSpecific"), "not_specific")
            return decision(UNPRODUCTIVE, choose("NotPlausible"), "not_specific_cap_exceeded")
        if at in ("NotDistinct", "NotPlausible"):
            return decision(UNPRODUCTIVE, choose(at), "not_distinct" if at == "NotDistinct" else "not_plausible")
        return decision(NEUTRAL, choose(at), "in_progress")
