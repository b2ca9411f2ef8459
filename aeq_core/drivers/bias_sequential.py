# aeq_core/drivers/bias_sequential.py

"""
BiasDirectionSequentialDriver: nhận ra hai hướng thiên lệch (dương / âm), mỗi hướng tính một lần.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

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

ANSWER_TYPES = (
    "BiasPositive",
    "BiasNegative",
    "NotSpecific",
    "NotClear",
    "NotRelevant",
    "NotPlausible",
    "MultipleExplanation",
)

DEFAULT_PROBE_CATEGORY_FOR: Dict[str, str] = {
    "BiasPositive": "OppositeFromPositive",
    "BiasNegative": "OppositeFromNegative",
    "NotSpecific": "NotSpecific",
    "NotClear": "NotClear",
    "NotRelevant": "NotRelevant",
    "NotPlausible": "NotPlausible",
    "MultipleExplanation": "MultipleExplanation",
}

# Hướng -> khóa trong payload
_DIRECTIONS = {"BiasPositive": "positive", "BiasNegative": "negative"}


def _target_distinct(schema: Optional[SchemaDefinition]) -> int:
    if schema is None:
        return 2
    value = first_of(schema.scoring_spec, "TargetDistinctExplanations", default=schema.driver_config.get("TargetDistinctExplanations"))
    return max(1, as_int(value, 2))


class BiasDirectionSequentialDriver(SkillDriver):
    id = "bias.direction.sequential.v1"
    kind = "bias.direction"
    version = "1.0.0"
    capabilities = {"uses_probes": True, "continuous_score": False, "needs_scenario_in_turn": False}
    counts_distinct = True

    def build_judge_init(self, schema: SchemaDefinition, item: Optional[ItemDefinition] = None) -> JudgeInit:
        return JudgeInit(system_guidance=schema.driver_config.get("AJ_System_Guidance") or "", context=None)

    def init_state(self, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Dict[str, Any]:
        return {
            "positive": False,
            "negative": False,
            "clarifications_used": 0,
            "clar_streak_type": None,
            "clar_streak": 0,
            "used_probe_ids": [],
            "distinct_count": 0,
            "target_distinct": _target_distinct(schema),
            "completed": False,
        }

    def migrate_state(self, stored: Any) -> Dict[str, Any]:
        s = stored if isinstance(stored, Mapping) else {}
        positive = bool(s.get("positive", False))
        negative = bool(s.get("negative", False))
        state = {
            "positive": positive,
            "negative": negative,
            "used_probe_ids": str_list(first_of(s, "used_probe_ids", "usedProbeIDs")),
            "distinct_count": as_int(first_of(s, "distinct_count", "distinctCount"), int(positive) + int(negative)),
            "target_distinct": max(1, as_int(first_of(s, "target_distinct", "targetDistinct"), 2)),
            "completed": bool(s.get("completed", False)),
        }
        state.update(migrate_clarification_fields(s))
        return state

    def parse_judge_output(self, raw: Any, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> CategoryJudgement:
        mapping = dict((schema.driver_config.get("AnswerTypeMap") if schema else None) or {})
        return parse_category_judgement(raw, ANSWER_TYPES, mapping, "BiasDirection")

    def apply_turn(self, turn: TurnInput) -> DriverDecision:
        dc = turn.schema.driver_config
        st = self.migrate_state(turn.state)
        j: CategoryJudgement = turn.judge
        library = resolve_probe_library(turn.schema, turn.item)
        caps = clarification_caps(dc)
        routes = {**DEFAULT_PROBE_CATEGORY_FOR, **(dc.get("ProbeCategoryFor") or {})}
        conf_policy = {**(dc.get("ConfidencePolicy") or {}), **(turn.policy.get("ConfidencePolicy") or {})}
        min_conf = as_num(conf_policy.get("MinAcceptConfidence"), 0.6)

        def choose(answer_type: str) -> Optional[Probe]:
            return category_probe(library, routes.get(answer_type, answer_type), st, j)

        credited = 0.0
        score: Optional[ScorePayload] = None
        probe: Optional[Probe] = None
        signal = UNPRODUCTIVE
        at = j.answer_type

        if at in ("NotSpecific", "NotClear"):
            if try_clarify(st, at, caps):
                probe = choose(at)
                signal = NEUTRAL
            else:
                probe = choose("NotPlausible")
        else:
            reset_clarification_streak(st)

        if at in ("MultipleExplanation", "NotRelevant", "NotPlausible"):
            probe = choose(at)
        elif at in _DIRECTIONS:
            key = _DIRECTIONS[at]
            if j.confidence >= min_conf and not st[key]:
                st[key] = True
                st["distinct_count"] = int(st["positive"]) + int(st["negative"])
                credited = 1.0
                score = ScorePayload(value=1.0, label="polytomous_increment")
                signal = PRODUCTIVE
                if st["distinct_count"] < st["target_distinct"]:
                    probe = choose(at)
            else:
                # Hướng đã được ghi nhận, hoặc độ tin cậy thấp
                probe = choose("NotPlausible")

        if st["distinct_count"] >= st["target_distinct"]:
            st["completed"] = True

        return DriverDecision(
            credited=credited,
            score=score,
            budget_signal=signal,
            probe=probe,
            ui_badges=[
                f"Dir+: {'✔' if st['positive'] else '✘'}",
                f"Dir-: {'✔' if st['negative'] else '✘'}",
                f"Clar: {st['clarifications_used']}",
            ],
            completed=st["completed"],
            telemetry={
                "last_answer_type": at,
                "distinct_count": st["distinct_count"],
                "target_distinct": st["target_distinct"],
            },
            new_state=st,
        )
