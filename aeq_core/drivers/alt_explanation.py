# aeq_core/drivers/alt_explanation.py

"""
AlternativeExplanationDriver (AEG): "A đi kèm B, còn giải thích nào khác ngoài A gây ra B?"

Người làm bài phải đưa ra `target_distinct` giải thích KHÁC NHAU:
- theme có trong ThemeRegistry của item, hoặc tag "NOVEL:..." (ngưỡng tin cậy cao hơn)
- theme lặp lại -> NotDistinct
- NotSpecific / NotClear đi qua ngân sách làm rõ
"""

from __future__ import annotations

import logging
import re
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

logger = logging.getLogger(__name__)

ANSWER_TYPES = (
    "Good",
    "NotDistinct",
    "NotSpecific",
    "NotClear",
    "NotRelevant",
    "NotPlausible",
    "MultipleExplanation",
    "RunsThroughA",
)

DEFAULT_TARGET_DISTINCT = 2
DEFAULT_SCORING_MAP_ID = "Map_2Expl"
FALLBACK_PROBE_TEXT = "Please provide one clear explanation."

_NOVEL = re.compile(r"^NOVEL:", re.IGNORECASE)


def is_novel(tag: Optional[str]) -> bool:
    return bool(tag) and bool(_NOVEL.match(tag))


def is_known_theme(tag: Optional[str], registry: Any) -> bool:
    if not tag or not isinstance(registry, list):
        return False
    return any(isinstance(t, Mapping) and t.get("ThemeID") == tag for t in registry)


def answer_type_map(schema: Optional[SchemaDefinition]) -> Dict[str, str]:
    out = dict((schema.driver_config.get("AnswerTypeMap") if schema else None) or {})
    # Nhãn thân thiện hơn cho RunsThroughA
    out.setdefault("RejectsPremise", "RunsThroughA")
    return out


def target_distinct_for(policy: Mapping[str, Any], scoring: Mapping[str, Any]) -> int:
    defaults = scoring.get("default") or {}
    value = first_of(policy, "TargetDistinctExplanations") or first_of(
        scoring, "TargetDistinctExplanations", default=defaults.get("TargetDistinctExplanations")
    )
    return max(1, as_int(value, DEFAULT_TARGET_DISTINCT))


def scoring_map_id_for(policy: Mapping[str, Any], scoring: Mapping[str, Any]) -> str:
    defaults = scoring.get("default") or {}
    return str(policy.get("ScoringMapID") or scoring.get("ScoringMapID") or defaults.get("ScoringMapID") or DEFAULT_SCORING_MAP_ID)


class AlternativeExplanationDriver(SkillDriver):
    id = "aeq.aeg.v1"
    kind = "aeg"
    version = "1.1.0"
    capabilities = {"uses_probes": True, "continuous_score": False, "needs_scenario_in_turn": False}
    counts_distinct = True

    def build_judge_init(self, schema: SchemaDefinition, item: Optional[ItemDefinition] = None) -> JudgeInit:
        scenario = item.content.get("ScenarioDefinition") if item else None
        return JudgeInit(system_guidance=schema.driver_config.get("AJ_System_Guidance") or "", context=scenario)

    def init_state(self, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Dict[str, Any]:
        policy: Dict[str, Any] = {}
        scoring: Dict[str, Any] = {}
        if schema is not None:
            policy.update(schema.policy_defaults)
            scoring.update(schema.scoring_spec)
        if item is not None:
            policy.update(item.policy_overrides)
            scoring.update(item.scoring_overrides)
        return {
            "accepted_theme_tags": [],
            "distinct_count": 0,
            "used_probe_ids": [],
            "clarifications_used": 0,
            "clar_streak_type": None,
            "clar_streak": 0,
            "target_distinct": target_distinct_for(policy, scoring),
            "scoring_map_id": scoring_map_id_for(policy, scoring),
            "completed": False,
        }

    def migrate_state(self, stored: Any) -> Dict[str, Any]:
        p = stored if isinstance(stored, Mapping) else {}
        tags = str_list(first_of(p, "accepted_theme_tags", "acceptedThemeTags"))
        state = {
            "accepted_theme_tags": tags,
            "distinct_count": as_int(first_of(p, "distinct_count", "distinctCount"), len(tags)),
            "used_probe_ids": str_list(first_of(p, "used_probe_ids", "usedProbeIDs")),
            "target_distinct": max(1, as_int(first_of(p, "target_distinct", "targetDistinct"), DEFAULT_TARGET_DISTINCT)),
            "scoring_map_id": str(first_of(p, "scoring_map_id", "scoringMapID", default=DEFAULT_SCORING_MAP_ID)),
            "completed": bool(p.get("completed", False)),
        }
        state.update(migrate_clarification_fields(p))
        return state

    def parse_judge_output(self, raw: Any, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> CategoryJudgement:
        return parse_category_judgement(raw, ANSWER_TYPES, answer_type_map(schema), "AEG")

    def apply_turn(self, turn: TurnInput) -> DriverDecision:
        dc = turn.schema.driver_config
        st = self.migrate_state(turn.state)
        j: CategoryJudgement = turn.judge
        library = resolve_probe_library(turn.schema, turn.item)
        registry = turn.item.content.get("ThemeRegistry")
        caps = clarification_caps(dc)

        # Override mới nhất của item/schema; không bao giờ giảm distinct_count
        st["target_distinct"] = target_distinct_for(turn.policy, turn.scoring)
        st["scoring_map_id"] = scoring_map_id_for(turn.policy, turn.scoring)

        conf_policy = {**(dc.get("ConfidencePolicy") or {}), **(turn.policy.get("ConfidencePolicy") or {})}
        conf_good = as_num(conf_policy.get("GoodAcceptanceMinConfidence"), 0.6)
        conf_novel = as_num(conf_policy.get("NovelAcceptanceMinConfidence"), 0.75)
        runs_through_category = str(dc.get("GeneratedProbeCategoryLabel") or "RunsThroughA")

        # Good phải có ThemeTag và chưa được chấp nhận trước đó
        at = j.answer_type
        tag = j.theme_tag.strip() if j.theme_tag else None
        if at == "Good" and not tag:
            at = "NotSpecific"
        if at == "Good" and tag in st["accepted_theme_tags"]:
            at = "NotDistinct"

        def probe_for(category: str) -> Optional[Probe]:
            return category_probe(library, category, st, j, FALLBACK_PROBE_TEXT)

        credited = 0.0
        score: Optional[ScorePayload] = None
        probe: Optional[Probe] = None
        signal = UNPRODUCTIVE
        badges = [f"AnswerType: {at}"]

        if at in ("NotSpecific", "NotClear"):
            if try_clarify(st, at, caps):
                probe = probe_for(at)
                signal = NEUTRAL
            else:
                probe = probe_for("NotPlausible")
        elif at != "Good":
            # Good chưa được chấp nhận vẫn tính vào chuỗi NotSpecific
            reset_clarification_streak(st)

        if at == "RunsThroughA":
            probe = probe_for(runs_through_category)
        elif at in ("MultipleExplanation", "NotRelevant", "NotPlausible"):
            probe = probe_for(at)
        elif at == "NotDistinct":
            probe = probe_for("NotDistinct")
            if tag:
                badges.append(f"Theme: {tag}")
        elif at == "Good":
            novel = is_novel(tag)
            known = not novel and is_known_theme(tag, registry)
            if (known and j.confidence >= conf_good) or (novel and j.confidence >= conf_novel):
                reset_clarification_streak(st)
                credited = 1.0
                score = ScorePayload(value=1.0, label="polytomous_increment")
                st["accepted_theme_tags"].append(tag)
                st["distinct_count"] = len(st["accepted_theme_tags"])
                signal = PRODUCTIVE
                if st["distinct_count"] < st["target_distinct"]:
                    probe = probe_for("Good")
            else:
                # Theme lạ hoặc độ tin cậy thấp -> xin làm rõ
                logger.debug(f"AEG theme {tag!r} not accepted (confidence {j.confidence:.2f})")
                if try_clarify(st, "NotSpecific", caps):
                    probe = probe_for("NotSpecific")
                    signal = NEUTRAL
                else:
                    probe = probe_for("NotPlausible")
            badges.append(f"Theme: {tag}")

        if st["distinct_count"] >= st["target_distinct"]:
            st["completed"] = True

        return DriverDecision(
            credited=credited,
            score=score,
            budget_signal=signal,
            probe=probe,
            ui_badges=badges,
            completed=st["completed"],
            telemetry={
                "theme_tag": tag,
                "confidence": j.confidence,
                "distinct_count": st["distinct_count"],
                "target_distinct": st["target_distinct"],
            },
            new_state=st,
        )
