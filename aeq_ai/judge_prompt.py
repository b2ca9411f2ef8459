# aeq_ai/judge_prompt.py

"""
Dựng messages cho judge (chat completions).

System: luật JSON nghiêm ngặt -> mô tả schema -> guidance đo lường
        -> thứ tự ưu tiên AnswerType -> thư viện probe.
User:   stem + câu trả lời -> ngữ cảnh tích lũy -> SchemaID + contract nguyên văn.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from aeq_core.drivers.base import resolve_probe_library
from aeq_core.schema import ItemDefinition, JudgeInit, SchemaDefinition

STRICT_JSON_RULES = [
    "You MUST return valid strict JSON only.",
    "Do NOT include markdown, code fences, prose, or commentary.",
    "Do NOT include keys that are not allowed by the schema.",
    "No trailing commas; valid strict JSON.",
    "If the JSON Schema permits a plain number, you may return a single number (without quotes) when appropriate.",
]

STRICT_JSON_REMINDER = (
    "Reminder: Return strict JSON ONLY that conforms to the schema. No markdown, no code fences, "
    "no explanations. If the schema permits a number, return a bare number."
)


@dataclass
class TurnContext:
    """Ngữ cảnh kernel chuyển cho judge ở mỗi lượt (các trường None sẽ bị bỏ qua)."""
    user_text: str
    accepted_theme_tags: Optional[List[str]] = None
    distinct_count_so_far: Optional[int] = None
    target_distinct_explanations: Optional[int] = None
    used_probe_ids: List[str] = field(default_factory=list)
    scenario_definition: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, user_text: str, payload: Optional[Dict[str, Any]] = None) -> "TurnContext":
        """Lấy ngữ cảnh từ payload của unit đang chạy (nếu có)."""
        p = payload or {}
        return cls(
            user_text=user_text,
            accepted_theme_tags=p.get("accepted_theme_tags"),
            distinct_count_so_far=p.get("distinct_count"),
            target_distinct_explanations=p.get("target_distinct"),
            used_probe_ids=list(p.get("used_probe_ids") or []),
        )


def _pretty(o: Any) -> str:
    return json.dumps(o, indent=2, ensure_ascii=False, default=str)


def _guidance_text(guidance: Any) -> str:
    if isinstance(guidance, str):
        return guidance
    return f"You are the measurement component. Follow this JSON guidance:\n{_pretty(guidance)}"


def build_system_message(schema: SchemaDefinition, item: Optional[ItemDefinition], guidance: Any = None) -> str:
    dc = schema.driver_config
    if guidance is None:
        guidance = dc.get("AJ_System_Guidance") or ""

    parts = ["STRICT OUTPUT RULES:\n" + "\n".join(STRICT_JSON_RULES)]
    if schema.description:
        parts.append(f"SCHEMA DESCRIPTION:\n{schema.description}")
    parts.append(f"MEASUREMENT GUIDANCE:\n{_guidance_text(guidance)}")

    dominance = dc.get("DominanceOrder")
    if not dominance and isinstance(guidance, dict):
        dominance = guidance.get("DominanceOrder")
    if dominance:
        parts.append(
            "DOMINANCE ORDER (If multiple AnswerTypes apply, choose the one that appears earliest in this list):\n"
            + _pretty(dominance)
        )

    library = resolve_probe_library(schema, item) if item is not None else dict(dc.get("ProbeLibrary") or {})
    if library:
        parts.append(f"PROBE LIBRARY (for RecommendedProbeID; prefer item-level if present):\n{_pretty(library)}")

    return "\n\n".join(parts)


def _context_bits(item: ItemDefinition, ctx: TurnContext) -> List[str]:
    content = item.content
    bits: List[str] = []

    scenario = ctx.scenario_definition or content.get("ScenarioDefinition")
    if scenario:
        bits.append(f"Scenario A/B labels: {_pretty(scenario)}")
    registry = content.get("ThemeRegistry")
    if isinstance(registry, list) and registry:
        bits.append(f"ThemeRegistry (use ThemeID for ThemeTag, or NOVEL:label):\n{_pretty(registry)}")
    too_general = content.get("TooGeneral")
    if isinstance(too_general, list) and too_general:
        bits.append(f"TooGeneral examples:\n{_pretty(too_general)}")

    if ctx.accepted_theme_tags is not None:
        bits.append(f"AcceptedThemeTags so far: {_pretty(ctx.accepted_theme_tags)}")
    if ctx.distinct_count_so_far is not None:
        bits.append(f"DistinctCountSoFar: {ctx.distinct_count_so_far}")
    if ctx.target_distinct_explanations is not None:
        bits.append(f"TargetDistinctExplanations: {ctx.target_distinct_explanations}")
    if ctx.used_probe_ids:
        bits.append(f"UsedProbeIDs: {_pretty(ctx.used_probe_ids)}")
    return bits


def build_judge_messages(schema: SchemaDefinition, item: ItemDefinition, ctx: TurnContext) -> List[Dict[str, str]]:
    bits = _context_bits(item, ctx)
    context_block = ("\n\nCONTEXT:\n" + "\n\n".join(bits)) if bits else ""
    user_prompt = (
        f"ITEM STEM:\n{item.stem}\n\nUSER ANSWER:\n{ctx.user_text}{context_block}"
        f"\n\nSCHEMA ID: {schema.schema_id}"
        "\n\nReturn JSON only that conforms to the following JSON Schema (object or boolean):"
        f"\n\n{_pretty(schema.judge_contract)}"
        "\n\nIMPORTANT: Your entire response must be only the JSON object, starting with { and ending with }. "
        "Do not repeat the prompt or add any other text."
    )
    return [
        {"role": "system", "content": build_system_message(schema, item)},
        {"role": "user", "content": user_prompt},
    ]


def build_priming_messages(schema: SchemaDefinition, item: Optional[ItemDefinition], init: JudgeInit) -> List[Dict[str, str]]:
    """Messages priming: guidance của driver + ngữ cảnh, judge chỉ cần xác nhận {"ok": true}."""
    user_prompt = f"SCHEMA ID: {schema.schema_id}\nGUIDANCE VERSION: {schema.guidance_version}"
    if item is not None:
        user_prompt += f"\nITEM ID: {item.item_id}"
    if init.context is not None:
        user_prompt += f"\n\nCONTEXT:\n{_pretty(init.context)}"
    user_prompt += '\n\nAcknowledge that you will follow the guidance above. Return exactly {"ok": true}.'
    return [
        {"role": "system", "content": build_system_message(schema, item, init.system_guidance)},
        {"role": "user", "content": user_prompt},
    ]
