# aeq_core/drivers/numeric.py

"""
GenericNumericDriver: câu hỏi ước lượng một con số (Fermi, quy đổi đơn vị...).

Luồng một lượt:
    1) Lấy giá trị: từ judge, hoặc regex trên câu trả lời (Extraction.strategy)
    2) Quy đổi đơn vị về đơn vị gốc (Units)
    3) Tính sai số (abs | percent | log-error) và điểm credit
    4) Chọn probe theo hướng sai số, hoàn tất khi sai số <= completion.closeEnough
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..contract import compile_pattern
from ..errors import DriverConfigError
from ..schema import (
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
from .base import SkillDriver, as_int, as_num, clamp01, first_of

logger = logging.getLogger(__name__)

DEFAULT_REGEX = r"(?P<value>\b[0-9][0-9,\.eE+-]*\b)\s*(?P<unit>[A-Za-z/%]+)?"
ERROR_MODES = ("abs", "percent", "log-error")

DEFAULT_JUDGE_SYSTEM: Dict[str, Any] = {
    "role": "You are a measurement component. Extract exactly one numeric answer per turn, return JSON only.",
    "return_format": {"value": "number", "unit": "string|null", "normalized": "number|null", "confidence": "number 0..1"},
    "rules": [
        "If the user gives multiple numbers, pick the main final answer; ignore examples.",
        "Do not give advice or hints.",
        "Return only a JSON object; no prose.",
    ],
}

DEFAULT_PROBES: Dict[str, List[Dict[str, str]]] = {
    "too_low": [{"id": "low_1", "text": "That seems low. Try decomposing the key parts."}],
    "too_high": [{"id": "high_1", "text": "That seems high. Establish reasonable bounds."}],
    "close_enough": [{"id": "close_1", "text": "Close. Tighten it once more."}],
    "good_continue": [{"id": "good_1", "text": "Good. Try one more refinement."}],
    "bad_format": [{"id": "fmt_1", "text": "Please give one number (and unit if relevant)."}],
    "unclear": [{"id": "unclear_1", "text": "I'm not sure which number you intend. Provide one final number."}],
    "complete": [{"id": "done_1", "text": "Thanks, that's sufficient. Let's move on."}],
}


@dataclass
class NumericReading:
    """Một giá trị số mà judge trích ra."""
    value: Optional[float]
    unit: Optional[str] = None
    normalized: Optional[float] = None
    confidence: Optional[float] = None


# ============================
# Helpers
# ============================

def _finite(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        x = float(str(v).replace(",", "")) if isinstance(v, str) else float(v)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


def read_judge_number(raw: Any) -> Optional[NumericReading]:
    """
    Chấp nhận: số trần, hoặc object có value/normalized/answer/num
    (lồng trong NumericAnswer cũng được).
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        x = _finite(raw)
        return NumericReading(value=x) if x is not None else None
    if not isinstance(raw, Mapping):
        return None

    direct = first_of(raw, "value", "normalized", "answer", "num")
    value = _finite(direct)
    if value is not None:
        unit = raw.get("unit")
        conf = first_of(raw, "confidence", "Confidence")
        return NumericReading(
            value=value,
            unit=None if unit is None else str(unit),
            normalized=_finite(raw.get("normalized")),
            confidence=_finite(conf),
        )
    if raw.get("NumericAnswer") is not None:
        return read_judge_number(raw["NumericAnswer"])
    return None


def _squash(s: str) -> str:
    return re.sub(r"\s+", "", s.lower())


def normalize_unit(units: Optional[Mapping[str, Any]], value: float, unit: Optional[str]) -> float:
    """Nhân theo bảng Units.table (sau khi tra alias). Đơn vị lạ -> giữ nguyên."""
    if not units or not unit:
        return value
    key = _squash(unit)
    aliased = (units.get("aliases") or {}).get(key, key)
    mult = _finite((units.get("table") or {}).get(aliased))
    if mult is not None:
        return value * mult
    return value


def extract_number_with_regex(text: str, extraction: Mapping[str, Any]) -> Optional[Tuple[float, Optional[str]]]:
    pattern = compile_pattern(
        extraction.get("regex") or DEFAULT_REGEX, str(extraction.get("flags", "i")), "Extraction.regex"
    )
    matches = list(pattern.finditer(text or ""))
    if not matches:
        return None

    def raw_value(m: "re.Match[str]") -> str:
        if "value" in m.groupdict():
            return (m.group("value") or "").replace(",", "")
        return (m.group(1) if m.groups() else m.group(0)).replace(",", "")

    def unit_of(m: "re.Match[str]") -> Optional[str]:
        return m.groupdict().get("unit")

    pick = extraction.get("pick") or "last"
    if pick in ("max", "min"):
        nums = [(m, _finite(raw_value(m))) for m in matches]
        nums = [(m, n) for m, n in nums if n is not None]
        if not nums:
            return None
        m, n = (max if pick == "max" else min)(nums, key=lambda z: z[1])
        return n, unit_of(m)

    candidate = matches[0] if pick == "first" else matches[-1]
    n = _finite(raw_value(candidate))
    if n is None:
        return None
    return n, unit_of(candidate)


def compute_error(x: float, target: float, mode: str) -> Tuple[float, int]:
    """Trả về (sai số >= 0, dấu của x - target)."""
    d = x - target
    sign = (d > 0) - (d < 0)
    if mode == "abs":
        return abs(d), sign
    if mode == "percent":
        if target == 0:
            return abs(d), sign
        return abs(d) / abs(target), sign
    # log-error: không xác định khi giá trị <= 0 -> quay về sai số tuyến tính
    if x <= 0 or target <= 0:
        return abs(d), sign
    diff = math.log10(x) - math.log10(target)
    return abs(diff), 1 if diff >= 0 else -1


def credit_from_error(err: float, scoring: Mapping[str, Any]) -> float:
    thresholds = scoring.get("thresholds")
    if thresholds:
        full = as_num(thresholds.get("full"), 0.0)
        partial = thresholds.get("partial")
        partial_credit = as_num(thresholds.get("partialCredit"), 0.5)
        if err <= full:
            return 1.0
        if isinstance(partial, (int, float)) and not isinstance(partial, bool):
            return partial_credit if err <= partial else 0.0
        if full > 0 and err <= 2 * full:
            return clamp01(1 - (err - full) / full)
        return 0.0

    ramp = scoring.get("ramp")
    if ramp:
        tol = as_num(ramp.get("tolerance"), 0.0)
        shape = as_num(ramp.get("shape"), 1.0)
        if tol <= 0:
            return 1.0 if err == 0 else 0.0
        return clamp01(1 - clamp01(err / tol) ** shape)

    gaussian = scoring.get("gaussian")
    if gaussian:
        sigma = as_num(gaussian.get("sigma"), 0.0)
        if sigma <= 0:
            return 1.0 if err == 0 else 0.0
        z = err / sigma
        return clamp01(math.exp(-0.5 * z * z))

    if err <= 1:
        return clamp01(1 - 0.5 * err)
    return 0.0


def close_enough_for(scoring: Mapping[str, Any]) -> Optional[float]:
    completion = scoring.get("completion") or {}
    if completion.get("closeEnough") is not None:
        return _finite(completion["closeEnough"])
    thresholds = scoring.get("thresholds") or {}
    if thresholds.get("full") is not None:
        return _finite(thresholds["full"])
    ramp = scoring.get("ramp") or {}
    if ramp.get("tolerance") is not None:
        tol = _finite(ramp["tolerance"])
        return None if tol is None else 0.1 * tol
    return None


def merged_probes(driver_config: Mapping[str, Any]) -> Dict[str, List[Dict[str, str]]]:
    out = {k: list(v) for k, v in DEFAULT_PROBES.items()}
    for category, group in (driver_config.get("ProbeLibrary") or {}).items():
        if isinstance(group, list) and group:
            out[category] = list(group)
    return out


def _first_probe(library: Mapping[str, List[Dict[str, str]]], category: str) -> Probe:
    group = library.get(category) or []
    if group:
        return Probe(id=str(group[0]["id"]), text=str(group[0].get("text", "")), category=category)
    return Probe(id=None, text="Please refine your estimate.", category=category)


# ============================
# Driver
# ============================

class GenericNumericDriver(SkillDriver):
    id = "generic.numeric.v1"
    kind = "generic.numeric"
    version = "1.1.0"
    capabilities = {"uses_probes": True, "continuous_score": True, "needs_scenario_in_turn": False}

    def build_judge_init(self, schema: SchemaDefinition, item: Optional[ItemDefinition] = None) -> JudgeInit:
        guidance = schema.driver_config.get("AJ_System_Guidance") or DEFAULT_JUDGE_SYSTEM
        return JudgeInit(system_guidance=guidance, context=None)

    def init_state(self, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Dict[str, Any]:
        return {"attempts": 0, "best_error": None, "last_value": None, "completed": False}

    def migrate_state(self, stored: Any) -> Dict[str, Any]:
        s = stored if isinstance(stored, Mapping) else {}
        return {
            "attempts": as_int(s.get("attempts"), 0),
            "best_error": _finite(first_of(s, "best_error", "bestError")),
            "last_value": _finite(first_of(s, "last_value", "lastValue")),
            "completed": bool(s.get("completed", False)),
        }

    def parse_judge_output(self, raw: Any, schema: Optional[SchemaDefinition] = None, item: Optional[ItemDefinition] = None) -> Optional[NumericReading]:
        return read_judge_number(raw)

    def apply_turn(self, turn: TurnInput) -> DriverDecision:
        cfg = turn.schema.driver_config
        scoring = turn.scoring
        target = _finite(scoring.get("target"))
        if target is None:
            raise DriverConfigError(f"{self.id}: ScoringSpec requires a numeric 'target'")
        mode = scoring.get("mode")
        if not mode:
            raise DriverConfigError(f"{self.id}: ScoringSpec requires a 'mode'")
        if mode not in ERROR_MODES:
            raise DriverConfigError(f"{self.id}: unknown error mode '{mode}'")

        extraction = cfg.get("Extraction") or {}
        strategy = extraction.get("strategy") or "either"
        if strategy == "aj":
            strategy = "judge"
        units = cfg.get("Units")
        min_conf = as_num((cfg.get("ConfidencePolicy") or {}).get("MinAcceptConfidence"), 0.0)
        probes = merged_probes(cfg)
        st = self.migrate_state(turn.state)

        # 1) Trích giá trị
        source = "none"
        reading: Optional[NumericReading] = None
        value: Optional[float] = None
        if strategy != "regex":
            reading = turn.judge if isinstance(turn.judge, NumericReading) else read_judge_number(turn.judge)
            if reading is not None:
                candidate = reading.normalized if reading.normalized is not None else reading.value
                if candidate is not None:
                    value = normalize_unit(units, candidate, reading.unit)
                    source = "judge"
                low_conf = reading.confidence is not None and reading.confidence < min_conf
                if low_conf and strategy != "judge":
                    logger.debug(f"Judge value below confidence floor ({reading.confidence:.2f} < {min_conf:.2f}); trying regex")
                    source, value = "none", None
        if source != "judge" and strategy != "judge":
            rx = extract_number_with_regex(turn.user_text, extraction)
            if rx is not None:
                value = normalize_unit(units, rx[0], rx[1])
                source = "regex"

        st["attempts"] += 1

        if value is None or not math.isfinite(value):
            return DriverDecision(
                credited=0.0,
                score=ScorePayload(value=0.0, label="format"),
                budget_signal=UNPRODUCTIVE,
                probe=_first_probe(probes, "bad_format"),
                ui_badges=["Numeric: Unreadable"],
                completed=False,
                telemetry={"source": source, "reason": "no_numeric_value", "attempts": st["attempts"]},
                new_state=st,
                error_code="NO_NUMERIC_VALUE",
            )

        # 2) Sai số + credit
        err, sign = compute_error(value, target, mode)
        credit = credit_from_error(err, scoring)
        st["last_value"] = value
        st["best_error"] = err if st["best_error"] is None else min(st["best_error"], err)

        close_enough = close_enough_for(scoring)
        hit_close = close_enough is not None and err <= close_enough
        st["completed"] = hit_close

        # 3) Probe
        if hit_close:
            category = "complete"
        elif credit >= 0.9:
            category = "close_enough"
        elif credit > 0:
            category = "good_continue"
        else:
            category = "too_low" if sign < 0 else "too_high"

        return DriverDecision(
            credited=credit,
            score=ScorePayload(value=clamp01(credit), label=mode, components={"error": err}),
            budget_signal=PRODUCTIVE if credit > 0 else UNPRODUCTIVE,
            probe=_first_probe(probes, category),
            ui_badges=[f"Numeric: {value:g}", f"Error({mode}): {round(err, 4)}", f"Credit: {round(credit, 3)}"],
            completed=hit_close,
            telemetry={
                "source": source,
                "normalized_value": value,
                "target": target,
                "mode": mode,
                "error": err,
                "credit": credit,
                "attempts": st["attempts"],
            },
            new_state=st,
        )
