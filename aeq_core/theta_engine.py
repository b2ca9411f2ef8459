# aeq_core/theta_engine.py

"""
Ability Estimator: cập nhật vector θ theo từng ability key.

Đây là cập nhật trực tuyến với độ bất định giảm dần theo cấp số nhân,
KHÔNG phải hậu nghiệm Bayes đầy đủ:
    mean' = mean + (step * a) * score
    var'  = max(minVar, var * varDecay)
"""

import math
from typing import Any, Dict, Mapping

DEFAULT_STEP = 0.25
DEFAULT_VAR_DECAY = 0.9
DEFAULT_MIN_VAR = 0.5
DEFAULT_DISCRIMINATION = 1.0

ThetaState = Dict[str, Dict[str, float]]


def _as_float(v: Any, default: float) -> float:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return default
    return x if math.isfinite(x) else default


def score_value(score: Any) -> float:
    """Chấp nhận ScorePayload, mapping có 'value', hoặc số."""
    if hasattr(score, "value") and not isinstance(score, Mapping):
        return _as_float(score.value, 0.0)
    if isinstance(score, Mapping):
        return _as_float(score.get("value"), 0.0)
    return _as_float(score, 0.0)


def get_component(theta: Mapping[str, Mapping[str, float]], key: str) -> Dict[str, float]:
    comp = theta.get(key)
    if not comp:
        return {"mean": 0.0, "var": 1.0}
    return {"mean": float(comp.get("mean", 0.0)), "var": float(comp.get("var", 1.0))}


def set_component(theta: Mapping[str, Mapping[str, float]], key: str, comp: Mapping[str, float]) -> ThetaState:
    out = {k: dict(v) for k, v in theta.items()}
    out[key] = {"mean": float(comp["mean"]), "var": float(comp["var"])}
    return out


def update_theta(
    theta: Mapping[str, Mapping[str, float]],
    ability_key: str,
    score: Any,
    scoring: Mapping[str, Any],
) -> ThetaState:
    """
    Một bước cập nhật θ cho `ability_key`.
    Các key khác giữ nguyên; trả về dict mới.
    """
    scoring = scoring or {}
    knobs = scoring.get("theta") or {}
    step = _as_float(knobs.get("step"), DEFAULT_STEP)
    var_decay = min(1.0, max(0.0, _as_float(knobs.get("varDecay"), DEFAULT_VAR_DECAY)))
    min_var = _as_float(knobs.get("minVar"), DEFAULT_MIN_VAR)
    # Hệ số phân biệt kiểu IRT (a), tùy chọn
    a = _as_float((scoring.get("irt") or {}).get("a"), DEFAULT_DISCRIMINATION)

    cur = get_component(theta, ability_key)
    mean = cur["mean"] + (step * a) * score_value(score)
    var = max(min_var, cur["var"] * var_decay)
    return set_component(theta, ability_key, {"mean": mean, "var": var})


def standard_error(theta: Mapping[str, Mapping[str, float]], ability_key: str) -> float:
    """SE hiển thị = sqrt(var)."""
    return math.sqrt(max(0.0, get_component(theta, ability_key)["var"]))
