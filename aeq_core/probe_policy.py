# aeq_core/probe_policy.py

"""
Probe Policy Enforcer.

- Probe thư viện (id != None): đi thẳng, tác giả schema đã duyệt nội dung.
- Probe do judge sinh (id == None):
    * mode "disabled"  -> luôn chặn
    * mode "allowlist" -> chỉ cho qua nếu category nằm trong ProbePolicy.AllowGeneratedFor,
      không chứa gợi ý (hint) bị cấm, và bị cắt nếu dài hơn MaxGeneratedChars.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .contract import compile_pattern
from .schema import Probe, SchemaDefinition

logger = logging.getLogger(__name__)

MODE_ALLOWLIST = "allowlist"
MODE_DISABLED = "disabled"
GENERATED_PROBE_MODES = (MODE_ALLOWLIST, MODE_DISABLED)

DEFAULT_MAX_GENERATED_CHARS = 160
ELLIPSIS = "…"

# Các mẫu "mớm" đáp án cho người làm bài
DEFAULT_HINT_PATTERNS: List[str] = [
    r"\bfor example\b",
    r"\be\.g\.",
    r"\bbecause\b",
    r"\btry mentioning\b",
    r"\bsuch as\b",
    r"\bconsider\b",
]


@dataclass
class ProbeCheck:
    probe: Optional[Probe]
    blocked: bool = False
    truncated: bool = False
    reason: Optional[str] = None


def effective_mode(schema: SchemaDefinition, mode: Optional[str] = None) -> str:
    """'disabled' ở bất kỳ tầng nào (kernel hoặc schema) đều thắng."""
    schema_mode = str(schema.probe_policy.get("GeneratedProbeMode") or MODE_ALLOWLIST)
    if MODE_DISABLED in (mode, schema_mode):
        return MODE_DISABLED
    return MODE_ALLOWLIST


def enforce_probe_policy(schema: SchemaDefinition, probe: Optional[Probe], mode: Optional[str] = None) -> ProbeCheck:
    if probe is None:
        return ProbeCheck(probe=None)

    if probe.id is not None:
        return ProbeCheck(probe=probe)

    if effective_mode(schema, mode) == MODE_DISABLED:
        logger.warning(f"🚫 Blocked generated probe (generated probes disabled) for schema {schema.schema_id}")
        return ProbeCheck(probe=None, blocked=True, reason="generated_probes_disabled")

    policy = schema.probe_policy
    allowed = policy.get("AllowGeneratedFor") or []
    if probe.category not in allowed:
        logger.warning(f"🚫 Blocked generated probe in category {probe.category!r} for schema {schema.schema_id}")
        return ProbeCheck(probe=None, blocked=True, reason="category_not_allowed")

    patterns = DEFAULT_HINT_PATTERNS + list(policy.get("DisallowHintPatterns") or [])
    for pattern in patterns:
        if compile_pattern(pattern, re.IGNORECASE, "DisallowHintPatterns").search(probe.text):
            logger.warning(f"🚫 Blocked generated probe matching hint pattern {pattern!r}")
            return ProbeCheck(probe=None, blocked=True, reason="hint_pattern")

    cap = int(policy.get("MaxGeneratedChars") or DEFAULT_MAX_GENERATED_CHARS)
    if len(probe.text) > cap:
        text = probe.text[: max(0, cap - 1)] + ELLIPSIS
        return ProbeCheck(probe=Probe(id=None, text=text, category=probe.category), truncated=True, reason="truncated")

    return ProbeCheck(probe=probe)
