# aeq_core/priming.py

"""
Priming judge: gửi guidance của driver cho judge MỘT lần cho mỗi (driver, GuidanceVersion) trong phiên.

Không có transport -> đánh dấu lạc quan (transport_skipped).
Transport trả False hoặc ném lỗi -> KHÔNG đánh dấu, lượt sau thử lại.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .schema import ItemDefinition, JudgeInit, SchemaDefinition, SessionSnapshot

logger = logging.getLogger(__name__)

# transport(session_id, driver, schema, item, payload, guidance_version) -> bool | None
PrimingTransport = Callable[..., Optional[bool]]


@dataclass
class PrimingResult:
    primed: bool
    reason: str  # cache_hit | transport_skipped | initialized | transport_failed
    guidance_version: str
    payload: JudgeInit


def is_primed(session: SessionSnapshot, driver_id: str, guidance_version: str) -> bool:
    entry = session.judge_priming.get(driver_id)
    return bool(entry) and entry.get("guidance_version") == guidance_version and entry.get("primed") is True


def _mark_primed(session: SessionSnapshot, driver_id: str, guidance_version: str) -> None:
    session.judge_priming[driver_id] = {"guidance_version": guidance_version, "primed": True}
    logger.debug(f"Judge primed: driver={driver_id} guidance={guidance_version} session={session.id}")


def ensure_judge_primed(
    session: SessionSnapshot,
    schema: SchemaDefinition,
    driver: Any,
    item: Optional[ItemDefinition] = None,
    transport: Optional[PrimingTransport] = None,
) -> PrimingResult:
    """Cập nhật session.judge_priming tại chỗ."""
    payload = driver.build_judge_init(schema, item)
    version = schema.guidance_version

    if is_primed(session, driver.id, version):
        logger.debug(f"Priming cache hit: driver={driver.id} guidance={version}")
        return PrimingResult(True, "cache_hit", version, payload)

    if transport is None:
        _mark_primed(session, driver.id, version)
        return PrimingResult(True, "transport_skipped", version, payload)

    try:
        ok = transport(
            session_id=session.id,
            driver=driver,
            schema=schema,
            item=item,
            payload=payload,
            guidance_version=version,
        )
    except Exception as e:
        logger.warning(f"⚠️ Priming transport raised for driver {driver.id}: {e}", exc_info=True)
        return PrimingResult(False, "transport_failed", version, payload)

    if ok is False:
        logger.warning(f"⚠️ Priming transport declined for driver {driver.id} (guidance {version})")
        return PrimingResult(False, "transport_failed", version, payload)

    _mark_primed(session, driver.id, version)
    return PrimingResult(True, "initialized", version, payload)
