# aeq_core/registry.py

"""
Driver Registry: id -> driver, kind -> id mặc định.

Schema chọn driver qua Engine.driverId (ưu tiên) hoặc Engine.kind.
Mỗi registry là một instance riêng (không dùng biến toàn cục), test tự dựng registry.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .errors import RegistryError

logger = logging.getLogger(__name__)


class DriverRegistry:
    def __init__(self) -> None:
        self._drivers: Dict[str, Any] = {}
        self._defaults_by_kind: Dict[str, str] = {}

    def register(self, driver: Any) -> None:
        driver_id = getattr(driver, "id", None)
        if not driver_id:
            raise RegistryError("register: driver.id is required")
        if driver_id in self._drivers:
            raise RegistryError(f"register: duplicate driver id '{driver_id}'")
        self._drivers[driver_id] = driver
        logger.debug(f"Registered driver {driver_id} (kind={getattr(driver, 'kind', None)})")

    def set_default(self, kind: str, driver_id: str) -> None:
        if driver_id not in self._drivers:
            raise RegistryError(f"set_default: no such driver '{driver_id}'")
        self._defaults_by_kind[kind] = driver_id

    def get(self, driver_id: str) -> Optional[Any]:
        return self._drivers.get(driver_id)

    def resolve(self, engine: Optional[Mapping[str, Any]]) -> Any:
        """driverId trước; không có thì tra driver mặc định của kind."""
        engine = engine or {}
        if not isinstance(engine, Mapping):
            raise RegistryError(f"resolve: Engine must be an object, got {type(engine).__name__}")
        driver_id = engine.get("driverId")
        if driver_id:
            driver = self._drivers.get(driver_id)
            if driver is None:
                raise RegistryError(f"resolve: driverId '{driver_id}' not registered")
            return driver

        kind = engine.get("kind")
        if kind:
            default_id = self._defaults_by_kind.get(kind)
            if not default_id:
                raise RegistryError(f"resolve: no default driver for kind '{kind}'")
            driver = self._drivers.get(default_id)
            if driver is None:
                raise RegistryError(f"resolve: default id '{default_id}' for kind '{kind}' not registered")
            return driver

        raise RegistryError("resolve: Engine requires 'driverId' or 'kind'")

    def health(self) -> Dict[str, Any]:
        return {
            "count": len(self._drivers),
            "drivers": [d.describe() for d in self._drivers.values()],
            "defaults": dict(self._defaults_by_kind),
        }

    def reset(self) -> None:
        self._drivers.clear()
        self._defaults_by_kind.clear()

    def __contains__(self, driver_id: str) -> bool:
        return driver_id in self._drivers

    def __len__(self) -> int:
        return len(self._drivers)
