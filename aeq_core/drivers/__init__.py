# aeq_core/drivers/__init__.py

"""
Các Skill Driver có sẵn:
    GenericNumericDriver            generic.numeric.v1            kind: generic.numeric
    AlternativeExplanationDriver    aeq.aeg.v1                    kind: aeg
    BiasDirectionSequentialDriver   bias.direction.sequential.v1  kind: bias.direction
    BiasDirectionOpenDriver         bias.direction.open.v1        kind: bias.direction.open
"""

from ..registry import DriverRegistry
from .alt_explanation import AlternativeExplanationDriver
from .base import CategoryJudgement, SkillDriver
from .bias_open import BiasDirectionOpenDriver
from .bias_sequential import BiasDirectionSequentialDriver
from .numeric import GenericNumericDriver, NumericReading


def build_default_registry() -> DriverRegistry:
    """Đăng ký tường minh bốn driver và kind mặc định của chúng."""
    registry = DriverRegistry()
    for driver in (
        AlternativeExplanationDriver(),
        GenericNumericDriver(),
        BiasDirectionSequentialDriver(),
        BiasDirectionOpenDriver(),
    ):
        registry.register(driver)
        registry.set_default(driver.kind, driver.id)
    return registry


__all__ = [
    "SkillDriver",
    "CategoryJudgement",
    "NumericReading",
    "GenericNumericDriver",
    "AlternativeExplanationDriver",
    "BiasDirectionSequentialDriver",
    "BiasDirectionOpenDriver",
    "build_default_registry",
]
