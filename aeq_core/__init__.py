# aeq_core/__init__.py

"""
Core của hệ thống phỏng vấn giải thích thích ứng (Adaptive Explanation Interview)

Bao gồm:
- Turn Kernel: điều phối một lượt (probe / tiếp tục / hoàn tất)
- Skill Driver: logic chấm theo từng dạng câu hỏi (4 driver)
- Ability Estimator: cập nhật θ khi item hoàn tất
- Contract Validator + Probe Policy Enforcer
- Configuration Composer (deep merge)

Các thành phần xuất khẩu phổ biến:
    apply_turn, KernelOptions, TurnResult
    build_default_registry, DriverRegistry
    Bank, load_bank
    SessionSnapshot, new_session, MemoryStore
"""

# Data model & errors
from .schema import (
    SchemaDefinition,
    ItemDefinition,
    Probe,
    ScorePayload,
    DriverDecision,
    SessionSnapshot,
    UnitStateEnvelope,
)
from .errors import (
    AuthoringError,
    BankValidationError,
    RegistryError,
    DriverConfigError,
    NotFoundError,
    ContractViolation,
    JudgeOutputError,
)

# Configuration & ability
from .deep_merge import ArrayStrategy, deep_merge, compose
from .theta_engine import update_theta, standard_error

# Contract & probe policy
from .contract import validate_judge_output, inspect_definitions, clear_contract_cache
from .probe_policy import enforce_probe_policy, ProbeCheck

# Drivers & registry
from .registry import DriverRegistry
from .drivers import build_default_registry, SkillDriver

# Kernel & collaborators
from .priming import ensure_judge_primed, PrimingResult
from .kernel import apply_turn, KernelOptions, TurnResult
from .bank import Bank, load_bank
from .session_store import MemoryStore, new_session


__all__ = [
    # Schema
    "SchemaDefinition",
    "ItemDefinition",
    "Probe",
    "ScorePayload",
    "DriverDecision",
    "SessionSnapshot",
    "UnitStateEnvelope",

    # Errors
    "AuthoringError",
    "BankValidationError",
    "RegistryError",
    "DriverConfigError",
    "NotFoundError",
    "ContractViolation",
    "JudgeOutputError",

    # Config & theta
    "ArrayStrategy",
    "deep_merge",
    "compose",
    "update_theta",
    "standard_error",

    # Contract & probe policy
    "validate_judge_output",
    "inspect_definitions",
    "clear_contract_cache",
    "enforce_probe_policy",
    "ProbeCheck",

    # Drivers
    "DriverRegistry",
    "build_default_registry",
    "SkillDriver",

    # Kernel
    "ensure_judge_primed",
    "PrimingResult",
    "apply_turn",
    "KernelOptions",
    "TurnResult",
    "Bank",
    "load_bank",
    "MemoryStore",
    "new_session",
]
