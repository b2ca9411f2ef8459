# aeq_core/errors.py

"""
Phân loại lỗi của kernel.

- AuthoringError: lỗi do người soạn schema/item/driver -> fail fast, không tự phục hồi.
- ContractViolation: output của judge không khớp contract -> kernel phục hồi
  thành quyết định "contract invalid" (0 điểm, unproductive).
"""

from typing import List, Optional, Sequence


class AuthoringError(Exception):
    """Schema/Item/driver cấu hình sai. Phải dừng ngay khi nạp hoặc đăng ký."""


class BankValidationError(AuthoringError):
    """Định nghĩa tĩnh (schema/item) không hợp lệ."""

    def __init__(self, message: str, problems: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.problems: List[str] = list(problems or [])


class RegistryError(AuthoringError):
    """Driver trùng id, không tồn tại, hoặc Engine không resolve được."""


class DriverConfigError(AuthoringError):
    """Driver thiếu tham số bắt buộc (vd: ScoringSpec.target của driver numeric)."""


class NotFoundError(KeyError):
    """Bank không có schema/item được yêu cầu."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class ContractViolation(Exception):
    """Output của judge không thỏa JSON Schema contract của schema."""

    def __init__(self, message: str, schema_id: Optional[str] = None, errors: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.schema_id = schema_id
        self.errors: List[str] = list(errors or [])


class JudgeOutputError(ContractViolation):
    """Output hợp lệ về hình thức nhưng AnswerType (sau alias) nằm ngoài enum của driver."""
