from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    POLICY = "policy"
    STATE = "state"
    STORE = "store"


class JournalError(Exception):
    kind: str = "Error"

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.VALIDATION,
        field: Optional[str] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}.{self.kind}] {self.message}"]
        if self.field:
            parts.append(f"Field: {self.field}")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "category": self.category.value,
            "kind": self.kind,
            "field": self.field,
        }


# ── Validation ───────────────────────────────────────────────

class ValidationError(JournalError):
    kind = "Validation"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.VALIDATION, field)


class MissingFieldError(ValidationError):
    kind = "MissingField"

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} is required", field)


class OutOfRangeError(ValidationError):
    kind = "OutOfRange"


class InvalidUrlError(ValidationError):
    kind = "InvalidUrl"

    def __init__(self, field: str, value: str = "") -> None:
        super().__init__(f"{field} must be an absolute http(s) URL, got {value!r}", field)


# ── Policy ───────────────────────────────────────────────────

class PolicyError(JournalError):
    kind = "Policy"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.POLICY, field)


class PerTradeRiskError(PolicyError):
    kind = "PerTradeRisk"


class DailyRiskError(PolicyError):
    kind = "DailyRisk"


class TradeCountError(PolicyError):
    kind = "TradeCount"


class ActiveCountError(PolicyError):
    kind = "ActiveCount"


class CancelCountError(PolicyError):
    kind = "CancelCount"


# ── State ────────────────────────────────────────────────────

class StateError(JournalError):
    kind = "State"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.STATE, field)


class NotOpenError(StateError):
    kind = "NotOpen"


class NotFoundError(StateError):
    kind = "NotFound"


# ── Store ────────────────────────────────────────────────────

class StoreError(JournalError):
    kind = "Store"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.STORE)


class TransientStoreError(StoreError):
    kind = "Transient"
    retryable = True


class ConflictStoreError(StoreError):
    kind = "Conflict"
    retryable = True


class FatalStoreError(StoreError):
    kind = "Fatal"
