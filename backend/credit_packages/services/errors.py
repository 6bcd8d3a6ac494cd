# backend/credit_packages/services/errors.py
"""
Ledger error taxonomy.

Every error carries a stable machine code, the HTTP status the API answers
with, and a context dict (package id, item id, available vs requested ...)
so callers can act without parsing the message.

DependencyDegraded is not an exception: it describes a partial success and
travels in OperationResult.warnings next to the committed result.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "context": self.context,
        }


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class InvalidRequest(LedgerError):
    code = "invalid_request"
    status_code = 400


class InvalidAmount(InvalidRequest):
    code = "invalid_amount"


class ServiceNotInPackage(InvalidRequest):
    code = "service_not_in_package"


class NotActive(LedgerError):
    code = "not_active"
    status_code = 409


class Expired(LedgerError):
    code = "expired"
    status_code = 409


class AlreadyCancelled(LedgerError):
    code = "already_cancelled"
    status_code = 409


class InsufficientCredits(LedgerError):
    code = "insufficient_credits"
    status_code = 409


class NotTransferable(LedgerError):
    code = "not_transferable"
    status_code = 400


class ConcurrencyConflict(LedgerError):
    """Lost an optimistic-lock race more times than the retry budget allows."""
    code = "concurrency_conflict"
    status_code = 409


@dataclass
class DependencyDegraded:
    dependency: str
    message: str
    context: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "code": "dependency_degraded",
            "dependency": self.dependency,
            "detail": self.message,
            "context": self.context,
        }


T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    value: T
    warnings: list[DependencyDegraded] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)

    def first_warning(self) -> Optional[DependencyDegraded]:
        return self.warnings[0] if self.warnings else None
