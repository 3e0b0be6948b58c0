"""Domain error taxonomy for the validation pipeline and ledgers.

Services raise these; the API layer maps them to HTTP responses in one place
(see ``traffic_exchange.main``).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base error carrying a stable machine-readable ``code``."""

    code: str = "ledger_error"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationRejected(LedgerError):
    """A fraud check refused the view. ``code`` is the rejection reason."""
    code = "validation_rejected"


class NotFound(LedgerError):
    code = "not_found"


class Conflict(LedgerError):
    code = "conflict"


class StorageFailure(LedgerError):
    """The transaction could not commit. Transient; nothing was applied."""
    code = "storage_failure"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


__all__ = [
    "LedgerError",
    "ValidationRejected",
    "NotFound",
    "Conflict",
    "StorageFailure",
    "InsufficientFunds",
]
