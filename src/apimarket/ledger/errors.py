"""Ledger error taxonomy.

Every failure is a caller-input or precondition violation and none of them is
retryable. `kind` is a stable string used as a metrics label and in gateway
error bodies.
"""

from __future__ import annotations


class LedgerError(Exception):
    kind = "ledger_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFound(LedgerError):
    kind = "not_found"


class Unauthorized(LedgerError):
    kind = "unauthorized"


class InvalidArgument(LedgerError):
    kind = "invalid_argument"


class InactiveResource(LedgerError):
    kind = "inactive"


class InsufficientFunds(LedgerError):
    kind = "insufficient_funds"


class Expired(LedgerError):
    kind = "expired"


class Exhausted(LedgerError):
    kind = "exhausted"


class TransferRejected(LedgerError):
    """A recipient refused a value transfer; the whole operation reverts."""

    kind = "transfer_rejected"
