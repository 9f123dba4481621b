"""
Error kinds raised by the settlement core.

Store adapters translate SQLAlchemy failures into these so callers never
have to know which backend sits behind the catalog or the ledger.
"""

from __future__ import annotations


class PosError(Exception):
    """Base error carrying a human message and structured details."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PosError, ValueError):
    """Input rejected before any store mutation (empty cart, negative amount, ...)."""


class ConflictError(PosError):
    """Uniqueness conflict: duplicate invoice number or a second open cash session."""


class NotFoundError(PosError):
    """Referenced record does not exist."""


class InvalidStateError(PosError):
    """Operation not allowed in the current lifecycle state."""


class StoreUnavailable(PosError):
    """Transient I/O failure talking to the catalog or ledger store."""


class PaymentNotRecorded(StoreUnavailable):
    """
    The invoice was committed but its payment row could not be written.

    ``invoice`` is the finalized snapshot; the sale stands and the payment can
    be re-recorded with ``checkout_service.record_payment``.
    """
    def __init__(self, message: str, invoice, details: dict | None = None):
        super().__init__(message, details)
        self.invoice = invoice
