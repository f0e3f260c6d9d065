"""
Ledger Error Taxonomy

Every failure a caller can act on is one of four kinds. The API boundary
maps each kind to its own client-visible status; anything else is treated
as an internal failure.
"""

from typing import Optional


class LedgerError(Exception):
    """
    Base class for ledger errors.

    Carries a human-readable message and, where the failure concerns
    specific request fields, a list of ``{"field", "message"}`` entries
    using the wire (camelCase) field names.
    """

    def __init__(
        self,
        message: str,
        fields: Optional[list[dict[str, str]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, fields=[{"field": field, "message": message}])


class NotFoundError(LedgerError):
    """The record being operated on does not exist."""


class ConflictError(LedgerError):
    """The operation conflicts with records that already exist."""


class InvalidStateTransition(LedgerError):
    """A status change the record's state machine does not allow."""

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.requested = requested
