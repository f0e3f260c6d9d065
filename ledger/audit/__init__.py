"""Audit logging package."""

from ledger.audit.logger import (
    AuditLogger,
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    create_correlation_id,
    current_correlation_id,
)

__all__ = [
    "AuditLogger",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "create_correlation_id",
    "current_correlation_id",
]
