"""
Audit Logger

Writes each audit event twice: as a JSON line through structlog, and to
audit storage when one is configured.

Engines hand their events to ``storage.after_commit`` so nothing is
recorded for work that rolled back. A failed audit write is logged and
swallowed; it never undoes a committed mutation. Events without a
correlation ID pick up the one bound for the current request.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger.services.storage import AuditStorageInterface, StorageError


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


LOG_METHODS = {
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
}


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at ``level``."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.
    
    Use this at the start of a new API request.
    Bind it with ``bind_correlation_id`` so every event of the request
    carries it.
    """
    return uuid4()


def bind_correlation_id(correlation_id: UUID) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=str(correlation_id))


def clear_correlation_id() -> None:
    structlog.contextvars.unbind_contextvars("correlation_id")


def current_correlation_id() -> Optional[UUID]:
    value = structlog.contextvars.get_contextvars().get("correlation_id")
    return UUID(value) if value else None


class AuditLogger:
    """Records ledger events locally and, optionally, in audit storage."""
    
    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("ledger.audit")
    
    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Emit one event.
        
        Returns:
            False if the storage write failed, True otherwise
        """
        if event.correlation_id is None:
            event.correlation_id = current_correlation_id()
        
        log_dict = event.to_log_dict()
        log_dict.pop("correlation_id", None)
        
        emit = getattr(self._logger, LOG_METHODS[event.severity])
        emit("audit_event", **log_dict)
        
        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except StorageError as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False
    
    async def log_record_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log creation, update or deletion of a record."""
        event = AuditEventBuilder.record_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details,
        )
        await self.log(event)
    
    async def log_transaction(
        self,
        event_type: AuditEventType,
        transaction_id: UUID,
        status: str,
        effects: dict,
    ) -> None:
        """Log a transaction mutation with its net balance changes."""
        event = AuditEventBuilder.transaction_changed(
            event_type=event_type,
            transaction_id=transaction_id,
            status=status,
            effects=effects,
        )
        await self.log(event)
    
    async def log_installment_paid(
        self,
        installment_id: UUID,
        group_id: UUID,
        transaction_id: UUID,
        amount,
    ) -> None:
        event = AuditEventBuilder.installment_paid(
            installment_id=installment_id,
            group_id=group_id,
            transaction_id=transaction_id,
            amount=amount,
        )
        await self.log(event)
    
    async def log_goal_deposit(
        self,
        goal_id: UUID,
        amount,
        current_amount,
    ) -> None:
        event = AuditEventBuilder.goal_deposit(
            goal_id=goal_id,
            amount=amount,
            current_amount=current_amount,
        )
        await self.log(event)
    
    async def log_rejected(
        self,
        operation: str,
        error_kind: str,
        error_message: str,
    ) -> None:
        """Log a mutation the ledger refused."""
        event = AuditEventBuilder.mutation_rejected(
            operation=operation,
            error_kind=error_kind,
            error_message=error_message,
        )
        await self.log(event)
    
    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        )
        await self.log(event)
