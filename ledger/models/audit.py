"""
Audit Models for Household Ledger

One event per committed ledger mutation, plus one per rejected mutation
and per unexpected failure. Transaction events carry the signed balance
change they made to each account, so balance history can be replayed
from the trail alone.

The trail is append-only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger.models.records import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    
    One event type per committed mutation of the ledger.
    """
    # Accounts & categories
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_STATUS_CHANGED = "transaction_status_changed"
    
    # Installments
    INSTALLMENT_GROUP_CREATED = "installment_group_created"
    INSTALLMENT_PAID = "installment_paid"
    INSTALLMENT_RELEASED = "installment_released"
    INSTALLMENT_GROUP_CANCELLED = "installment_group_cancelled"
    
    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    
    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_DEPOSIT = "goal_deposit"
    GOAL_COMPLETED = "goal_completed"
    GOAL_CANCELLED = "goal_cancelled"
    
    # System events
    MUTATION_REJECTED = "mutation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    One entry of the audit trail.
    
    Mutation events name the record they touched (``entity_type`` is the
    record kind, ``entity_id`` its id). Rejections and system errors carry
    an error code and message instead.
    """
    
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    
    entity_type: Optional[str] = Field(
        default=None,
        description="Record kind, e.g. 'transaction' or 'goal'"
    )
    entity_id: Optional[UUID] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Shared by every event of one API request"
    )
    
    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    
    def to_log_dict(self) -> dict:
        """Flat, JSON-safe form for structlog."""
        return self.model_dump(mode="json")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.record_changed(
            AuditEventType.GOAL_CREATED, "goal", goal.id, "Goal created: Trip"
        )
        event = AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_CREATED, tx.id, "COMPLETED", tx.balance_effects()
        )
    """
    
    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )
    
    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: UUID,
        status: str,
        effects: dict[UUID, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Transaction event carrying the net balance change per account."""
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {event_type.value.split('_', 1)[1]} ({status})",
            details={
                "status": status,
                "balance_changes": {
                    str(account_id): str(delta) for account_id, delta in effects.items()
                },
            },
        )
    
    @staticmethod
    def installment_paid(
        installment_id: UUID,
        group_id: UUID,
        transaction_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_PAID,
            entity_type="installment",
            entity_id=installment_id,
            correlation_id=correlation_id,
            description=f"Installment paid: {amount}",
            details={
                "group_id": str(group_id),
                "transaction_id": str(transaction_id),
                "amount": str(amount),
            },
        )
    
    @staticmethod
    def goal_deposit(
        goal_id: UUID,
        amount: Decimal,
        current_amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_DEPOSIT,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description=f"Deposit of {amount} to goal",
            details={
                "amount": str(amount),
                "current_amount": str(current_amount),
            },
        )
    
    @staticmethod
    def mutation_rejected(
        operation: str,
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"Rejected: {operation}",
            error_code=error_kind,
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
    
    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
