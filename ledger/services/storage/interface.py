"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against SQLite or purely in memory
2. Use in-memory storage for testing
3. Keep ledger rules decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Records are fetched and saved whole; filtering happens in Python.

CRITICAL: Every ledger mutation runs inside ``unit_of_work()``. A unit of
work holds the locks for the keys it names (``account:<id>``, ``goal:<id>``)
and either commits every write made inside it or none of them.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

from ledger.models.audit import AuditEvent
from ledger.models.records import (
    Budget,
    Installment,
    LedgerRecord,
    Transaction,
    TransactionStatus,
    TransactionType,
)


R = TypeVar("R", bound=LedgerRecord)


def account_lock(account_id: UUID) -> str:
    return f"account:{account_id}"


def goal_lock(goal_id: UUID) -> str:
    return f"goal:{goal_id}"


def group_lock(group_id: UUID) -> str:
    return f"installment_group:{group_id}"


def transaction_lock(transaction_id: UUID) -> str:
    return f"transaction:{transaction_id}"


def budget_lock(category_id: UUID, month: int, year: int) -> str:
    return f"budget:{category_id}:{year}-{month:02d}"


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger record storage.

    Any storage implementation must provide the five primitives below.
    The typed queries further down are built on top of them.
    """

    @abstractmethod
    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        """
        Retrieve a record by its ID.

        Args:
            model: Record class (decides which table is read)
            record_id: The record's unique identifier

        Returns:
            A private copy of the record if found, None otherwise
        """
        pass

    @abstractmethod
    async def save(self, record: LedgerRecord) -> None:
        """
        Insert or replace a record.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, model: type[R], record_id: UUID) -> bool:
        """
        Delete a record by ID.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        model: type[R],
        predicate: Optional[Callable[[R], bool]] = None,
    ) -> list[R]:
        """
        List records of one kind in creation order.

        Args:
            model: Record class
            predicate: Optional filter applied to each record
        """
        pass

    @abstractmethod
    def unit_of_work(
        self,
        lock_keys: Iterable[str] = (),
    ) -> AbstractAsyncContextManager[None]:
        """
        Open an all-or-nothing scope for a group of writes.

        Locks are taken in sorted order. A unit of work opened while
        another is active in the same task joins it, acquiring only the
        locks it does not already hold.

        Args:
            lock_keys: Keys of the records whose read-modify-write must
                       not race (accounts, goals, installment groups)
        """
        pass

    def close(self) -> None:
        """Release backend resources. Nothing to do by default."""
        pass

    @abstractmethod
    async def after_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        """
        Run ``callback`` once the outermost unit of work commits.

        Dropped if the unit rolls back. Runs immediately when no unit of
        work is open.
        """
        pass

    # =========================================================================
    # TYPED QUERIES
    # =========================================================================

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[TransactionStatus] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        ``account_id`` matches both the source and the destination account.
        """
        def matches(tx: Transaction) -> bool:
            if account_id and account_id not in tx.referenced_accounts():
                return False
            if category_id and tx.category_id != category_id:
                return False
            if date_from and tx.transaction_date < date_from:
                return False
            if date_to and tx.transaction_date > date_to:
                return False
            if status and tx.status != status:
                return False
            if type and tx.type != type:
                return False
            return True

        return await self.list_records(Transaction, matches)

    async def sum_transactions(self, **filters) -> Decimal:
        """Total amount of the transactions matching ``filters``."""
        transactions = await self.list_transactions(**filters)
        return sum((tx.amount for tx in transactions), Decimal("0"))

    async def list_installments(self, group_id: UUID) -> list[Installment]:
        """Installments of a group ordered by installment number."""
        installments = await self.list_records(
            Installment, lambda i: i.group_id == group_id
        )
        return sorted(installments, key=lambda i: i.installment_number)

    async def find_installment_by_transaction(
        self,
        transaction_id: UUID,
    ) -> Optional[Installment]:
        """The installment a transaction paid, if any."""
        matches = await self.list_records(
            Installment, lambda i: i.transaction_id == transaction_id
        )
        return matches[0] if matches else None

    async def find_budget(
        self,
        category_id: UUID,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        """The budget defined for a category and period, if any."""
        matches = await self.list_records(
            Budget,
            lambda b: (
                b.category_id == category_id
                and b.month == month
                and b.year == year
            ),
        )
        return matches[0] if matches else None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one API request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific record.

        Args:
            entity_type: Kind of record (e.g., 'transaction', 'goal')
            entity_id: The record's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
