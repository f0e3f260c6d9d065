"""
Storage Services Package

Provides abstract interfaces and concrete implementations for record storage.
Implements an in-memory backend and a SQLite backend behind one interface.
"""

from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
    account_lock,
    budget_lock,
    goal_lock,
    group_lock,
    transaction_lock,
)
from ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from ledger.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Lock keys
    "account_lock",
    "budget_lock",
    "goal_lock",
    "group_lock",
    "transaction_lock",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
]
