"""Services package."""

from ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
    "StorageError",
]
