"""
SQLite Storage Implementation

DESIGN DECISION: Each record kind has its own table holding the record
as a JSON document next to its id and creation time.

TRADEOFFS:
- Queries load a whole table and filter in Python (fine for one person's books)
- One writer at a time: a unit of work is a ``BEGIN IMMEDIATE`` transaction
  guarded by a single writer lock

The implementation follows the abstract interface, so the engine does not
know which backend it runs on.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional
from uuid import UUID

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledger.config import get_settings
from ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger.models.records import (
    Account,
    Budget,
    Category,
    Goal,
    Installment,
    InstallmentGroup,
    LedgerRecord,
    Transaction,
)
from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    R,
    StorageError,
)


RECORD_TABLES = {
    Account.kind: "accounts",
    Category.kind: "categories",
    Transaction.kind: "transactions",
    InstallmentGroup.kind: "installment_groups",
    Installment.kind: "installments",
    Budget.kind: "budgets",
    Goal.kind: "goals",
}

# Column order for the audit table
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]


def _is_locked(error: BaseException) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error)


class SQLiteClient:
    """
    Low-level SQLite connection wrapper.

    Opens the database lazily, creates the schema, and retries when
    another process holds the write lock.
    """

    def __init__(self, db_path: Optional[str] = None):
        settings = get_settings().storage
        self.db_path = db_path or settings.sqlite_path
        self._conn: Optional[sqlite3.Connection] = None
        self._begin = retry(
            retry=retry_if_exception(_is_locked),
            stop=stop_after_attempt(settings.lock_retry_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=2),
            reraise=True,
        )(self._begin_immediate)

    def connect(self) -> sqlite3.Connection:
        """Open the connection and create tables on first use."""
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA busy_timeout = 1000")
                self._create_schema(conn)
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open SQLite database {self.db_path}: {e}")
            self._conn = conn
        return self._conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        for table in RECORD_TABLES.values():
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id          TEXT PRIMARY KEY,
                    created_at  TEXT NOT NULL,
                    payload     TEXT NOT NULL
                )
                """
            )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_events (
                event_id        TEXT PRIMARY KEY,
                timestamp       TEXT NOT NULL,
                event_type      TEXT NOT NULL,
                severity        TEXT NOT NULL,
                entity_type     TEXT,
                entity_id       TEXT,
                correlation_id  TEXT,
                description     TEXT NOT NULL,
                details_json    TEXT,
                error_code      TEXT,
                error_message   TEXT
            )
            """
        )

    def _begin_immediate(self) -> None:
        self.connect().execute("BEGIN IMMEDIATE")

    def begin(self) -> None:
        """Start a write transaction, retrying while the database is locked."""
        self._begin()

    def commit(self) -> None:
        self.connect().execute("COMMIT")

    def rollback(self) -> None:
        conn = self.connect()
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of ledger storage.

    Records are stored one per row, serialized with their pydantic JSON
    schema (money stays an exact decimal string).
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()
        self._writer = asyncio.Lock()
        # Callbacks of the open unit of work; None outside one
        self._active: ContextVar[Optional[list]] = ContextVar(
            f"ledger_sqlite_uow_{id(self)}", default=None
        )

    def _table(self, model: type[LedgerRecord]) -> str:
        try:
            return RECORD_TABLES[model.kind]
        except KeyError:
            raise StorageError(f"No table for record kind: {model.kind}")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._client.connect().execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite statement failed: {e}")

    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        row = self._execute(
            f"SELECT payload FROM {self._table(model)} WHERE id = ?",
            (str(record_id),),
        ).fetchone()
        return model.model_validate_json(row["payload"]) if row else None

    async def save(self, record: LedgerRecord) -> None:
        async with self.unit_of_work():
            self._execute(
                f"""
                INSERT INTO {self._table(type(record))} (id, created_at, payload)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET payload = excluded.payload
                """,
                (
                    str(record.id),
                    record.created_at.isoformat(),
                    record.model_dump_json(),
                ),
            )

    async def delete(self, model: type[R], record_id: UUID) -> bool:
        async with self.unit_of_work():
            cursor = self._execute(
                f"DELETE FROM {self._table(model)} WHERE id = ?",
                (str(record_id),),
            )
            return cursor.rowcount > 0

    async def list_records(
        self,
        model: type[R],
        predicate: Optional[Callable[[R], bool]] = None,
    ) -> list[R]:
        rows = self._execute(
            f"SELECT payload FROM {self._table(model)} ORDER BY created_at, rowid"
        ).fetchall()
        records = [model.model_validate_json(row["payload"]) for row in rows]
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    @asynccontextmanager
    async def unit_of_work(
        self,
        lock_keys: Iterable[str] = (),
    ) -> AsyncIterator[None]:
        # SQLite has a single writer, so per-record keys collapse into it
        if self._active.get() is not None:
            yield
            return

        callbacks: list[Callable[[], Awaitable[None]]] = []
        async with self._writer:
            try:
                self._client.begin()
            except sqlite3.Error as e:
                raise StorageError(f"Could not start a write transaction: {e}")
            token = self._active.set(callbacks)
            try:
                yield
            except BaseException:
                self._client.rollback()
                raise
            else:
                try:
                    self._client.commit()
                except sqlite3.Error as e:
                    self._client.rollback()
                    raise StorageError(f"Commit failed: {e}")
            finally:
                self._active.reset(token)

        for callback in callbacks:
            await callback()

    async def after_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        callbacks = self._active.get()
        if callbacks is None:
            await callback()
        else:
            callbacks.append(callback)

    def close(self) -> None:
        self._client.close()


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _event_to_row(self, event: AuditEvent) -> tuple:
        """Convert an AuditEvent to a table row."""
        return (
            str(event.event_id),
            event.timestamp.isoformat(),
            event.event_type.value,
            event.severity.value,
            event.entity_type,
            str(event.entity_id) if event.entity_id else None,
            str(event.correlation_id) if event.correlation_id else None,
            event.description,
            json.dumps(event.details) if event.details else None,
            event.error_code,
            event.error_message,
        )

    def _row_to_event(self, row: sqlite3.Row) -> AuditEvent:
        """Convert a table row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=UUID(row["entity_id"]) if row["entity_id"] else None,
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
        )

    def _select(self, where: str = "", params: tuple = (), order: str = "ASC", limit: int = -1) -> list[AuditEvent]:
        sql = f"SELECT {', '.join(AUDIT_COLUMNS)} FROM audit_events"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY timestamp {order} LIMIT ?"
        try:
            rows = self._client.connect().execute(sql, (*params, limit)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return [self._row_to_event(row) for row in rows]

    @retry(
        retry=retry_if_exception(_is_locked),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        reraise=True,
    )
    def _insert(self, event: AuditEvent) -> None:
        placeholders = ", ".join("?" for _ in AUDIT_COLUMNS)
        self._client.connect().execute(
            f"INSERT INTO audit_events ({', '.join(AUDIT_COLUMNS)}) VALUES ({placeholders})",
            self._event_to_row(event),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._insert(event)
            return True
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._select("correlation_id = ?", (str(correlation_id),))

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._select(
            "entity_type = ? AND entity_id = ?",
            (entity_type, str(entity_id)),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._select(order="DESC", limit=limit)
