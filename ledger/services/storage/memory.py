"""
In-Memory Storage Implementation

Records live in per-kind dictionaries. Every read hands out a deep copy
and every save stores one, so a caller mutating a record it fetched
changes nothing until it saves.

Units of work keep an undo journal: the first time a record is touched
inside a unit, its previous state (or its absence) is remembered. If the
unit exits with an exception, the journal is replayed to restore every
touched record.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional
from uuid import UUID

from ledger.models.audit import AuditEvent
from ledger.models.records import LedgerRecord
from ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    R,
)


class _UnitOfWork:
    """Bookkeeping for one open unit of work."""

    def __init__(self):
        self.journal: dict[tuple[str, UUID], Optional[LedgerRecord]] = {}
        self.held: set[str] = set()
        self.acquired: list[asyncio.Lock] = []
        self.callbacks: list[Callable[[], Awaitable[None]]] = []


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dictionary-backed ledger storage.

    Used by the test suite and by the ``memory`` storage backend.
    """

    def __init__(self):
        self._tables: dict[str, dict[UUID, LedgerRecord]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._active: ContextVar[Optional[_UnitOfWork]] = ContextVar(
            f"ledger_uow_{id(self)}", default=None
        )

    def _table(self, kind: str) -> dict[UUID, LedgerRecord]:
        return self._tables.setdefault(kind, {})

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _remember(self, kind: str, record_id: UUID) -> None:
        """Journal the current state of a record before the first write."""
        uow = self._active.get()
        if uow is None or (kind, record_id) in uow.journal:
            return
        current = self._table(kind).get(record_id)
        uow.journal[(kind, record_id)] = (
            current.model_copy(deep=True) if current is not None else None
        )

    def _rollback(self, uow: _UnitOfWork) -> None:
        for (kind, record_id), previous in uow.journal.items():
            table = self._table(kind)
            if previous is None:
                table.pop(record_id, None)
            else:
                table[record_id] = previous

    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        record = self._table(model.kind).get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def save(self, record: LedgerRecord) -> None:
        self._remember(record.kind, record.id)
        self._table(record.kind)[record.id] = record.model_copy(deep=True)

    async def delete(self, model: type[R], record_id: UUID) -> bool:
        if record_id not in self._table(model.kind):
            return False
        self._remember(model.kind, record_id)
        del self._table(model.kind)[record_id]
        return True

    async def list_records(
        self,
        model: type[R],
        predicate: Optional[Callable[[R], bool]] = None,
    ) -> list[R]:
        records = sorted(self._table(model.kind).values(), key=lambda r: r.created_at)
        return [
            record.model_copy(deep=True)
            for record in records
            if predicate is None or predicate(record)
        ]

    @asynccontextmanager
    async def unit_of_work(
        self,
        lock_keys: Iterable[str] = (),
    ) -> AsyncIterator[None]:
        keys = sorted(set(lock_keys))
        outer = self._active.get()

        if outer is not None:
            # Joining: the outer unit owns commit, rollback and lock release
            for key in keys:
                if key not in outer.held:
                    lock = self._lock(key)
                    await lock.acquire()
                    outer.acquired.append(lock)
                    outer.held.add(key)
            yield
            return

        uow = _UnitOfWork()
        token = self._active.set(uow)
        try:
            for key in keys:
                lock = self._lock(key)
                await lock.acquire()
                uow.acquired.append(lock)
                uow.held.add(key)
            yield
        except BaseException:
            self._rollback(uow)
            raise
        finally:
            self._active.reset(token)
            for lock in reversed(uow.acquired):
                lock.release()

        for callback in uow.callbacks:
            await callback()

    async def after_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        uow = self._active.get()
        if uow is None:
            await callback()
        else:
            uow.callbacks.append(callback)


class InMemoryAuditStorage(AuditStorageInterface):
    """
    List-backed audit storage.

    Audit events are append-only.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
