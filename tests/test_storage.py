"""
Tests for the storage backends.

The in-memory backend is exercised everywhere else; these tests pin down
unit-of-work semantics on both backends and run the engine on SQLite.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from ledger.audit import AuditLogger
from ledger.engine import TransactionEngine
from ledger.models import (
    Account,
    AccountType,
    AuditEventBuilder,
    AuditEventType,
    Goal,
    TransactionRequest,
    TransactionStatus,
    TransactionType,
)
from ledger.services.storage import (
    InMemoryLedgerStorage,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    account_lock,
)
from ledger.validation import LedgerValidator


def _account(balance: str = "100.00") -> Account:
    return Account(
        name="Checking",
        type=AccountType.CHECKING,
        balance=Decimal(balance),
        initial_balance=Decimal(balance),
        currency="BRL",
    )


@pytest.fixture
def sqlite_storage(tmp_path):
    storage = SQLiteLedgerStorage(SQLiteClient(str(tmp_path / "ledger.db")))
    yield storage
    storage.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_storage(request, tmp_path):
    if request.param == "memory":
        yield InMemoryLedgerStorage()
        return
    storage = SQLiteLedgerStorage(SQLiteClient(str(tmp_path / "ledger.db")))
    yield storage
    storage.close()


class TestUnitOfWork:
    
    async def test_save_and_get_return_copies(self, any_storage):
        account = _account()
        await any_storage.save(account)
        
        fetched = await any_storage.get(Account, account.id)
        fetched.balance = Decimal("0")
        
        assert (await any_storage.get(Account, account.id)).balance == Decimal("100.00")
    
    async def test_rollback_restores_every_write(self, any_storage):
        account = _account()
        await any_storage.save(account)
        
        with pytest.raises(RuntimeError):
            async with any_storage.unit_of_work([account_lock(account.id)]):
                account.balance = Decimal("0")
                await any_storage.save(account)
                await any_storage.save(Goal(name="Car", target_amount=Decimal("10")))
                raise RuntimeError("boom")
        
        assert (await any_storage.get(Account, account.id)).balance == Decimal("100.00")
        assert await any_storage.list_records(Goal) == []
    
    async def test_rollback_restores_deleted_record(self, any_storage):
        account = _account()
        await any_storage.save(account)
        
        with pytest.raises(RuntimeError):
            async with any_storage.unit_of_work():
                assert await any_storage.delete(Account, account.id)
                raise RuntimeError("boom")
        
        assert await any_storage.get(Account, account.id) is not None
    
    async def test_nested_unit_joins_outer(self, any_storage):
        account = _account()
        
        with pytest.raises(RuntimeError):
            async with any_storage.unit_of_work([account_lock(account.id)]):
                async with any_storage.unit_of_work([account_lock(account.id)]):
                    await any_storage.save(account)
                raise RuntimeError("outer fails after inner finished")
        
        assert await any_storage.get(Account, account.id) is None
    
    async def test_after_commit_runs_only_on_commit(self, any_storage):
        ran = []
        
        async def callback():
            ran.append(True)
        
        with pytest.raises(RuntimeError):
            async with any_storage.unit_of_work():
                await any_storage.after_commit(callback)
                raise RuntimeError("boom")
        assert ran == []
        
        async with any_storage.unit_of_work():
            async with any_storage.unit_of_work():
                await any_storage.after_commit(callback)
            assert ran == []
        assert ran == [True]


class TestInMemoryLocking:
    
    async def test_concurrent_updates_do_not_lose_writes(self):
        storage = InMemoryLedgerStorage()
        account = _account("0")
        await storage.save(account)
        
        async def increment():
            async with storage.unit_of_work([account_lock(account.id)]):
                current = await storage.get(Account, account.id)
                await asyncio.sleep(0)
                current.balance += 1
                await storage.save(current)
        
        await asyncio.gather(*(increment() for _ in range(20)))
        
        assert (await storage.get(Account, account.id)).balance == Decimal("20")


class TestSQLiteBackend:
    
    async def test_records_survive_reopening(self, tmp_path):
        path = str(tmp_path / "ledger.db")
        account = _account("12.34")
        
        first = SQLiteLedgerStorage(SQLiteClient(path))
        await first.save(account)
        first.close()
        
        second = SQLiteLedgerStorage(SQLiteClient(path))
        restored = await second.get(Account, account.id)
        second.close()
        
        assert restored.balance == Decimal("12.34")
        assert restored.created_at == account.created_at
    
    async def test_engine_runs_on_sqlite(self, sqlite_storage):
        from ledger.config import AppSettings
        
        validator = LedgerValidator(sqlite_storage, AppSettings())
        engine = TransactionEngine(sqlite_storage, validator, AuditLogger())
        source, destination = _account("100.00"), _account("0.00")
        await sqlite_storage.save(source)
        await sqlite_storage.save(destination)
        
        tx = await engine.create(TransactionRequest(
            account_id=source.id,
            destination_account_id=destination.id,
            description="Move",
            amount=Decimal("60.00"),
            type=TransactionType.TRANSFER,
            status=TransactionStatus.COMPLETED,
            transaction_date=date(2024, 6, 1),
        ))
        assert (await sqlite_storage.get(Account, source.id)).balance == Decimal("40.00")
        assert (await sqlite_storage.get(Account, destination.id)).balance == Decimal("60.00")
        
        await engine.delete(tx.id)
        assert (await sqlite_storage.get(Account, source.id)).balance == Decimal("100.00")
        assert await sqlite_storage.list_transactions() == []
    
    async def test_audit_events_round_trip(self, tmp_path):
        audit = SQLiteAuditStorage(SQLiteClient(str(tmp_path / "audit.db")))
        account = _account()
        event = AuditEventBuilder.record_changed(
            AuditEventType.ACCOUNT_CREATED,
            "account",
            account.id,
            "Account opened",
            {"balance": "100.00"},
        )
        
        assert await audit.append_event(event)
        
        events = await audit.get_events_by_entity("account", account.id)
        assert len(events) == 1
        assert events[0].details == {"balance": "100.00"}
        assert (await audit.get_recent_events(limit=5))[0].event_id == event.event_id
