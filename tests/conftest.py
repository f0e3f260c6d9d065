"""
Shared fixtures.

Every test gets a fresh in-memory ledger whose clock is pinned to
2024-06-15, so budget status and installment payment dates are stable.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger.config import AppSettings
from ledger.engine import (
    AccountStore,
    BudgetAggregator,
    CategoryRegistry,
    GoalTracker,
    InstallmentScheduler,
    TransactionEngine,
)
from ledger.audit import AuditLogger
from ledger.models import (
    AccountRequest,
    AccountType,
    CategoryRequest,
    CategoryType,
    TransactionRequest,
    TransactionStatus,
    TransactionType,
)
from ledger.orchestrator import create_ledger
from ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage
from ledger.validation import LedgerValidator


TODAY = date(2024, 6, 15)


def fixed_today() -> date:
    return TODAY


@pytest.fixture
def settings():
    return AppSettings(
        default_currency="BRL",
        currency_precision=2,
        max_installment_count=360,
    )


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def validator(storage, settings):
    return LedgerValidator(storage, settings, today=fixed_today)


@pytest.fixture
def transactions(storage, validator, audit_logger):
    return TransactionEngine(storage, validator, audit_logger)


@pytest.fixture
def accounts(storage, validator, transactions, audit_logger, settings):
    return AccountStore(storage, validator, transactions, audit_logger, settings)


@pytest.fixture
def categories(storage, validator, audit_logger):
    return CategoryRegistry(storage, validator, audit_logger)


@pytest.fixture
def installments(storage, validator, transactions, audit_logger, settings):
    return InstallmentScheduler(
        storage, validator, transactions, audit_logger, settings, today=fixed_today
    )


@pytest.fixture
def budgets(storage, validator, audit_logger):
    return BudgetAggregator(storage, validator, audit_logger, today=fixed_today)


@pytest.fixture
def goals(storage, validator, audit_logger):
    return GoalTracker(storage, validator, audit_logger)


@pytest.fixture
async def checking(accounts):
    return await accounts.create(AccountRequest(
        name="Checking", type=AccountType.CHECKING, balance=Decimal("1000.00"),
    ))


@pytest.fixture
async def savings(accounts):
    return await accounts.create(AccountRequest(
        name="Savings", type=AccountType.SAVINGS, balance=Decimal("500.00"),
    ))


@pytest.fixture
async def groceries(categories):
    return await categories.create(CategoryRequest(
        name="Groceries", type=CategoryType.EXPENSE, color="#FF8800",
    ))


@pytest.fixture
def make_tx():
    """Build a TransactionRequest with sensible defaults."""
    def _make(account, **overrides):
        fields = {
            "account_id": account.id,
            "description": "Test transaction",
            "amount": Decimal("100.00"),
            "type": TransactionType.EXPENSE,
            "status": TransactionStatus.COMPLETED,
            "transaction_date": TODAY,
        }
        fields.update(overrides)
        return TransactionRequest(**fields)
    return _make


@pytest.fixture
async def api(storage, audit_storage, monkeypatch):
    monkeypatch.setenv("LEDGER_SEED_DEFAULT_CATEGORIES", "true")
    return await create_ledger(
        storage=storage,
        audit_storage=audit_storage,
        today=fixed_today,
    )
