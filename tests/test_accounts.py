"""Tests for the Account Store and the Category Registry."""

import pytest
from decimal import Decimal
from uuid import uuid4

from ledger.engine import DEFAULT_CATEGORIES
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.models import (
    Account,
    AccountRequest,
    AccountType,
    Budget,
    BudgetRequest,
    CategoryRequest,
    CategoryType,
    InstallmentGroup,
    InstallmentRequest,
    TransactionType,
)


class TestAccountStore:
    
    async def test_create_sets_initial_balance(self, accounts):
        account = await accounts.create(AccountRequest(
            name="Wallet", type=AccountType.WALLET, balance=Decimal("42.00"), currency="usd",
        ))
        assert account.balance == Decimal("42.00")
        assert account.initial_balance == Decimal("42.00")
        assert account.currency == "USD"
    
    async def test_currency_defaults_from_settings(self, accounts):
        account = await accounts.create(AccountRequest(name="Wallet", type=AccountType.WALLET))
        assert account.currency == "BRL"
    
    @pytest.mark.parametrize("overrides, field", [
        ({"name": ""}, "name"),
        ({"name": "x" * 101}, "name"),
        ({"balance": Decimal("-1")}, "balance"),
        ({"currency": "EURO"}, "currency"),
    ])
    async def test_invalid_account(self, accounts, overrides, field):
        fields = {"name": "Wallet", "type": AccountType.WALLET}
        fields.update(overrides)
        with pytest.raises(ValidationError) as exc_info:
            await accounts.create(AccountRequest(**fields))
        assert exc_info.value.fields[0]["field"] == field
    
    async def test_update_never_edits_balance(self, accounts, checking):
        updated = await accounts.update(checking.id, AccountRequest(
            name="Main", type=AccountType.CHECKING, balance=Decimal("9999"),
        ))
        assert updated.name == "Main"
        assert updated.balance == Decimal("1000.00")
    
    async def test_delete_unreferenced_account(self, accounts, checking):
        await accounts.delete(checking.id)
        with pytest.raises(NotFoundError):
            await accounts.get(checking.id)
    
    async def test_delete_referenced_account_conflicts(
        self, storage, accounts, transactions, checking, make_tx
    ):
        await transactions.create(make_tx(checking))
        with pytest.raises(ConflictError):
            await accounts.delete(checking.id)
        assert await storage.get(Account, checking.id) is not None
    
    async def test_forced_delete_cascades_through_engine(
        self, storage, accounts, transactions, installments, checking, savings, make_tx
    ):
        await transactions.create(make_tx(
            savings,
            type=TransactionType.TRANSFER,
            destination_account_id=checking.id,
            amount=Decimal("200.00"),
        ))
        await installments.create_group(InstallmentRequest(
            account_id=checking.id,
            description="Phone",
            total_amount=Decimal("300.00"),
            installment_count=3,
            start_date="2024-06-01",
        ))
        
        await accounts.delete(checking.id, force=True)
        
        assert await storage.get(Account, checking.id) is None
        assert await storage.list_records(InstallmentGroup) == []
        assert await storage.list_transactions() == []
        # The transfer's debit on the surviving account was reversed
        assert (await storage.get(Account, savings.id)).balance == Decimal("500.00")
    
    async def test_reconcile_detects_drift(self, storage, accounts, transactions, checking, make_tx):
        await transactions.create(make_tx(checking))
        account = await storage.get(Account, checking.id)
        account.balance += Decimal("0.01")
        await storage.save(account)
        
        check = await accounts.reconcile(checking.id)
        
        assert not check.consistent
        assert check.expected_balance == Decimal("900.00")
        assert check.difference == Decimal("0.01")


class TestCategoryRegistry:
    
    async def test_seed_defaults_is_idempotent(self, categories):
        assert await categories.seed_defaults() == len(DEFAULT_CATEGORIES)
        assert await categories.seed_defaults() == 0
        assert len(await categories.list_categories()) == len(DEFAULT_CATEGORIES)
    
    async def test_default_category_cannot_be_edited_or_deleted(self, categories):
        await categories.seed_defaults()
        default = (await categories.list_categories())[0]
        assert default.is_default
        
        with pytest.raises(ConflictError):
            await categories.update(default.id, CategoryRequest(
                name="Renamed", type=default.type,
            ))
        with pytest.raises(ConflictError):
            await categories.delete(default.id)
    
    async def test_invalid_color(self, categories):
        with pytest.raises(ValidationError) as exc_info:
            await categories.create(CategoryRequest(
                name="Pets", type=CategoryType.EXPENSE, color="orange",
            ))
        assert exc_info.value.fields[0]["field"] == "color"
    
    async def test_delete_detaches_transactions_and_removes_budgets(
        self, storage, categories, transactions, budgets, checking, groceries, make_tx
    ):
        tx = await transactions.create(make_tx(checking, category_id=groceries.id))
        await budgets.create(BudgetRequest(
            category_id=groceries.id, amount=Decimal("300"), month=6, year=2024,
        ))
        
        await categories.delete(groceries.id)
        
        detached = await transactions.get(tx.id)
        assert detached.category_id is None
        assert detached.amount == tx.amount
        assert await storage.list_records(Budget) == []
        assert (await storage.get(Account, checking.id)).balance == Decimal("900.00")
    
    async def test_update_unknown_category(self, categories):
        with pytest.raises(NotFoundError):
            await categories.update(uuid4(), CategoryRequest(
                name="Pets", type=CategoryType.EXPENSE,
            ))
    
    async def test_delete_detaches_groups_without_losing_later_edits(
        self, storage, categories, installments, checking, groceries, monkeypatch
    ):
        group = await installments.create_group(InstallmentRequest(
            account_id=checking.id,
            category_id=groceries.id,
            description="Fridge",
            total_amount=Decimal("900.00"),
            installment_count=3,
            start_date="2024-06-01",
        ))
        open_unit = storage.unit_of_work
        
        def unit_after_concurrent_edit(lock_keys=()):
            # Another writer commits a change between the read and the locks
            monkeypatch.setattr(storage, "unit_of_work", open_unit)
            edited = group.model_copy(update={"notes": "Delivered"})
            storage._tables[InstallmentGroup.kind][group.id] = edited
            return open_unit(lock_keys)
        
        monkeypatch.setattr(storage, "unit_of_work", unit_after_concurrent_edit)
        
        await categories.delete(groceries.id)
        
        detached = await storage.get(InstallmentGroup, group.id)
        assert detached.category_id is None
        assert detached.notes == "Delivered"
