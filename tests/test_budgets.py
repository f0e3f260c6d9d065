"""Tests for the Budget Aggregator."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger.engine.budgets import percentage
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.models import (
    BudgetRequest,
    BudgetStatus,
    TransactionStatus,
    TransactionType,
)


def _budget(category, **overrides) -> BudgetRequest:
    fields = {
        "category_id": category.id,
        "amount": Decimal("500.00"),
        "month": 6,
        "year": 2024,
    }
    fields.update(overrides)
    return BudgetRequest(**fields)


class TestPercentage:
    
    def test_zero_cap_reports_zero(self):
        assert percentage(Decimal("10"), Decimal("0")) == Decimal("0")
    
    def test_rounded_to_two_places(self):
        assert percentage(Decimal("1"), Decimal("3")) == Decimal("33.33")
    
    def test_uncapped(self):
        assert percentage(Decimal("550"), Decimal("500")) == Decimal("110.00")


class TestCreate:
    
    async def test_duplicate_key_conflicts(self, budgets, groceries):
        await budgets.create(_budget(groceries))
        with pytest.raises(ConflictError):
            await budgets.create(_budget(groceries, amount=Decimal("100")))
    
    async def test_same_category_other_month_is_fine(self, budgets, groceries):
        await budgets.create(_budget(groceries))
        await budgets.create(_budget(groceries, month=7))
    
    @pytest.mark.parametrize("overrides, field", [
        ({"amount": Decimal("-1")}, "amount"),
        ({"month": 13}, "month"),
        ({"month": 0}, "month"),
        ({"year": 1999}, "year"),
    ])
    async def test_out_of_range_input(self, budgets, groceries, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await budgets.create(_budget(groceries, **overrides))
        assert exc_info.value.fields[0]["field"] == field
    
    async def test_unknown_category(self, budgets, groceries):
        request = _budget(groceries).model_copy(update={"category_id": uuid4()})
        with pytest.raises(ValidationError) as exc_info:
            await budgets.create(request)
        assert exc_info.value.fields[0]["field"] == "categoryId"


class TestEvaluate:
    
    async def test_exceeded_budget(self, budgets, transactions, checking, groceries, make_tx):
        await budgets.create(_budget(groceries))
        for amount in ("200.00", "150.00", "200.00"):
            await transactions.create(make_tx(
                checking, category_id=groceries.id, amount=Decimal(amount),
            ))
        
        result = await budgets.evaluate(groceries.id, 6, 2024)
        
        assert result.spent == Decimal("550.00")
        assert result.remaining == Decimal("-50.00")
        assert result.percentage_used == Decimal("110.00")
        assert result.status == BudgetStatus.EXCEEDED
    
    async def test_only_completed_expenses_in_period_count(
        self, budgets, transactions, checking, groceries, make_tx
    ):
        await budgets.create(_budget(groceries))
        await transactions.create(make_tx(checking, category_id=groceries.id))
        await transactions.create(make_tx(
            checking, category_id=groceries.id, status=TransactionStatus.PENDING,
        ))
        await transactions.create(make_tx(
            checking, category_id=groceries.id, type=TransactionType.INCOME,
        ))
        await transactions.create(make_tx(
            checking, category_id=groceries.id, transaction_date=date(2024, 5, 31),
        ))
        await transactions.create(make_tx(checking))
        
        result = await budgets.evaluate(groceries.id, 6, 2024)
        
        assert result.spent == Decimal("100.00")
        assert result.status == BudgetStatus.ACTIVE
    
    async def test_reflects_edits_without_invalidation(
        self, budgets, transactions, checking, groceries, make_tx
    ):
        await budgets.create(_budget(groceries))
        tx = await transactions.create(make_tx(checking, category_id=groceries.id))
        assert (await budgets.evaluate(groceries.id, 6, 2024)).spent == Decimal("100.00")
        
        await transactions.delete(tx.id)
        assert (await budgets.evaluate(groceries.id, 6, 2024)).spent == Decimal("0")
    
    async def test_elapsed_month_within_cap_is_completed(self, budgets, groceries):
        await budgets.create(_budget(groceries, month=5))
        result = await budgets.evaluate(groceries.id, 5, 2024)
        assert result.status == BudgetStatus.COMPLETED
    
    async def test_zero_amount_budget(self, budgets, groceries):
        await budgets.create(_budget(groceries, amount=Decimal("0")))
        result = await budgets.evaluate(groceries.id, 6, 2024)
        assert result.percentage_used == 0
        assert result.status == BudgetStatus.ACTIVE
    
    async def test_no_budget_for_key(self, budgets, groceries):
        with pytest.raises(NotFoundError):
            await budgets.evaluate(groceries.id, 6, 2024)


class TestUpdateAndList:
    
    async def test_update_into_existing_key_conflicts(self, budgets, groceries):
        await budgets.create(_budget(groceries))
        july = await budgets.create(_budget(groceries, month=7))
        with pytest.raises(ConflictError):
            await budgets.update(july.id, _budget(groceries, month=6))
    
    async def test_update_amount(self, budgets, groceries):
        budget = await budgets.create(_budget(groceries))
        updated = await budgets.update(budget.id, _budget(groceries, amount=Decimal("800")))
        assert updated.amount == Decimal("800")
        assert (await budgets.get(budget.id)).budget.amount == Decimal("800")
    
    async def test_list_by_period(self, budgets, groceries):
        await budgets.create(_budget(groceries))
        await budgets.create(_budget(groceries, month=7))
        june = await budgets.list_budgets(6, 2024)
        assert [e.budget.month for e in june] == [6]
    
    async def test_delete(self, budgets, groceries):
        budget = await budgets.create(_budget(groceries))
        await budgets.delete(budget.id)
        with pytest.raises(NotFoundError):
            await budgets.get(budget.id)
