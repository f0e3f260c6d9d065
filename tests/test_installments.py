"""Tests for the Installment Scheduler."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger.engine.installments import due_date, split_amount
from ledger.errors import InvalidStateTransition, NotFoundError, ValidationError
from ledger.models import (
    Account,
    InstallmentRequest,
    InstallmentStatus,
    TransactionRequest,
    TransactionStatus,
)


def _plan(account, **overrides) -> InstallmentRequest:
    fields = {
        "account_id": account.id,
        "description": "Laptop",
        "total_amount": Decimal("100.00"),
        "installment_count": 3,
        "start_date": date(2024, 1, 31),
    }
    fields.update(overrides)
    return InstallmentRequest(**fields)


def _edit(tx, **overrides) -> TransactionRequest:
    fields = tx.model_dump(include={
        "account_id", "category_id", "destination_account_id", "description",
        "amount", "type", "status", "transaction_date", "notes",
    })
    fields.update(overrides)
    return TransactionRequest(**fields)


class TestSplitAmount:
    
    def test_remainder_goes_on_last_installment(self):
        assert split_amount(Decimal("100.00"), 3) == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]
    
    def test_even_split(self):
        assert split_amount(Decimal("120.00"), 4) == [Decimal("30.00")] * 4
    
    def test_sum_is_exact_for_awkward_totals(self):
        amounts = split_amount(Decimal("1000.01"), 7)
        assert sum(amounts) == Decimal("1000.01")
        assert amounts[:-1] == [Decimal("142.85")] * 6
    
    def test_zero_precision_currency(self):
        assert split_amount(Decimal("100"), 3, precision=0) == [
            Decimal("33"), Decimal("33"), Decimal("34"),
        ]


class TestDueDates:
    
    def test_monthly_steps_clamp_to_month_end(self):
        start = date(2024, 1, 31)
        assert [due_date(start, n) for n in (1, 2, 3)] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31),
        ]


class TestCreateGroup:
    
    async def test_generates_pending_installments(self, installments, checking):
        group = await installments.create_group(_plan(checking))
        group, items = await installments.get_group(group.id)
        
        assert [i.installment_number for i in items] == [1, 2, 3]
        assert [i.amount for i in items] == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]
        assert all(i.status == InstallmentStatus.PENDING for i in items)
        assert all(i.transaction_id is None for i in items)
        assert sum(i.amount for i in items) == group.total_amount
    
    async def test_creating_a_plan_does_not_move_balance(self, storage, installments, checking):
        await installments.create_group(_plan(checking))
        assert (await storage.get(Account, checking.id)).balance == Decimal("1000.00")
    
    @pytest.mark.parametrize("count", [1, 361])
    async def test_count_out_of_range(self, installments, checking, count):
        with pytest.raises(ValidationError) as exc_info:
            await installments.create_group(_plan(checking, installment_count=count))
        assert exc_info.value.fields[0]["field"] == "installmentCount"
    
    async def test_non_positive_total(self, installments, checking):
        with pytest.raises(ValidationError):
            await installments.create_group(_plan(checking, total_amount=Decimal("0")))
    
    async def test_unknown_account(self, installments, checking):
        request = _plan(checking).model_copy(update={"account_id": uuid4()})
        with pytest.raises(ValidationError):
            await installments.create_group(request)
    
    async def test_description_leaves_room_for_payment_suffix(self, installments, checking):
        with pytest.raises(ValidationError) as exc_info:
            await installments.create_group(_plan(
                checking, description="x" * 250, installment_count=12,
            ))
        assert exc_info.value.fields[0]["field"] == "description"
    
    async def test_longest_allowed_description_can_be_paid(
        self, installments, transactions, checking
    ):
        base = "x" * (255 - len(" (12/12)"))
        group = await installments.create_group(_plan(
            checking, description=base, installment_count=12,
        ))
        _, items = await installments.get_group(group.id)
        
        paid = await installments.pay(items[-1].id)
        
        tx = await transactions.get(paid.transaction_id)
        assert tx.description == f"{base} (12/12)"
        assert len(tx.description) == 255
    
    async def test_total_too_small_to_split(self, installments, checking):
        with pytest.raises(ValidationError) as exc_info:
            await installments.create_group(_plan(checking, total_amount=Decimal("0.02")))
        assert exc_info.value.fields == [{
            "field": "totalAmount",
            "message": "Total amount must be at least 0.03 for 3 installments",
        }]
    
    async def test_smallest_splittable_total_is_payable(self, installments, checking):
        group = await installments.create_group(_plan(checking, total_amount=Decimal("0.03")))
        _, items = await installments.get_group(group.id)
        
        assert [i.amount for i in items] == [Decimal("0.01")] * 3
        for item in items:
            assert (await installments.pay(item.id)).status == InstallmentStatus.COMPLETED


class TestPay:
    
    async def test_pay_creates_linked_completed_expense(
        self, storage, installments, transactions, checking, groceries
    ):
        group = await installments.create_group(_plan(checking, category_id=groceries.id))
        _, items = await installments.get_group(group.id)
        
        paid = await installments.pay(items[0].id)
        
        assert paid.status == InstallmentStatus.COMPLETED
        tx = await transactions.get(paid.transaction_id)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.amount == Decimal("33.33")
        assert tx.category_id == groceries.id
        assert tx.description == "Laptop (1/3)"
        assert tx.transaction_date == date(2024, 6, 15)
        assert (await storage.get(Account, checking.id)).balance == Decimal("966.67")
    
    async def test_paying_twice_is_rejected(self, storage, installments, checking):
        group = await installments.create_group(_plan(checking))
        _, items = await installments.get_group(group.id)
        await installments.pay(items[0].id)
        
        with pytest.raises(InvalidStateTransition):
            await installments.pay(items[0].id)
        assert len(await storage.list_transactions(account_id=checking.id)) == 1
    
    async def test_paying_every_installment(self, storage, installments, accounts, checking):
        group = await installments.create_group(_plan(checking, installment_count=4))
        _, items = await installments.get_group(group.id)
        for item in items:
            await installments.pay(item.id)
        
        assert await installments.paid_count(group.id) == 4
        completed = await storage.list_transactions(
            account_id=checking.id, status=TransactionStatus.COMPLETED
        )
        assert len(completed) == 4
        assert (await storage.get(Account, checking.id)).balance == Decimal("900.00")
        assert (await accounts.reconcile(checking.id)).consistent
    
    async def test_unknown_installment(self, installments):
        with pytest.raises(NotFoundError):
            await installments.pay(uuid4())


class TestCancelGroup:
    
    async def test_cancel_keeps_paid_installments(self, storage, installments, checking):
        group = await installments.create_group(_plan(checking, installment_count=5))
        _, items = await installments.get_group(group.id)
        await installments.pay(items[0].id)
        await installments.pay(items[1].id)
        balance = (await storage.get(Account, checking.id)).balance
        
        cancelled = await installments.cancel_group(group.id)
        
        assert cancelled == 3
        assert await installments.paid_count(group.id) == 2
        _, items = await installments.get_group(group.id)
        assert [i.status for i in items] == (
            [InstallmentStatus.COMPLETED] * 2 + [InstallmentStatus.CANCELLED] * 3
        )
        assert (await storage.get(Account, checking.id)).balance == balance
        assert len(await storage.list_transactions(account_id=checking.id)) == 2
    
    async def test_second_cancel_is_a_no_op(self, installments, checking):
        group = await installments.create_group(_plan(checking))
        await installments.cancel_group(group.id)
        assert await installments.cancel_group(group.id) == 0
    
    async def test_cancelled_installment_cannot_be_paid(self, installments, checking):
        group = await installments.create_group(_plan(checking))
        await installments.cancel_group(group.id)
        _, items = await installments.get_group(group.id)
        with pytest.raises(InvalidStateTransition):
            await installments.pay(items[0].id)
    
    async def test_unknown_group(self, installments):
        with pytest.raises(NotFoundError):
            await installments.cancel_group(uuid4())


class TestLinkedTransactionRelease:
    
    async def test_deleting_backing_transaction_reverts_installment(
        self, storage, installments, transactions, checking
    ):
        group = await installments.create_group(_plan(checking))
        _, items = await installments.get_group(group.id)
        paid = await installments.pay(items[0].id)
        
        await transactions.delete(paid.transaction_id)
        
        _, items = await installments.get_group(group.id)
        assert items[0].status == InstallmentStatus.PENDING
        assert items[0].transaction_id is None
        assert await installments.paid_count(group.id) == 0
        assert (await storage.get(Account, checking.id)).balance == Decimal("1000.00")
    
    async def test_cancelling_backing_transaction_reverts_installment(
        self, installments, transactions, checking
    ):
        group = await installments.create_group(_plan(checking))
        _, items = await installments.get_group(group.id)
        paid = await installments.pay(items[0].id)
        
        await transactions.set_status(paid.transaction_id, TransactionStatus.CANCELLED)
        
        _, items = await installments.get_group(group.id)
        assert items[0].status == InstallmentStatus.PENDING
        # Released installments can be paid again
        repaid = await installments.pay(items[0].id)
        assert repaid.transaction_id != paid.transaction_id
    
    async def test_editing_backing_transaction_amount_releases_installment(
        self, installments, transactions, checking
    ):
        group = await installments.create_group(_plan(checking))
        _, items = await installments.get_group(group.id)
        paid = await installments.pay(items[0].id)
        tx = await transactions.get(paid.transaction_id)
        
        await transactions.update(tx.id, _edit(tx, amount=Decimal("10.00")))
        
        _, items = await installments.get_group(group.id)
        assert items[0].status == InstallmentStatus.PENDING
        assert items[0].transaction_id is None
    
    async def test_editing_backing_transaction_notes_keeps_link(
        self, installments, transactions, checking
    ):
        group = await installments.create_group(_plan(checking))
        _, items = await installments.get_group(group.id)
        paid = await installments.pay(items[0].id)
        tx = await transactions.get(paid.transaction_id)
        
        await transactions.update(tx.id, _edit(tx, notes="Paid at the store"))
        
        _, items = await installments.get_group(group.id)
        assert items[0].status == InstallmentStatus.COMPLETED
        assert items[0].transaction_id == tx.id
