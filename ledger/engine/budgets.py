"""
Budget Aggregator

Budgets store only their cap. Everything else (spent, remaining,
percentage used, status) is recomputed from COMPLETED expense
transactions on every read, so transaction edits show up immediately.

Status rule:
    EXCEEDED   spent > amount
    COMPLETED  the month is over and spending stayed within the cap
    ACTIVE     otherwise
"""

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Callable, NamedTuple, Optional
from uuid import UUID

from ledger.audit import AuditLogger
from ledger.errors import ConflictError, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import (
    Budget,
    BudgetStatus,
    TransactionStatus,
    TransactionType,
)
from ledger.models.requests import BudgetRequest
from ledger.services.storage import LedgerStorageInterface, budget_lock
from ledger.validation import LedgerValidator


class BudgetEvaluation(NamedTuple):
    """Derived figures for one budget."""
    budget: Budget
    spent: Decimal
    remaining: Decimal
    percentage_used: Decimal
    status: BudgetStatus


def month_bounds(month: int, year: int) -> tuple[date, date]:
    """First and last day of a month."""
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` rounded to 2 places; 0 when ``whole`` is 0."""
    if whole == 0:
        return Decimal("0")
    return (part / whole * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class BudgetAggregator:
    """Defines monthly caps and evaluates spending against them."""
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        audit: Optional[AuditLogger] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._audit = audit or AuditLogger()
        self._today = today or date.today
    
    async def _require(self, budget_id: UUID) -> Budget:
        budget = await self._storage.get(Budget, budget_id)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget
    
    async def _ensure_unique(self, request: BudgetRequest, budget_id: Optional[UUID] = None) -> None:
        existing = await self._storage.find_budget(
            request.category_id, request.month, request.year
        )
        if existing is not None and existing.id != budget_id:
            raise ConflictError(
                f"A budget for this category already exists for "
                f"{request.month:02d}/{request.year}"
            )
    
    def _log_after_commit(self, event_type: AuditEventType, budget: Budget, description: str):
        return self._storage.after_commit(partial(
            self._audit.log_record_changed,
            event_type,
            Budget.kind,
            budget.id,
            description,
            {
                "category_id": str(budget.category_id),
                "amount": str(budget.amount),
                "period": f"{budget.year}-{budget.month:02d}",
            },
        ))
    
    # =========================================================================
    # MUTATIONS
    # =========================================================================
    
    async def create(self, request: BudgetRequest) -> Budget:
        """
        Define a cap for a category and month.
        
        Raises:
            ValidationError: Negative amount, bad period, unknown category
            ConflictError: A budget already exists for the key
        """
        self._validator.ensure(
            await self._validator.validate_budget(request), "create_budget"
        )
        key = budget_lock(request.category_id, request.month, request.year)
        async with self._storage.unit_of_work([key]):
            await self._ensure_unique(request)
            budget = Budget(**request.model_dump())
            await self._storage.save(budget)
            await self._log_after_commit(
                AuditEventType.BUDGET_CREATED, budget, "Budget created"
            )
        return budget
    
    async def update(self, budget_id: UUID, request: BudgetRequest) -> Budget:
        """
        Change a budget's cap, and possibly its category or period.
        
        Raises:
            NotFoundError: Unknown budget
            ValidationError: Invalid payload
            ConflictError: Another budget already owns the new key
        """
        current = await self._require(budget_id)
        self._validator.ensure(
            await self._validator.validate_budget(request), "update_budget"
        )
        keys = [
            budget_lock(current.category_id, current.month, current.year),
            budget_lock(request.category_id, request.month, request.year),
        ]
        async with self._storage.unit_of_work(keys):
            current = await self._require(budget_id)
            await self._ensure_unique(request, budget_id)
            updated = current.model_copy(update=request.model_dump())
            await self._storage.save(updated)
            await self._log_after_commit(
                AuditEventType.BUDGET_UPDATED, updated, "Budget updated"
            )
        return updated
    
    async def delete(self, budget_id: UUID) -> None:
        budget = await self._require(budget_id)
        async with self._storage.unit_of_work(
            [budget_lock(budget.category_id, budget.month, budget.year)]
        ):
            await self._storage.delete(Budget, budget_id)
            await self._log_after_commit(
                AuditEventType.BUDGET_DELETED, budget, "Budget deleted"
            )
    
    # =========================================================================
    # READS
    # =========================================================================
    
    def _status(self, budget: Budget, spent: Decimal) -> BudgetStatus:
        if spent > budget.amount:
            return BudgetStatus.EXCEEDED
        _, last_day = month_bounds(budget.month, budget.year)
        if self._today() > last_day:
            return BudgetStatus.COMPLETED
        return BudgetStatus.ACTIVE
    
    async def _evaluate(self, budget: Budget) -> BudgetEvaluation:
        first_day, last_day = month_bounds(budget.month, budget.year)
        spent = await self._storage.sum_transactions(
            category_id=budget.category_id,
            date_from=first_day,
            date_to=last_day,
            status=TransactionStatus.COMPLETED,
            type=TransactionType.EXPENSE,
        )
        return BudgetEvaluation(
            budget=budget,
            spent=spent,
            remaining=budget.amount - spent,
            percentage_used=percentage(spent, budget.amount),
            status=self._status(budget, spent),
        )
    
    async def get(self, budget_id: UUID) -> BudgetEvaluation:
        return await self._evaluate(await self._require(budget_id))
    
    async def evaluate(self, category_id: UUID, month: int, year: int) -> BudgetEvaluation:
        """
        Evaluate the budget defined for a category and month.
        
        Raises:
            NotFoundError: No budget is defined for the key
        """
        budget = await self._storage.find_budget(category_id, month, year)
        if budget is None:
            raise NotFoundError("Budget not found for this category and period")
        return await self._evaluate(budget)
    
    async def list_budgets(self, month: int, year: int) -> list[BudgetEvaluation]:
        """Every budget of a period, evaluated."""
        budgets = await self._storage.list_records(
            Budget, lambda b: b.month == month and b.year == year
        )
        return [await self._evaluate(budget) for budget in budgets]
