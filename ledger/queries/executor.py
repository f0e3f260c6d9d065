"""
Read-Side Query Execution

DESIGN DECISION: Reads are DETERMINISTIC and lock-free.
This executor turns stored records (and engine evaluations) into the
view models the API returns, resolving referenced names along the way.

It never writes. Anything derived here (names, paid counts, goal
progress) is computed on every call and never stored.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from ledger.engine.budgets import BudgetEvaluation
from ledger.engine.goals import percentage_completed, remaining_amount
from ledger.models.records import (
    Account,
    Category,
    Goal,
    Installment,
    InstallmentGroup,
    InstallmentStatus,
    Transaction,
)
from ledger.models.views import (
    AccountView,
    BudgetView,
    CategoryView,
    GoalView,
    InstallmentGroupView,
    InstallmentView,
    Page,
    TransactionView,
)
from ledger.services.storage import LedgerStorageInterface


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class _Names:
    """Account and category lookups loaded once per query."""
    
    def __init__(self, accounts: list[Account], categories: list[Category]):
        self.accounts = {a.id: a for a in accounts}
        self.categories = {c.id: c for c in categories}
    
    def account(self, account_id: Optional[UUID]) -> Optional[str]:
        account = self.accounts.get(account_id) if account_id else None
        return account.name if account else None
    
    def category(self, category_id: Optional[UUID]) -> Optional[Category]:
        return self.categories.get(category_id) if category_id else None


class QueryExecutor:
    """
    Builds views and pages from storage.
    
    GUARANTEES:
    - Only returns real data from storage
    - Listings are sorted deterministically
    - Out-of-range pages come back empty, never as an error
    """
    
    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage
    
    async def _names(self) -> _Names:
        return _Names(
            await self._storage.list_records(Account),
            await self._storage.list_records(Category),
        )
    
    def _check_paging(self, page: int, size: int) -> None:
        if page < 0 or size < 1:
            raise QueryExecutionError(f"Invalid page request: page={page}, size={size}")
    
    # =========================================================================
    # ACCOUNTS & CATEGORIES
    # =========================================================================
    
    def account_view(self, account: Account) -> AccountView:
        return AccountView(**account.model_dump())
    
    def category_view(self, category: Category) -> CategoryView:
        return CategoryView(**category.model_dump())
    
    # =========================================================================
    # TRANSACTIONS
    # =========================================================================
    
    def _transaction_view(self, tx: Transaction, names: _Names) -> TransactionView:
        category = names.category(tx.category_id)
        return TransactionView(
            **tx.model_dump(),
            account_name=names.account(tx.account_id),
            category_name=category.name if category else None,
            destination_account_name=names.account(tx.destination_account_id),
        )
    
    async def transaction_view(self, tx: Transaction) -> TransactionView:
        return self._transaction_view(tx, await self._names())
    
    async def transaction_page(
        self,
        page: int = 0,
        size: int = 20,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Page[TransactionView]:
        """
        One page of transactions, newest ``transactionDate`` first.
        
        ``account_id`` matches the source or the destination account.
        """
        self._check_paging(page, size)
        transactions = await self._storage.list_transactions(
            account_id=account_id,
            date_from=date_from,
            date_to=date_to,
        )
        transactions.sort(key=lambda tx: (tx.transaction_date, tx.created_at), reverse=True)
        
        names = await self._names()
        views = [self._transaction_view(tx, names) for tx in transactions]
        return Page[TransactionView].slice(views, page, size)
    
    # =========================================================================
    # INSTALLMENTS
    # =========================================================================
    
    def _group_view(
        self,
        group: InstallmentGroup,
        installments: list[Installment],
        names: _Names,
    ) -> InstallmentGroupView:
        category = names.category(group.category_id)
        return InstallmentGroupView(
            **group.model_dump(),
            account_name=names.account(group.account_id),
            category_name=category.name if category else None,
            paid_count=sum(
                1 for i in installments if i.status == InstallmentStatus.COMPLETED
            ),
            installments=[
                InstallmentView(**i.model_dump())
                for i in installments
            ],
        )
    
    async def group_view(
        self,
        group: InstallmentGroup,
        installments: list[Installment],
    ) -> InstallmentGroupView:
        return self._group_view(group, installments, await self._names())
    
    def installment_view(self, installment: Installment) -> InstallmentView:
        return InstallmentView(**installment.model_dump())
    
    async def group_page(
        self,
        groups: list[InstallmentGroup],
        page: int = 0,
        size: int = 20,
    ) -> Page[InstallmentGroupView]:
        """Page through groups (already sorted), each with its installments."""
        self._check_paging(page, size)
        names = await self._names()
        window = Page.slice(groups, page, size)
        views = []
        for group in window.content:
            installments = await self._storage.list_installments(group.id)
            views.append(self._group_view(group, installments, names))
        
        return Page[InstallmentGroupView](
            content=views,
            **window.model_dump(exclude={"content"}),
        )
    
    # =========================================================================
    # BUDGETS & GOALS
    # =========================================================================
    
    async def budget_view(self, evaluation: BudgetEvaluation) -> BudgetView:
        category = await self._storage.get(Category, evaluation.budget.category_id)
        return self._budget_view(evaluation, category)
    
    def _budget_view(
        self,
        evaluation: BudgetEvaluation,
        category: Optional[Category],
    ) -> BudgetView:
        budget = evaluation.budget
        return BudgetView(
            id=budget.id,
            category_id=budget.category_id,
            category_name=category.name if category else None,
            category_color=category.color if category else None,
            amount=budget.amount,
            spent=evaluation.spent,
            remaining=evaluation.remaining,
            percentage_used=float(evaluation.percentage_used),
            month=budget.month,
            year=budget.year,
            status=evaluation.status,
            created_at=budget.created_at,
        )
    
    async def budget_views(self, evaluations: list[BudgetEvaluation]) -> list[BudgetView]:
        names = await self._names()
        return [
            self._budget_view(evaluation, names.category(evaluation.budget.category_id))
            for evaluation in evaluations
        ]
    
    def goal_view(self, goal: Goal) -> GoalView:
        return GoalView(
            **goal.model_dump(),
            remaining_amount=remaining_amount(goal),
            percentage_completed=float(percentage_completed(goal)),
        )
