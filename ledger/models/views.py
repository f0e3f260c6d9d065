"""
View Models

What the API boundary returns. Every view is built fresh from stored
records on each read; derived figures (spent, remaining, percentages,
paid counts) exist only here.

Money is a Decimal in Python and a JSON number on the wire.
"""

from datetime import date, datetime
from decimal import Decimal
from math import ceil
from typing import Annotated, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from ledger.models.records import (
    AccountType,
    BudgetStatus,
    CategoryType,
    GoalStatus,
    InstallmentStatus,
    TransactionStatus,
    TransactionType,
    utc_now,
)


Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]

T = TypeVar("T")


class LedgerView(BaseModel):
    """Base for response payloads (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
    
    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ACCOUNTS & CATEGORIES
# =============================================================================

class AccountView(LedgerView):
    id: UUID
    name: str
    type: AccountType
    balance: Money
    currency: str
    created_at: datetime


class BalanceCheck(LedgerView):
    """Result of recomputing an account balance from its transactions."""
    account_id: UUID
    initial_balance: Money
    expected_balance: Money
    actual_balance: Money
    difference: Money
    
    @property
    def consistent(self) -> bool:
        return self.difference == 0
    
    def to_wire(self) -> dict:
        data = super().to_wire()
        data["consistent"] = self.consistent
        return data


class CategoryView(LedgerView):
    id: UUID
    name: str
    type: CategoryType
    color: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool
    created_at: datetime


# =============================================================================
# TRANSACTIONS & INSTALLMENTS
# =============================================================================

class TransactionView(LedgerView):
    id: UUID
    account_id: UUID
    account_name: Optional[str] = None
    category_id: Optional[UUID] = None
    category_name: Optional[str] = None
    destination_account_id: Optional[UUID] = None
    destination_account_name: Optional[str] = None
    description: str
    amount: Money
    type: TransactionType
    status: TransactionStatus
    transaction_date: date
    notes: Optional[str] = None
    created_at: datetime


class InstallmentView(LedgerView):
    id: UUID
    group_id: UUID
    transaction_id: Optional[UUID] = None
    installment_number: int
    amount: Money
    due_date: date
    status: InstallmentStatus
    created_at: datetime


class InstallmentGroupView(LedgerView):
    id: UUID
    account_id: UUID
    account_name: Optional[str] = None
    category_id: Optional[UUID] = None
    category_name: Optional[str] = None
    description: str
    total_amount: Money
    installment_count: int
    paid_count: int = Field(
        ...,
        ge=0,
        description="Number of COMPLETED installments"
    )
    start_date: date
    notes: Optional[str] = None
    installments: list[InstallmentView] = Field(default_factory=list)
    created_at: datetime


# =============================================================================
# BUDGETS & GOALS
# =============================================================================

class BudgetView(LedgerView):
    """A budget with its spending evaluated for the period."""
    id: UUID
    category_id: UUID
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    amount: Money
    spent: Money
    remaining: Money = Field(
        ...,
        description="amount - spent; negative once the cap is exceeded"
    )
    percentage_used: float = Field(
        ...,
        ge=0,
        description="spent / amount * 100, uncapped; 0 when amount is 0"
    )
    month: int
    year: int
    status: BudgetStatus
    created_at: datetime


class GoalView(LedgerView):
    id: UUID
    name: str
    target_amount: Money
    current_amount: Money
    remaining_amount: Money
    percentage_completed: float = Field(..., ge=0, le=100)
    deadline: Optional[date] = None
    status: GoalStatus
    notes: Optional[str] = None
    created_at: datetime


# =============================================================================
# PAGING & ERRORS
# =============================================================================

class Page(LedgerView, Generic[T]):
    """One page of a listing, in the shape the front end pages through."""
    content: list[T] = Field(default_factory=list)
    total_elements: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    number: int = Field(..., ge=0)
    size: int = Field(..., ge=1)
    first: bool
    last: bool
    
    @classmethod
    def slice(cls, items: list, page: int, size: int) -> "Page":
        """Cut ``items`` (already sorted) into the requested page."""
        total = len(items)
        total_pages = ceil(total / size) if total else 0
        start = page * size
        return cls(
            content=items[start:start + size],
            total_elements=total,
            total_pages=total_pages,
            number=page,
            size=size,
            first=page == 0,
            last=page >= total_pages - 1,
        )


class FieldError(LedgerView):
    field: str
    message: str


class ErrorResponse(LedgerView):
    status: int
    error: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    fields: Optional[list[FieldError]] = None
