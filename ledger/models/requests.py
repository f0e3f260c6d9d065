"""
Request Models

The payloads the API boundary accepts. Record payloads check types only;
range and reference checks belong to the validator so that every engine
entry point reports problems as field-level ``ValidationError``s. Paging
and period selectors carry their own bounds.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ledger.models.records import (
    AccountType,
    CategoryType,
    TransactionStatus,
    TransactionType,
)


class LedgerRequest(BaseModel):
    """Base for request payloads (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class AccountRequest(LedgerRequest):
    name: str
    type: AccountType
    balance: Decimal = Decimal("0")
    currency: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class CategoryRequest(LedgerRequest):
    name: str
    type: CategoryType
    color: Optional[str] = None
    icon: Optional[str] = None


class TransactionRequest(LedgerRequest):
    """
    Payload for creating or replacing a transaction.
    
    ``destination_account_id`` is required for TRANSFER and forbidden
    otherwise.
    """
    account_id: UUID
    category_id: Optional[UUID] = None
    destination_account_id: Optional[UUID] = None
    description: str
    amount: Decimal
    type: TransactionType
    status: TransactionStatus = TransactionStatus.COMPLETED
    transaction_date: date
    notes: Optional[str] = None


class InstallmentRequest(LedgerRequest):
    account_id: UUID
    category_id: Optional[UUID] = None
    description: str
    total_amount: Decimal
    installment_count: int
    start_date: date
    notes: Optional[str] = None


class BudgetRequest(LedgerRequest):
    category_id: UUID
    amount: Decimal
    month: int
    year: int


class GoalRequest(LedgerRequest):
    name: str
    target_amount: Decimal
    current_amount: Optional[Decimal] = None
    deadline: Optional[date] = None
    notes: Optional[str] = None


class PageRequest(LedgerRequest):
    """Page selection for listings (zero-based page number)."""
    page: int = Field(default=0, ge=0)
    size: int = Field(default=10, ge=1, le=100)


class TransactionFilter(PageRequest):
    account_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class PeriodRequest(LedgerRequest):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000)


class DepositRequest(LedgerRequest):
    amount: Decimal


class StatusRequest(LedgerRequest):
    status: TransactionStatus
