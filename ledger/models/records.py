"""
Core Record Models for Household Ledger

These models define the stored shape of every ledger record.
They are designed to:
1. Enforce type safety at runtime
2. Round-trip losslessly through storage (money stays Decimal)
3. Accept both snake_case and camelCase field names

DESIGN DECISION: Records hold only source-of-truth fields.
Derived figures (budget spent, goal progress, paid counts) live on the
view models and are recomputed on every read.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of account a user can hold."""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    WALLET = "WALLET"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"


class CategoryType(str, Enum):
    """Whether a category classifies money coming in or going out."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionType(str, Enum):
    """
    Transaction kinds.
    
    INCOME credits the account, EXPENSE debits it, TRANSFER debits the
    source account and credits the destination account.
    """
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, Enum):
    """
    Transaction lifecycle.
    
    CRITICAL: Only COMPLETED transactions move account balances.
    PENDING -> COMPLETED -> CANCELLED, or PENDING -> CANCELLED.
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class InstallmentStatus(str, Enum):
    """Installment lifecycle. COMPLETED only through payment."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BudgetStatus(str, Enum):
    """Budget state, derived from spending and the calendar."""
    ACTIVE = "ACTIVE"
    EXCEEDED = "EXCEEDED"
    COMPLETED = "COMPLETED"


class GoalStatus(str, Enum):
    """Savings goal lifecycle."""
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# =============================================================================
# BASE RECORD
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Fields shared by every stored record.
    
    ``kind`` names the storage table the record lives in.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
    
    kind: ClassVar[str] = "record"
    
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the record was created"
    )


# =============================================================================
# ACCOUNTS & CATEGORIES
# =============================================================================

class Account(LedgerRecord):
    """
    A place money is held.
    
    CRITICAL: ``balance`` is written only by the Transaction Engine.
    At all times it equals ``initial_balance`` plus the signed effect of
    every COMPLETED transaction that references the account.
    """
    kind: ClassVar[str] = "account"
    
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(
        ...,
        description="Current balance (signed)"
    )
    initial_balance: Decimal = Field(
        ...,
        description="Balance the account was opened with"
    )
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )


class Category(LedgerRecord):
    """A label for transactions, budgets and installment plans."""
    kind: ClassVar[str] = "category"
    
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    color: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool = Field(
        default=False,
        description="System-seeded categories cannot be edited or deleted"
    )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(LedgerRecord):
    """
    A single movement of money.
    
    ``destination_account_id`` is set only for TRANSFER transactions.
    """
    kind: ClassVar[str] = "transaction"
    
    account_id: UUID
    category_id: Optional[UUID] = None
    destination_account_id: Optional[UUID] = None
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    status: TransactionStatus
    transaction_date: date
    notes: Optional[str] = None
    
    def balance_effects(self) -> dict[UUID, Decimal]:
        """
        Signed balance change this transaction causes once COMPLETED.
        
        Returns:
            Mapping of account id to the amount added to its balance
        """
        if self.type == TransactionType.INCOME:
            return {self.account_id: self.amount}
        if self.type == TransactionType.EXPENSE:
            return {self.account_id: -self.amount}
        
        effects = {self.account_id: -self.amount}
        if self.destination_account_id is not None:
            effects[self.destination_account_id] = (
                effects.get(self.destination_account_id, Decimal("0")) + self.amount
            )
        return effects
    
    def referenced_accounts(self) -> set[UUID]:
        accounts = {self.account_id}
        if self.destination_account_id is not None:
            accounts.add(self.destination_account_id)
        return accounts


# =============================================================================
# INSTALLMENT PLANS
# =============================================================================

class InstallmentGroup(LedgerRecord):
    """A single purchase split into dated, individually payable installments."""
    kind: ClassVar[str] = "installment_group"
    
    account_id: UUID
    category_id: Optional[UUID] = None
    description: str = Field(..., min_length=1, max_length=255)
    total_amount: Decimal = Field(..., gt=0)
    installment_count: int = Field(..., ge=2)
    start_date: date
    notes: Optional[str] = None


class Installment(LedgerRecord):
    """
    One payable slice of an installment group.
    
    CRITICAL: ``transaction_id`` is set exactly while the installment is
    COMPLETED; it points at the expense transaction that paid it.
    """
    kind: ClassVar[str] = "installment"
    
    group_id: UUID
    transaction_id: Optional[UUID] = None
    installment_number: int = Field(..., ge=1)
    amount: Decimal
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING


# =============================================================================
# BUDGETS & GOALS
# =============================================================================

class Budget(LedgerRecord):
    """
    A monthly spending cap for one category.
    
    Only the cap is stored. Spending is summed from transactions on read.
    """
    kind: ClassVar[str] = "budget"
    
    category_id: UUID
    amount: Decimal = Field(..., ge=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000)


class Goal(LedgerRecord):
    """A savings target tracked through explicit deposits."""
    kind: ClassVar[str] = "goal"
    
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    deadline: Optional[date] = None
    status: GoalStatus = GoalStatus.IN_PROGRESS
    notes: Optional[str] = None
