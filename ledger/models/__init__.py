"""
Data Models Package

This package contains all Pydantic models used by the Household Ledger.
Records are what storage holds, requests are what callers send, views
are what callers get back.
"""

from ledger.models.records import (
    Account,
    AccountType,
    Budget,
    BudgetStatus,
    Category,
    CategoryType,
    Goal,
    GoalStatus,
    Installment,
    InstallmentGroup,
    InstallmentStatus,
    LedgerRecord,
    Transaction,
    TransactionStatus,
    TransactionType,
    utc_now,
)
from ledger.models.requests import (
    AccountRequest,
    BudgetRequest,
    CategoryRequest,
    DepositRequest,
    GoalRequest,
    InstallmentRequest,
    PageRequest,
    PeriodRequest,
    StatusRequest,
    TransactionFilter,
    TransactionRequest,
)
from ledger.models.views import (
    AccountView,
    BalanceCheck,
    BudgetView,
    CategoryView,
    ErrorResponse,
    FieldError,
    GoalView,
    InstallmentGroupView,
    InstallmentView,
    Page,
    TransactionView,
)
from ledger.models.validation import ValidationIssue, ValidationResult
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "Account",
    "AccountType",
    "Budget",
    "BudgetStatus",
    "Category",
    "CategoryType",
    "Goal",
    "GoalStatus",
    "Installment",
    "InstallmentGroup",
    "InstallmentStatus",
    "LedgerRecord",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "utc_now",
    # Requests
    "AccountRequest",
    "BudgetRequest",
    "CategoryRequest",
    "DepositRequest",
    "GoalRequest",
    "InstallmentRequest",
    "PageRequest",
    "PeriodRequest",
    "StatusRequest",
    "TransactionFilter",
    "TransactionRequest",
    # Views
    "AccountView",
    "BalanceCheck",
    "BudgetView",
    "CategoryView",
    "ErrorResponse",
    "FieldError",
    "GoalView",
    "InstallmentGroupView",
    "InstallmentView",
    "Page",
    "TransactionView",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
