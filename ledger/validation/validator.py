"""
Two-Stage Request Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - FIELD VALIDATION:
- Required text present and within length
- Amounts positive (or non-negative) and within currency precision
- Ranges (month, year, installment count)
- Shape rules (transfer needs a destination, nothing else may have one)
- This catches malformed input without touching storage

STAGE 2 - REFERENCE VALIDATION:
- Every id inside the payload (accountId, destinationAccountId,
  categoryId) resolves to a stored record
- Soft checks that produce warnings (category type vs. transaction type)

Stage 2 is skipped when stage 1 fails.

IMPORTANT: Validation NEVER silently fixes input.
Errors are raised as a field-level ValidationError; warnings are logged.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

import structlog

from ledger.config import AppSettings, get_settings
from ledger.errors import ValidationError
from ledger.models.records import (
    Account,
    Category,
    CategoryType,
    TransactionType,
)
from ledger.models.requests import (
    AccountRequest,
    BudgetRequest,
    CategoryRequest,
    GoalRequest,
    InstallmentRequest,
    TransactionRequest,
)
from ledger.models.validation import ValidationIssue, ValidationResult
from ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)

COLOR_PATTERN = re.compile(r"^#[A-Fa-f0-9]{6}$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 255
ICON_MAX_LENGTH = 50
MIN_BUDGET_YEAR = 2000


def _error(field: str, issue_type: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, issue_type=issue_type, message=message)


def _warning(field: str, issue_type: str, message: str) -> ValidationIssue:
    return ValidationIssue(
        field=field, issue_type=issue_type, message=message, severity="warning"
    )


class LedgerValidator:
    """
    Validates request payloads through a two-stage pipeline.
    
    Stage 1: Field validation (no storage access)
    Stage 2: Reference validation (reads storage)
    """
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[AppSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize validator.
        
        Args:
            storage: Storage used to resolve ids inside payloads
            settings: Application settings (currency precision, limits)
            today: Clock used for date warnings
        """
        self._storage = storage
        self._settings = settings or get_settings().app
        self._today = today or date.today
    
    # =========================================================================
    # SHARED CHECKS
    # =========================================================================
    
    def _check_text(
        self,
        issues: list[ValidationIssue],
        field: str,
        label: str,
        value: Optional[str],
        max_length: int,
        required: bool = True,
    ) -> None:
        if not value:
            if required:
                issues.append(_error(field, "missing", f"{label} is required"))
            return
        if len(value) > max_length:
            issues.append(_error(
                field,
                "too_long",
                f"{label} must be at most {max_length} characters",
            ))
    
    def _check_amount(
        self,
        issues: list[ValidationIssue],
        field: str,
        label: str,
        value: Optional[Decimal],
        allow_zero: bool = False,
    ) -> None:
        if value is None:
            issues.append(_error(field, "missing", f"{label} is required"))
            return
        if not value.is_finite():
            issues.append(_error(field, "invalid_value", f"{label} must be a number"))
            return
        if allow_zero and value < 0:
            issues.append(_error(
                field, "out_of_range", f"{label} must be zero or positive"
            ))
            return
        if not allow_zero and value <= 0:
            issues.append(_error(field, "out_of_range", f"{label} must be positive"))
            return
        
        precision = self._settings.currency_precision
        if -value.as_tuple().exponent > precision:
            issues.append(_error(
                field,
                "too_precise",
                f"{label} must have at most {precision} decimal places",
            ))
    
    async def _check_account(
        self,
        issues: list[ValidationIssue],
        field: str,
        account_id,
    ) -> Optional[Account]:
        account = await self._storage.get(Account, account_id)
        if account is None:
            issues.append(_error(field, "unknown_reference", "Account not found"))
        return account
    
    async def _check_category(
        self,
        issues: list[ValidationIssue],
        field: str,
        category_id,
    ) -> Optional[Category]:
        if category_id is None:
            return None
        category = await self._storage.get(Category, category_id)
        if category is None:
            issues.append(_error(field, "unknown_reference", "Category not found"))
        return category
    
    def _result(
        self,
        fields_issues: list[ValidationIssue],
        reference_issues: Optional[list[ValidationIssue]],
    ) -> ValidationResult:
        fields_valid = not any(i.severity == "error" for i in fields_issues)
        if reference_issues is None:
            return ValidationResult(
                fields_valid=fields_valid,
                references_valid=False,
                issues=fields_issues,
            )
        return ValidationResult(
            fields_valid=fields_valid,
            references_valid=not any(i.severity == "error" for i in reference_issues),
            issues=fields_issues + reference_issues,
        )
    
    # =========================================================================
    # ACCOUNTS & CATEGORIES
    # =========================================================================
    
    async def validate_account(self, request: AccountRequest) -> ValidationResult:
        issues = []
        self._check_text(issues, "name", "Name", request.name, NAME_MAX_LENGTH)
        self._check_amount(issues, "balance", "Balance", request.balance, allow_zero=True)
        if request.currency is not None and not CURRENCY_PATTERN.match(request.currency):
            issues.append(_error(
                "currency", "invalid_format", "Currency must be a 3-letter code"
            ))
        return self._result(issues, [])
    
    async def validate_category(self, request: CategoryRequest) -> ValidationResult:
        issues = []
        self._check_text(issues, "name", "Name", request.name, NAME_MAX_LENGTH)
        if request.color is not None and not COLOR_PATTERN.match(request.color):
            issues.append(_error(
                "color", "invalid_format", "Color must be a valid hex code"
            ))
        self._check_text(
            issues, "icon", "Icon", request.icon, ICON_MAX_LENGTH, required=False
        )
        return self._result(issues, [])
    
    # =========================================================================
    # TRANSACTIONS & INSTALLMENTS
    # =========================================================================
    
    def _validate_transaction_fields(
        self,
        request: TransactionRequest,
    ) -> list[ValidationIssue]:
        issues = []
        self._check_text(
            issues, "description", "Description", request.description,
            DESCRIPTION_MAX_LENGTH,
        )
        self._check_amount(issues, "amount", "Amount", request.amount)
        self._check_text(
            issues, "notes", "Notes", request.notes, DESCRIPTION_MAX_LENGTH,
            required=False,
        )
        
        if request.type == TransactionType.TRANSFER:
            if request.destination_account_id is None:
                issues.append(_error(
                    "destinationAccountId",
                    "missing",
                    "Destination account is required for transfers",
                ))
            elif request.destination_account_id == request.account_id:
                issues.append(_error(
                    "destinationAccountId",
                    "self_transfer",
                    "Source and destination accounts must be different",
                ))
        elif request.destination_account_id is not None:
            issues.append(_error(
                "destinationAccountId",
                "not_allowed",
                "Destination account is only allowed for transfers",
            ))
        return issues
    
    async def validate_transaction(
        self,
        request: TransactionRequest,
    ) -> ValidationResult:
        """
        Run both stages for a transaction payload.
        
        Args:
            request: Transaction create or replace payload
            
        Returns:
            ValidationResult with all issues found
        """
        field_issues = self._validate_transaction_fields(request)
        if any(i.severity == "error" for i in field_issues):
            return self._result(field_issues, None)
        
        issues = []
        await self._check_account(issues, "accountId", request.account_id)
        if request.destination_account_id is not None:
            await self._check_account(
                issues, "destinationAccountId", request.destination_account_id
            )
        category = await self._check_category(issues, "categoryId", request.category_id)
        
        if category is not None and request.type != TransactionType.TRANSFER:
            expected = (
                CategoryType.INCOME
                if request.type == TransactionType.INCOME
                else CategoryType.EXPENSE
            )
            if category.type != expected:
                issues.append(_warning(
                    "categoryId",
                    "type_mismatch",
                    f"{category.type.value} category used on an "
                    f"{request.type.value} transaction",
                ))
        return self._result(field_issues, issues)
    
    async def validate_installment_group(
        self,
        request: InstallmentRequest,
    ) -> ValidationResult:
        field_issues = []
        count = request.installment_count
        max_count = self._settings.max_installment_count
        count_valid = 2 <= count <= max_count
        if not count_valid:
            field_issues.append(_error(
                "installmentCount",
                "out_of_range",
                f"Installment count must be between 2 and {max_count}",
            ))
        
        # Leave room for the " (n/count)" suffix payments add
        max_description = DESCRIPTION_MAX_LENGTH
        if count_valid:
            max_description -= len(f" ({count}/{count})")
        self._check_text(
            field_issues, "description", "Description", request.description,
            max_description,
        )
        
        amount_issues = len(field_issues)
        self._check_amount(field_issues, "totalAmount", "Total amount", request.total_amount)
        if count_valid and len(field_issues) == amount_issues:
            smallest = Decimal(1).scaleb(-self._settings.currency_precision)
            if request.total_amount < smallest * count:
                field_issues.append(_error(
                    "totalAmount",
                    "out_of_range",
                    f"Total amount must be at least {smallest * count} "
                    f"for {count} installments",
                ))
        if any(i.severity == "error" for i in field_issues):
            return self._result(field_issues, None)
        
        issues = []
        await self._check_account(issues, "accountId", request.account_id)
        await self._check_category(issues, "categoryId", request.category_id)
        return self._result(field_issues, issues)
    
    # =========================================================================
    # BUDGETS & GOALS
    # =========================================================================
    
    async def validate_budget(self, request: BudgetRequest) -> ValidationResult:
        field_issues = []
        self._check_amount(field_issues, "amount", "Amount", request.amount, allow_zero=True)
        if not 1 <= request.month <= 12:
            field_issues.append(_error(
                "month", "out_of_range", "Month must be between 1 and 12"
            ))
        if request.year < MIN_BUDGET_YEAR:
            field_issues.append(_error(
                "year", "out_of_range", f"Year must be {MIN_BUDGET_YEAR} or later"
            ))
        if any(i.severity == "error" for i in field_issues):
            return self._result(field_issues, None)
        
        issues = []
        category = await self._check_category(issues, "categoryId", request.category_id)
        if category is not None and category.type != CategoryType.EXPENSE:
            issues.append(_warning(
                "categoryId",
                "type_mismatch",
                "Budgets only count expense transactions",
            ))
        return self._result(field_issues, issues)
    
    async def validate_goal(self, request: GoalRequest) -> ValidationResult:
        issues = []
        self._check_text(issues, "name", "Name", request.name, NAME_MAX_LENGTH)
        self._check_amount(issues, "targetAmount", "Target amount", request.target_amount)
        if request.current_amount is not None:
            self._check_amount(
                issues, "currentAmount", "Current amount", request.current_amount,
                allow_zero=True,
            )
        if request.deadline is not None and request.deadline < self._today():
            issues.append(_warning(
                "deadline", "past_date", "Deadline is in the past"
            ))
        return self._result(issues, [])
    
    def validate_deposit(self, amount: Optional[Decimal]) -> ValidationResult:
        issues = []
        self._check_amount(issues, "amount", "Amount", amount)
        return self._result(issues, [])
    
    # =========================================================================
    # RAISING
    # =========================================================================
    
    def ensure(self, result: ValidationResult, operation: str) -> None:
        """
        Raise if the result carries errors; log its warnings.
        
        Raises:
            ValidationError: With every error issue as a field entry
        """
        for warning in result.warnings:
            logger.warning(
                "validation_warning",
                operation=operation,
                field=warning.field,
                issue_type=warning.issue_type,
                message=warning.message,
            )
        
        first = result.first_error()
        if first is None:
            return
        raise ValidationError(first.message, fields=result.field_errors())
