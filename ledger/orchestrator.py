"""
Main Orchestrator for Household Ledger

This module ties together all the components and defines the
record-oriented API the front end calls:
1. Parse the payload (camelCase keys, string ids)
2. Run the engine operation inside its unit of work
3. Return a JSON-ready body or an error body

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every failure becomes one of five client-visible error kinds
- Internal errors never leak their detail to the caller
- Every request carries a correlation ID through logs and audit events

This is the "glue" that ensures the API answers consistently
even when individual components fail unexpectedly.
"""

from datetime import date
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ledger.audit import (
    AuditLogger,
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    create_correlation_id,
)
from ledger.config import Settings, get_settings
from ledger.engine import (
    AccountStore,
    BudgetAggregator,
    CategoryRegistry,
    GoalTracker,
    InstallmentScheduler,
    TransactionEngine,
)
from ledger.errors import (
    ConflictError,
    InvalidStateTransition,
    LedgerError,
    NotFoundError,
    ValidationError,
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
from ledger.models.views import ErrorResponse, FieldError, LedgerView
from ledger.queries import QueryExecutionError, QueryExecutor
from ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)
from ledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)

# Checked in order; the first matching class wins
ERROR_KINDS: list[tuple[type[LedgerError], int, str]] = [
    (ValidationError, 400, "Validation Error"),
    (NotFoundError, 404, "Not Found"),
    (ConflictError, 409, "Conflict"),
    (InvalidStateTransition, 422, "Business Error"),
]

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


class ApiResponse(BaseModel):
    """Status code plus a JSON-ready body."""
    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _to_wire(result: Any) -> Any:
    if isinstance(result, LedgerView):
        return result.to_wire()
    if isinstance(result, list):
        return [_to_wire(item) for item in result]
    return result


def _error_body(
    status: int,
    error: str,
    message: str,
    fields: Optional[list[dict[str, str]]] = None,
) -> dict:
    return ErrorResponse(
        status=status,
        error=error,
        message=message,
        fields=[FieldError(**f) for f in fields] if fields else None,
    ).to_wire()


def _from_pydantic(error: PydanticValidationError) -> ValidationError:
    """Turn a payload parsing failure into a field-level ValidationError."""
    fields = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "body"
        fields.append({"field": field, "message": item["msg"]})
    return ValidationError("Invalid request fields", fields=fields)


def _parse_id(value: Any, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError.for_field(field, f"Invalid identifier: {value}")


def _parse(model: type[BaseModel], payload: Any) -> Any:
    return model.model_validate(payload if payload is not None else {})


class LedgerAPI:
    """
    Record-oriented API over the ledger engine.

    Every method takes plain payloads and returns an ApiResponse;
    none of them raises.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        accounts: AccountStore,
        categories: CategoryRegistry,
        transactions: TransactionEngine,
        installments: InstallmentScheduler,
        budgets: BudgetAggregator,
        goals: GoalTracker,
        queries: QueryExecutor,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.storage = storage
        self.accounts = accounts
        self.categories = categories
        self.transactions = transactions
        self.installments = installments
        self.budgets = budgets
        self.goals = goals
        self.queries = queries
        self.audit_logger = audit_logger or AuditLogger()

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        status_code: int = 200,
        mutates: bool = True,
    ) -> ApiResponse:
        """
        Run one API operation and translate its outcome.

        Args:
            operation: Name used in logs and audit events
            call: The work to do; returns a view, a list or a dict
            status_code: Status for a successful call
            mutates: Whether a rejection is worth an audit event
        """
        bind_correlation_id(create_correlation_id())
        try:
            result = await call()
        except PydanticValidationError as e:
            return await self._reject(operation, _from_pydantic(e), mutates)
        except QueryExecutionError as e:
            return await self._reject(operation, ValidationError(str(e)), mutates)
        except LedgerError as e:
            return await self._reject(operation, e, mutates)
        except Exception as e:
            logger.exception("unexpected_error", operation=operation)
            await self.audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
            )
            return ApiResponse(
                status_code=500,
                body=_error_body(500, "Internal Server Error", INTERNAL_ERROR_MESSAGE),
            )
        finally:
            clear_correlation_id()

        return ApiResponse(status_code=status_code, body=_to_wire(result))

    async def _reject(self, operation: str, error: LedgerError, mutates: bool) -> ApiResponse:
        for kind, status, label in ERROR_KINDS:
            if isinstance(error, kind):
                break
        else:
            status, label = 422, "Business Error"

        logger.info(
            "request_rejected",
            operation=operation,
            error=label,
            message=error.message,
        )
        if mutates:
            await self.audit_logger.log_rejected(
                operation=operation,
                error_kind=type(error).__name__,
                error_message=error.message,
            )
        return ApiResponse(
            status_code=status,
            body=_error_body(status, label, error.message, error.fields),
        )

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(self, payload: dict) -> ApiResponse:
        async def call():
            account = await self.accounts.create(_parse(AccountRequest, payload))
            return self.queries.account_view(account)
        return await self._run("create_account", call, status_code=201)

    async def update_account(self, account_id: str, payload: dict) -> ApiResponse:
        async def call():
            account = await self.accounts.update(
                _parse_id(account_id), _parse(AccountRequest, payload)
            )
            return self.queries.account_view(account)
        return await self._run("update_account", call)

    async def delete_account(self, account_id: str, force: bool = False) -> ApiResponse:
        async def call():
            await self.accounts.delete(_parse_id(account_id), force=force)
        return await self._run("delete_account", call, status_code=204)

    async def get_account(self, account_id: str) -> ApiResponse:
        async def call():
            return self.queries.account_view(await self.accounts.get(_parse_id(account_id)))
        return await self._run("get_account", call, mutates=False)

    async def list_accounts(self) -> ApiResponse:
        async def call():
            return [self.queries.account_view(a) for a in await self.accounts.list_accounts()]
        return await self._run("list_accounts", call, mutates=False)

    async def reconcile_account(self, account_id: str) -> ApiResponse:
        async def call():
            return await self.accounts.reconcile(_parse_id(account_id))
        return await self._run("reconcile_account", call, mutates=False)

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def create_category(self, payload: dict) -> ApiResponse:
        async def call():
            category = await self.categories.create(_parse(CategoryRequest, payload))
            return self.queries.category_view(category)
        return await self._run("create_category", call, status_code=201)

    async def update_category(self, category_id: str, payload: dict) -> ApiResponse:
        async def call():
            category = await self.categories.update(
                _parse_id(category_id), _parse(CategoryRequest, payload)
            )
            return self.queries.category_view(category)
        return await self._run("update_category", call)

    async def delete_category(self, category_id: str) -> ApiResponse:
        async def call():
            await self.categories.delete(_parse_id(category_id))
        return await self._run("delete_category", call, status_code=204)

    async def get_category(self, category_id: str) -> ApiResponse:
        async def call():
            category = await self.categories.get(_parse_id(category_id))
            return self.queries.category_view(category)
        return await self._run("get_category", call, mutates=False)

    async def list_categories(self) -> ApiResponse:
        async def call():
            categories = await self.categories.list_categories()
            return [self.queries.category_view(c) for c in categories]
        return await self._run("list_categories", call, mutates=False)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(self, payload: dict) -> ApiResponse:
        async def call():
            tx = await self.transactions.create(_parse(TransactionRequest, payload))
            return await self.queries.transaction_view(tx)
        return await self._run("create_transaction", call, status_code=201)

    async def update_transaction(self, transaction_id: str, payload: dict) -> ApiResponse:
        async def call():
            tx = await self.transactions.update(
                _parse_id(transaction_id), _parse(TransactionRequest, payload)
            )
            return await self.queries.transaction_view(tx)
        return await self._run("update_transaction", call)

    async def delete_transaction(self, transaction_id: str) -> ApiResponse:
        async def call():
            await self.transactions.delete(_parse_id(transaction_id))
        return await self._run("delete_transaction", call, status_code=204)

    async def set_transaction_status(self, transaction_id: str, status: str) -> ApiResponse:
        async def call():
            request = _parse(StatusRequest, {"status": status})
            tx = await self.transactions.set_status(_parse_id(transaction_id), request.status)
            return await self.queries.transaction_view(tx)
        return await self._run("set_transaction_status", call)

    async def get_transaction(self, transaction_id: str) -> ApiResponse:
        async def call():
            tx = await self.transactions.get(_parse_id(transaction_id))
            return await self.queries.transaction_view(tx)
        return await self._run("get_transaction", call, mutates=False)

    async def list_transactions(
        self,
        page: int = 0,
        size: int = 10,
        account_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> ApiResponse:
        async def call():
            query = _parse(TransactionFilter, {
                "page": page,
                "size": size,
                "accountId": account_id,
                "dateFrom": date_from,
                "dateTo": date_to,
            })
            return await self.queries.transaction_page(
                page=query.page,
                size=query.size,
                account_id=query.account_id,
                date_from=query.date_from,
                date_to=query.date_to,
            )
        return await self._run("list_transactions", call, mutates=False)

    # =========================================================================
    # INSTALLMENTS
    # =========================================================================

    async def create_installment_group(self, payload: dict) -> ApiResponse:
        async def call():
            group = await self.installments.create_group(_parse(InstallmentRequest, payload))
            group, installments = await self.installments.get_group(group.id)
            return await self.queries.group_view(group, installments)
        return await self._run("create_installment_group", call, status_code=201)

    async def list_installment_groups(self, page: int = 0, size: int = 10) -> ApiResponse:
        async def call():
            query = _parse(PageRequest, {"page": page, "size": size})
            groups = await self.installments.list_groups()
            return await self.queries.group_page(groups, query.page, query.size)
        return await self._run("list_installment_groups", call, mutates=False)

    async def get_installment_group(self, group_id: str) -> ApiResponse:
        async def call():
            group, installments = await self.installments.get_group(_parse_id(group_id))
            return await self.queries.group_view(group, installments)
        return await self._run("get_installment_group", call, mutates=False)

    async def pay_installment(self, installment_id: str) -> ApiResponse:
        async def call():
            installment = await self.installments.pay(_parse_id(installment_id))
            return self.queries.installment_view(installment)
        return await self._run("pay_installment", call)

    async def cancel_installment_group(self, group_id: str) -> ApiResponse:
        async def call():
            cancelled = await self.installments.cancel_group(_parse_id(group_id))
            return {"cancelledCount": cancelled}
        return await self._run("cancel_installment_group", call)

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(self, payload: dict) -> ApiResponse:
        async def call():
            budget = await self.budgets.create(_parse(BudgetRequest, payload))
            return await self.queries.budget_view(await self.budgets.get(budget.id))
        return await self._run("create_budget", call, status_code=201)

    async def update_budget(self, budget_id: str, payload: dict) -> ApiResponse:
        async def call():
            budget = await self.budgets.update(
                _parse_id(budget_id), _parse(BudgetRequest, payload)
            )
            return await self.queries.budget_view(await self.budgets.get(budget.id))
        return await self._run("update_budget", call)

    async def delete_budget(self, budget_id: str) -> ApiResponse:
        async def call():
            await self.budgets.delete(_parse_id(budget_id))
        return await self._run("delete_budget", call, status_code=204)

    async def get_budget(self, budget_id: str) -> ApiResponse:
        async def call():
            return await self.queries.budget_view(await self.budgets.get(_parse_id(budget_id)))
        return await self._run("get_budget", call, mutates=False)

    async def list_budgets(self, month: int, year: int) -> ApiResponse:
        async def call():
            period = _parse(PeriodRequest, {"month": month, "year": year})
            evaluations = await self.budgets.list_budgets(period.month, period.year)
            return await self.queries.budget_views(evaluations)
        return await self._run("list_budgets", call, mutates=False)

    async def evaluate_budget(self, category_id: str, month: int, year: int) -> ApiResponse:
        async def call():
            period = _parse(PeriodRequest, {"month": month, "year": year})
            evaluation = await self.budgets.evaluate(
                _parse_id(category_id, "categoryId"), period.month, period.year
            )
            return await self.queries.budget_view(evaluation)
        return await self._run("evaluate_budget", call, mutates=False)

    # =========================================================================
    # GOALS
    # =========================================================================

    async def create_goal(self, payload: dict) -> ApiResponse:
        async def call():
            goal = await self.goals.create(_parse(GoalRequest, payload))
            return self.queries.goal_view(goal)
        return await self._run("create_goal", call, status_code=201)

    async def update_goal(self, goal_id: str, payload: dict) -> ApiResponse:
        async def call():
            goal = await self.goals.update(_parse_id(goal_id), _parse(GoalRequest, payload))
            return self.queries.goal_view(goal)
        return await self._run("update_goal", call)

    async def delete_goal(self, goal_id: str) -> ApiResponse:
        async def call():
            await self.goals.delete(_parse_id(goal_id))
        return await self._run("delete_goal", call, status_code=204)

    async def get_goal(self, goal_id: str) -> ApiResponse:
        async def call():
            return self.queries.goal_view(await self.goals.get(_parse_id(goal_id)))
        return await self._run("get_goal", call, mutates=False)

    async def list_goals(self) -> ApiResponse:
        async def call():
            return [self.queries.goal_view(g) for g in await self.goals.list_goals()]
        return await self._run("list_goals", call, mutates=False)

    async def deposit_goal(self, goal_id: str, amount: Any) -> ApiResponse:
        async def call():
            request = _parse(DepositRequest, {"amount": amount})
            goal = await self.goals.deposit(_parse_id(goal_id), request.amount)
            return self.queries.goal_view(goal)
        return await self._run("deposit_goal", call)

    async def cancel_goal(self, goal_id: str) -> ApiResponse:
        async def call():
            return self.queries.goal_view(await self.goals.cancel(_parse_id(goal_id)))
        return await self._run("cancel_goal", call)

    def close(self) -> None:
        self.storage.close()


def create_storage(
    settings: Settings,
) -> tuple[LedgerStorageInterface, AuditStorageInterface]:
    """Build the ledger and audit storage the settings ask for."""
    storage_settings = settings.storage
    if storage_settings.backend == "sqlite":
        return (
            SQLiteLedgerStorage(SQLiteClient(storage_settings.sqlite_path)),
            SQLiteAuditStorage(SQLiteClient(storage_settings.sqlite_path)),
        )
    return InMemoryLedgerStorage(), InMemoryAuditStorage()


async def create_ledger(
    settings: Optional[Settings] = None,
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    today: Optional[Callable[[], date]] = None,
) -> LedgerAPI:
    """
    Factory function to create all application components.

    Args:
        settings: Configuration; loaded from the environment if None
        storage: Ledger storage; built from settings if None
        audit_storage: Audit storage; built from settings if None
        today: Clock for "today" (installment payments, budget status)

    Returns:
        A LedgerAPI with default categories seeded (if enabled)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.effective_log_level)

    if storage is None:
        storage, built_audit_storage = create_storage(settings)
        audit_storage = audit_storage or built_audit_storage

    audit_logger = AuditLogger(audit_storage)
    validator = LedgerValidator(storage, app_settings, today=today)

    transactions = TransactionEngine(storage, validator, audit_logger)
    categories = CategoryRegistry(storage, validator, audit_logger)
    api = LedgerAPI(
        storage=storage,
        accounts=AccountStore(storage, validator, transactions, audit_logger, app_settings),
        categories=categories,
        transactions=transactions,
        installments=InstallmentScheduler(
            storage, validator, transactions, audit_logger, app_settings, today=today
        ),
        budgets=BudgetAggregator(storage, validator, audit_logger, today=today),
        goals=GoalTracker(storage, validator, audit_logger),
        queries=QueryExecutor(storage),
        audit_logger=audit_logger,
    )

    if app_settings.seed_default_categories:
        seeded = await categories.seed_defaults()
        logger.info("default_categories_seeded", created=seeded)

    logger.info(
        "ledger_started",
        environment=app_settings.app_environment,
        storage=type(storage).__name__,
        debug=app_settings.debug_mode,
    )

    return api
