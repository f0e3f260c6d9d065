"""
Account Store

Opens, renames and closes accounts, and checks that stored balances
still add up.

CRITICAL: The store never writes ``balance`` after creation. Balances
move only through the Transaction Engine.

DESIGN DECISION: Deleting an account that transactions or installment
plans still reference is refused unless the caller passes ``force=True``.
A forced delete removes every referencing transaction through the
Transaction Engine (so transfer counterparts are reversed and paid
installments released), then the account's installment plans, then the
account, all in one unit of work.
"""

from decimal import Decimal
from functools import partial
from typing import Optional
from uuid import UUID

import structlog

from ledger.audit import AuditLogger
from ledger.config import AppSettings, get_settings
from ledger.engine.transactions import TransactionEngine
from ledger.errors import ConflictError, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import (
    Account,
    Installment,
    InstallmentGroup,
    TransactionStatus,
)
from ledger.models.requests import AccountRequest
from ledger.models.views import BalanceCheck
from ledger.services.storage import LedgerStorageInterface, account_lock, group_lock
from ledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)


class AccountStore:
    """CRUD for accounts plus balance reconciliation."""
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        transactions: TransactionEngine,
        audit: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._transactions = transactions
        self._audit = audit or AuditLogger()
        self._settings = settings or get_settings().app
    
    async def _require(self, account_id: UUID) -> Account:
        account = await self._storage.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account
    
    async def _log(self, event_type: AuditEventType, account: Account, description: str) -> None:
        await self._storage.after_commit(partial(
            self._audit.log_record_changed,
            event_type,
            Account.kind,
            account.id,
            description,
            {"balance": str(account.balance), "currency": account.currency},
        ))
    
    async def create(self, request: AccountRequest) -> Account:
        """
        Open an account. Its opening balance becomes ``initial_balance``.
        
        Raises:
            ValidationError: Missing name, negative balance, bad currency
        """
        self._validator.ensure(
            await self._validator.validate_account(request), "create_account"
        )
        account = Account(
            name=request.name,
            type=request.type,
            balance=request.balance,
            initial_balance=request.balance,
            currency=request.currency or self._settings.default_currency,
        )
        async with self._storage.unit_of_work([account_lock(account.id)]):
            await self._storage.save(account)
            await self._log(AuditEventType.ACCOUNT_CREATED, account, f"Account opened: {account.name}")
        return account
    
    async def update(self, account_id: UUID, request: AccountRequest) -> Account:
        """
        Change name, type and currency. The balance in the request is ignored.
        
        Raises:
            NotFoundError: Unknown account
            ValidationError: Invalid payload
        """
        await self._require(account_id)
        self._validator.ensure(
            await self._validator.validate_account(request), "update_account"
        )
        async with self._storage.unit_of_work([account_lock(account_id)]):
            account = await self._require(account_id)
            account.name = request.name
            account.type = request.type
            if request.currency:
                account.currency = request.currency
            await self._storage.save(account)
            await self._log(AuditEventType.ACCOUNT_UPDATED, account, f"Account updated: {account.name}")
        return account
    
    async def delete(self, account_id: UUID, force: bool = False) -> None:
        """
        Close an account.
        
        Args:
            account_id: Account to delete
            force: Also delete every transaction and installment plan
                   referencing it
        
        Raises:
            NotFoundError: Unknown account
            ConflictError: Still referenced and ``force`` is False
        """
        await self._require(account_id)
        
        async with self._storage.unit_of_work([account_lock(account_id)]):
            account = await self._require(account_id)
            transactions = await self._storage.list_transactions(account_id=account_id)
            groups = await self._storage.list_records(
                InstallmentGroup, lambda g: g.account_id == account_id
            )
            
            if (transactions or groups) and not force:
                raise ConflictError(
                    f"Account is referenced by {len(transactions)} transactions "
                    f"and {len(groups)} installment plans"
                )
            
            for tx in transactions:
                await self._transactions.delete(tx.id)
            
            for group in groups:
                async with self._storage.unit_of_work([group_lock(group.id)]):
                    for installment in await self._storage.list_installments(group.id):
                        await self._storage.delete(Installment, installment.id)
                    await self._storage.delete(InstallmentGroup, group.id)
            
            await self._storage.delete(Account, account_id)
            await self._log(AuditEventType.ACCOUNT_DELETED, account, f"Account deleted: {account.name}")
        
        if transactions or groups:
            logger.info(
                "account_force_deleted",
                account_id=str(account_id),
                transactions=len(transactions),
                installment_groups=len(groups),
            )
    
    async def get(self, account_id: UUID) -> Account:
        return await self._require(account_id)
    
    async def list_accounts(self) -> list[Account]:
        return await self._storage.list_records(Account)
    
    async def reconcile(self, account_id: UUID) -> BalanceCheck:
        """
        Recompute an account's balance from its completed transactions.
        
        Returns:
            BalanceCheck comparing the recomputed and the stored balance
        """
        account = await self._require(account_id)
        transactions = await self._storage.list_transactions(
            account_id=account_id,
            status=TransactionStatus.COMPLETED,
        )
        expected = account.initial_balance + sum(
            (tx.balance_effects().get(account_id, Decimal("0")) for tx in transactions),
            Decimal("0"),
        )
        
        check = BalanceCheck(
            account_id=account.id,
            initial_balance=account.initial_balance,
            expected_balance=expected,
            actual_balance=account.balance,
            difference=account.balance - expected,
        )
        if not check.consistent:
            logger.warning(
                "balance_mismatch",
                account_id=str(account.id),
                expected=str(expected),
                actual=str(account.balance),
            )
        return check
