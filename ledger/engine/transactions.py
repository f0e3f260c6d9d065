"""
Transaction Engine

The only component that moves account balances.

CRITICAL: An account's balance always equals its initial balance plus the
signed effect of every COMPLETED transaction that references it. Every
mutation here computes the net change between the old and the new effect
and applies it inside one unit of work that holds the locks of every
account involved, so a failure anywhere leaves no partial balance change.

State machine:
    PENDING -> COMPLETED -> CANCELLED
    PENDING -> CANCELLED
"""

from collections import defaultdict
from decimal import Decimal
from functools import partial
from typing import Iterable, Optional
from uuid import UUID

import structlog

from ledger.audit import AuditLogger
from ledger.errors import InvalidStateTransition, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import (
    Account,
    Installment,
    InstallmentStatus,
    Transaction,
    TransactionStatus,
)
from ledger.models.requests import TransactionRequest
from ledger.services.storage import (
    LedgerStorageInterface,
    account_lock,
    group_lock,
    transaction_lock,
)
from ledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED},
    TransactionStatus.COMPLETED: {TransactionStatus.CANCELLED},
    TransactionStatus.CANCELLED: set(),
}


def check_transition(current: TransactionStatus, requested: TransactionStatus) -> None:
    """
    Raise unless ``current -> requested`` is allowed.
    
    Staying in the same status is always allowed.
    """
    if current == requested or requested in ALLOWED_TRANSITIONS[current]:
        return
    raise InvalidStateTransition(
        f"Cannot change transaction status from {current.value} to {requested.value}",
        current=current.value,
        requested=requested.value,
    )


def completed_effects(tx: Transaction) -> dict[UUID, Decimal]:
    """Balance effect of ``tx`` as it stands (nothing unless COMPLETED)."""
    if tx.status != TransactionStatus.COMPLETED:
        return {}
    return tx.balance_effects()


def net_effects(
    old: dict[UUID, Decimal],
    new: dict[UUID, Decimal],
) -> dict[UUID, Decimal]:
    """Change needed to go from ``old`` to ``new``; zero entries dropped."""
    net: dict[UUID, Decimal] = defaultdict(Decimal)
    for account_id, delta in old.items():
        net[account_id] -= delta
    for account_id, delta in new.items():
        net[account_id] += delta
    return {account_id: delta for account_id, delta in net.items() if delta != 0}


def _lock_keys(transaction_id: Optional[UUID], accounts: Iterable[UUID]) -> list[str]:
    keys = [account_lock(account_id) for account_id in accounts]
    if transaction_id is not None:
        keys.append(transaction_lock(transaction_id))
    return keys


def _request_accounts(request: TransactionRequest) -> set[UUID]:
    accounts = {request.account_id}
    if request.destination_account_id is not None:
        accounts.add(request.destination_account_id)
    return accounts


def _payment_shape(tx: Transaction) -> tuple:
    """Fields an installment payment fixes; changing any of them unlinks it."""
    return (tx.account_id, tx.destination_account_id, tx.type, tx.amount)


class TransactionEngine:
    """
    Creates, edits, deletes and transitions transactions.
    
    Usage:
        engine = TransactionEngine(storage, validator)
        tx = await engine.create(TransactionRequest(...))
        await engine.set_status(tx.id, TransactionStatus.CANCELLED)
    """
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        audit: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._audit = audit or AuditLogger()
    
    # =========================================================================
    # BALANCES
    # =========================================================================
    
    async def _apply(self, effects: dict[UUID, Decimal], transaction_id: UUID) -> None:
        """
        Add each delta to its account's balance.
        
        Must run inside a unit of work holding every affected account lock.
        """
        for account_id in sorted(effects, key=str):
            account = await self._storage.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            account.balance += effects[account_id]
            await self._storage.save(account)
            logger.debug(
                "balance_applied",
                account_id=str(account_id),
                transaction_id=str(transaction_id),
                delta=str(effects[account_id]),
                balance=str(account.balance),
            )
    
    async def _release_installment(self, transaction_id: UUID) -> None:
        """Revert the installment paid by ``transaction_id`` to PENDING."""
        installment = await self._storage.find_installment_by_transaction(transaction_id)
        if installment is None:
            return
        
        async with self._storage.unit_of_work([group_lock(installment.group_id)]):
            installment = await self._storage.get(Installment, installment.id)
            installment.status = InstallmentStatus.PENDING
            installment.transaction_id = None
            await self._storage.save(installment)
        
        logger.info(
            "installment_released",
            installment_id=str(installment.id),
            transaction_id=str(transaction_id),
        )
        await self._storage.after_commit(partial(
            self._audit.log_record_changed,
            AuditEventType.INSTALLMENT_RELEASED,
            "installment",
            installment.id,
            f"Installment {installment.installment_number} reverted to pending",
            {"transaction_id": str(transaction_id)},
        ))
    
    async def _require(self, transaction_id: UUID) -> Transaction:
        tx = await self._storage.get(Transaction, transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        return tx
    
    def _log_after_commit(
        self,
        event_type: AuditEventType,
        tx: Transaction,
        effects: dict[UUID, Decimal],
    ):
        return self._storage.after_commit(partial(
            self._audit.log_transaction,
            event_type,
            tx.id,
            tx.status.value,
            effects,
        ))
    
    # =========================================================================
    # OPERATIONS
    # =========================================================================
    
    async def get(self, transaction_id: UUID) -> Transaction:
        return await self._require(transaction_id)
    
    async def create(self, request: TransactionRequest) -> Transaction:
        """
        Record a new transaction.
        
        A COMPLETED transaction moves balances immediately.
        
        Raises:
            ValidationError: Bad amount, unknown account or category,
                             bad transfer shape
        """
        async with self._storage.unit_of_work(_lock_keys(None, _request_accounts(request))):
            self._validator.ensure(
                await self._validator.validate_transaction(request),
                "create_transaction",
            )
            tx = Transaction(**request.model_dump())
            effects = completed_effects(tx)
            await self._apply(effects, tx.id)
            await self._storage.save(tx)
            await self._log_after_commit(AuditEventType.TRANSACTION_CREATED, tx, effects)
        
        return tx
    
    async def update(self, transaction_id: UUID, request: TransactionRequest) -> Transaction:
        """
        Replace a transaction's fields.
        
        The old completed effect is reversed and the new one applied as a
        single net change. A status carried by the request must be a
        legal transition from the current one.
        
        An installment paid by this transaction is released when the edit
        cancels it or changes its account, type or amount.
        
        Raises:
            NotFoundError: Unknown transaction
            ValidationError: Invalid payload
            InvalidStateTransition: Illegal status change
        """
        current = await self._require(transaction_id)
        keys = _lock_keys(
            transaction_id,
            current.referenced_accounts() | _request_accounts(request),
        )
        
        async with self._storage.unit_of_work(keys):
            current = await self._require(transaction_id)
            async with self._storage.unit_of_work(
                _lock_keys(None, current.referenced_accounts())
            ):
                check_transition(current.status, request.status)
                self._validator.ensure(
                    await self._validator.validate_transaction(request),
                    "update_transaction",
                )
                
                updated = Transaction(
                    id=current.id,
                    created_at=current.created_at,
                    **request.model_dump(),
                )
                effects = net_effects(completed_effects(current), completed_effects(updated))
                await self._apply(effects, updated.id)
                await self._storage.save(updated)
                
                if current.status == TransactionStatus.COMPLETED and (
                    updated.status != TransactionStatus.COMPLETED
                    or _payment_shape(updated) != _payment_shape(current)
                ):
                    await self._release_installment(updated.id)
                
                await self._log_after_commit(
                    AuditEventType.TRANSACTION_UPDATED, updated, effects
                )
        
        return updated
    
    async def delete(self, transaction_id: UUID) -> None:
        """
        Remove a transaction, reversing its effect if it was COMPLETED.
        
        An installment paid by this transaction goes back to PENDING.
        
        Raises:
            NotFoundError: Unknown transaction
        """
        current = await self._require(transaction_id)
        keys = _lock_keys(transaction_id, current.referenced_accounts())
        
        async with self._storage.unit_of_work(keys):
            current = await self._require(transaction_id)
            async with self._storage.unit_of_work(
                _lock_keys(None, current.referenced_accounts())
            ):
                effects = net_effects(completed_effects(current), {})
                await self._apply(effects, current.id)
                await self._release_installment(current.id)
                await self._storage.delete(Transaction, current.id)
                await self._log_after_commit(
                    AuditEventType.TRANSACTION_DELETED, current, effects
                )
    
    async def set_status(
        self,
        transaction_id: UUID,
        status: TransactionStatus,
    ) -> Transaction:
        """
        Move a transaction through its state machine.
        
        PENDING -> COMPLETED applies the effect, COMPLETED -> CANCELLED
        reverses it, PENDING -> CANCELLED leaves balances alone. Asking
        for the current status changes nothing.
        
        Raises:
            NotFoundError: Unknown transaction
            InvalidStateTransition: Any other transition
        """
        current = await self._require(transaction_id)
        keys = _lock_keys(transaction_id, current.referenced_accounts())
        
        async with self._storage.unit_of_work(keys):
            current = await self._require(transaction_id)
            if current.status == status:
                return current
            check_transition(current.status, status)
            
            async with self._storage.unit_of_work(
                _lock_keys(None, current.referenced_accounts())
            ):
                updated = current.model_copy(update={"status": status})
                effects = net_effects(completed_effects(current), completed_effects(updated))
                await self._apply(effects, updated.id)
                await self._storage.save(updated)
                
                if current.status == TransactionStatus.COMPLETED:
                    await self._release_installment(updated.id)
                
                await self._log_after_commit(
                    AuditEventType.TRANSACTION_STATUS_CHANGED, updated, effects
                )
        
        return updated
