"""
Installment Scheduler

Splits a purchase into monthly installments and pays them one at a time.

CRITICAL: The installment amounts of a group always add up to its total.
Each installment is the total divided by the count, rounded down to the
currency precision; whatever rounding left over goes on the last one.

An installment becomes COMPLETED only through ``pay``, which creates the
backing expense transaction through the Transaction Engine in the same
unit of work.
"""

from datetime import date
from decimal import ROUND_DOWN, Decimal
from functools import partial
from typing import Callable, Optional
from uuid import UUID

import structlog
from dateutil.relativedelta import relativedelta

from ledger.audit import AuditLogger
from ledger.config import AppSettings, get_settings
from ledger.engine.transactions import TransactionEngine
from ledger.errors import InvalidStateTransition, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import (
    Installment,
    InstallmentGroup,
    InstallmentStatus,
    TransactionStatus,
    TransactionType,
)
from ledger.models.requests import InstallmentRequest, TransactionRequest
from ledger.services.storage import (
    LedgerStorageInterface,
    account_lock,
    group_lock,
)
from ledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)


def split_amount(total: Decimal, count: int, precision: int = 2) -> list[Decimal]:
    """
    Split ``total`` into ``count`` amounts that add up to it exactly.
    
    Example:
        split_amount(Decimal("100.00"), 3) -> [33.33, 33.33, 33.34]
    """
    quantum = Decimal(1).scaleb(-precision)
    share = (total / count).quantize(quantum, rounding=ROUND_DOWN)
    amounts = [share] * count
    amounts[-1] = total - share * (count - 1)
    return amounts


def due_date(start_date: date, installment_number: int) -> date:
    """Start date plus ``installment_number - 1`` months, clamped to month end."""
    return start_date + relativedelta(months=installment_number - 1)


class InstallmentScheduler:
    """
    Creates installment plans and pays or cancels their installments.
    """
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        transactions: TransactionEngine,
        audit: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._transactions = transactions
        self._audit = audit or AuditLogger()
        self._settings = settings or get_settings().app
        self._today = today or date.today
    
    async def _require_group(self, group_id: UUID) -> InstallmentGroup:
        group = await self._storage.get(InstallmentGroup, group_id)
        if group is None:
            raise NotFoundError("Installment group not found")
        return group
    
    async def _require_installment(self, installment_id: UUID) -> Installment:
        installment = await self._storage.get(Installment, installment_id)
        if installment is None:
            raise NotFoundError("Installment not found")
        return installment
    
    async def create_group(self, request: InstallmentRequest) -> InstallmentGroup:
        """
        Create a plan and all of its installments, PENDING and unlinked.
        
        Raises:
            ValidationError: Count out of range, non-positive total,
                             unknown account or category
        """
        async with self._storage.unit_of_work([account_lock(request.account_id)]):
            self._validator.ensure(
                await self._validator.validate_installment_group(request),
                "create_installment_group",
            )
            group = InstallmentGroup(**request.model_dump())
            await self._storage.save(group)
            
            amounts = split_amount(
                group.total_amount,
                group.installment_count,
                self._settings.currency_precision,
            )
            for number, amount in enumerate(amounts, start=1):
                await self._storage.save(Installment(
                    group_id=group.id,
                    installment_number=number,
                    amount=amount,
                    due_date=due_date(group.start_date, number),
                ))
            
            await self._storage.after_commit(partial(
                self._audit.log_record_changed,
                AuditEventType.INSTALLMENT_GROUP_CREATED,
                InstallmentGroup.kind,
                group.id,
                f"Installment plan created: {group.description}",
                {
                    "total_amount": str(group.total_amount),
                    "installment_count": group.installment_count,
                },
            ))
        
        return group
    
    async def pay(self, installment_id: UUID) -> Installment:
        """
        Pay one installment.
        
        Creates a COMPLETED expense transaction for the installment's
        amount on the group's account and category, dated today and
        described as ``"<description> (n/count)"``, and links it.
        
        Raises:
            NotFoundError: Unknown installment
            InvalidStateTransition: Installment is not PENDING
        """
        installment = await self._require_installment(installment_id)
        group = await self._require_group(installment.group_id)
        
        async with self._storage.unit_of_work([
            group_lock(group.id),
            account_lock(group.account_id),
        ]):
            installment = await self._require_installment(installment_id)
            if installment.status != InstallmentStatus.PENDING:
                raise InvalidStateTransition(
                    f"Installment {installment.installment_number} is "
                    f"{installment.status.value}, only PENDING installments can be paid",
                    current=installment.status.value,
                    requested=InstallmentStatus.COMPLETED.value,
                )
            
            tx = await self._transactions.create(TransactionRequest(
                account_id=group.account_id,
                category_id=group.category_id,
                description=(
                    f"{group.description} "
                    f"({installment.installment_number}/{group.installment_count})"
                ),
                amount=installment.amount,
                type=TransactionType.EXPENSE,
                status=TransactionStatus.COMPLETED,
                transaction_date=self._today(),
            ))
            
            installment.status = InstallmentStatus.COMPLETED
            installment.transaction_id = tx.id
            await self._storage.save(installment)
            
            await self._storage.after_commit(partial(
                self._audit.log_installment_paid,
                installment.id,
                group.id,
                tx.id,
                installment.amount,
            ))
        
        logger.info(
            "installment_paid",
            installment_id=str(installment.id),
            transaction_id=str(tx.id),
        )
        return installment
    
    async def cancel_group(self, group_id: UUID) -> int:
        """
        Cancel every still-PENDING installment of a group.
        
        Paid installments and their transactions are left alone.
        
        Returns:
            Number of installments cancelled (0 when none were pending)
            
        Raises:
            NotFoundError: Unknown group
        """
        await self._require_group(group_id)
        
        cancelled = 0
        async with self._storage.unit_of_work([group_lock(group_id)]):
            for installment in await self._storage.list_installments(group_id):
                if installment.status != InstallmentStatus.PENDING:
                    continue
                installment.status = InstallmentStatus.CANCELLED
                await self._storage.save(installment)
                cancelled += 1
            
            if cancelled:
                await self._storage.after_commit(partial(
                    self._audit.log_record_changed,
                    AuditEventType.INSTALLMENT_GROUP_CANCELLED,
                    InstallmentGroup.kind,
                    group_id,
                    f"{cancelled} pending installments cancelled",
                    {"cancelled": cancelled},
                ))
        
        return cancelled
    
    async def paid_count(self, group_id: UUID) -> int:
        """Number of COMPLETED installments in a group."""
        await self._require_group(group_id)
        installments = await self._storage.list_installments(group_id)
        return sum(1 for i in installments if i.status == InstallmentStatus.COMPLETED)
    
    async def get_group(self, group_id: UUID) -> tuple[InstallmentGroup, list[Installment]]:
        """A group with its installments ordered by number."""
        group = await self._require_group(group_id)
        return group, await self._storage.list_installments(group_id)
    
    async def list_groups(self) -> list[InstallmentGroup]:
        """Every installment group, newest first."""
        groups = await self._storage.list_records(InstallmentGroup)
        return sorted(groups, key=lambda g: g.created_at, reverse=True)
