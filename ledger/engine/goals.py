"""
Goal Tracker

Savings goals move only through explicit deposits.

CRITICAL: Deposits are not capped. A goal that overshoots keeps the full
amount; only the reported percentage is capped at 100.
"""

from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Optional
from uuid import UUID

from ledger.audit import AuditLogger
from ledger.errors import InvalidStateTransition, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import Goal, GoalStatus
from ledger.models.requests import GoalRequest
from ledger.services.storage import LedgerStorageInterface, goal_lock
from ledger.validation import LedgerValidator


def remaining_amount(goal: Goal) -> Decimal:
    return max(goal.target_amount - goal.current_amount, Decimal("0"))


def percentage_completed(goal: Goal) -> Decimal:
    """Progress towards the target, capped at 100 for display."""
    progress = goal.current_amount / goal.target_amount * 100
    return min(progress, Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class GoalTracker:
    """Creates, edits and funds savings goals."""
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        audit: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._audit = audit or AuditLogger()
    
    async def _require(self, goal_id: UUID) -> Goal:
        goal = await self._storage.get(Goal, goal_id)
        if goal is None:
            raise NotFoundError("Goal not found")
        return goal
    
    def _require_in_progress(self, goal: Goal, action: str) -> None:
        if goal.status != GoalStatus.IN_PROGRESS:
            raise InvalidStateTransition(
                f"Cannot {action} a goal that is {goal.status.value}",
                current=goal.status.value,
            )
    
    async def _log(self, event_type: AuditEventType, goal: Goal, description: str) -> None:
        await self._storage.after_commit(partial(
            self._audit.log_record_changed,
            event_type,
            Goal.kind,
            goal.id,
            description,
            {
                "status": goal.status.value,
                "current_amount": str(goal.current_amount),
                "target_amount": str(goal.target_amount),
            },
        ))
    
    async def create(self, request: GoalRequest) -> Goal:
        """
        Create a goal; COMPLETED straight away if already funded.
        
        Raises:
            ValidationError: targetAmount <= 0 or currentAmount < 0
        """
        self._validator.ensure(await self._validator.validate_goal(request), "create_goal")
        
        goal = Goal(
            name=request.name,
            target_amount=request.target_amount,
            current_amount=request.current_amount or Decimal("0"),
            deadline=request.deadline,
            notes=request.notes,
        )
        if goal.current_amount >= goal.target_amount:
            goal.status = GoalStatus.COMPLETED
        
        async with self._storage.unit_of_work([goal_lock(goal.id)]):
            await self._storage.save(goal)
            await self._log(AuditEventType.GOAL_CREATED, goal, f"Goal created: {goal.name}")
        return goal
    
    async def update(self, goal_id: UUID, request: GoalRequest) -> Goal:
        """
        Edit name, target, deadline and notes.
        
        The current amount only changes through deposits. A COMPLETED goal
        can be edited but is never reopened; an IN_PROGRESS goal whose new
        target is already met becomes COMPLETED.
        
        Raises:
            NotFoundError: Unknown goal
            ValidationError: Invalid payload
        """
        await self._require(goal_id)
        self._validator.ensure(await self._validator.validate_goal(request), "update_goal")
        
        async with self._storage.unit_of_work([goal_lock(goal_id)]):
            goal = await self._require(goal_id)
            goal.name = request.name
            goal.target_amount = request.target_amount
            goal.deadline = request.deadline
            goal.notes = request.notes
            
            completed = (
                goal.status == GoalStatus.IN_PROGRESS
                and goal.current_amount >= goal.target_amount
            )
            if completed:
                goal.status = GoalStatus.COMPLETED
            
            await self._storage.save(goal)
            await self._log(AuditEventType.GOAL_UPDATED, goal, f"Goal updated: {goal.name}")
            if completed:
                await self._log(AuditEventType.GOAL_COMPLETED, goal, "Goal target reached")
        return goal
    
    async def delete(self, goal_id: UUID) -> None:
        goal = await self._require(goal_id)
        async with self._storage.unit_of_work([goal_lock(goal_id)]):
            await self._storage.delete(Goal, goal_id)
            await self._log(AuditEventType.GOAL_DELETED, goal, f"Goal deleted: {goal.name}")
    
    async def get(self, goal_id: UUID) -> Goal:
        return await self._require(goal_id)
    
    async def list_goals(self) -> list[Goal]:
        return await self._storage.list_records(Goal)
    
    async def deposit(self, goal_id: UUID, amount: Decimal) -> Goal:
        """
        Add money to a goal.
        
        Raises:
            NotFoundError: Unknown goal
            ValidationError: amount <= 0
            InvalidStateTransition: Goal is not IN_PROGRESS
        """
        self._validator.ensure(self._validator.validate_deposit(amount), "deposit_goal")
        await self._require(goal_id)
        
        async with self._storage.unit_of_work([goal_lock(goal_id)]):
            goal = await self._require(goal_id)
            self._require_in_progress(goal, "deposit to")
            
            goal.current_amount += amount
            if goal.current_amount >= goal.target_amount:
                goal.status = GoalStatus.COMPLETED
            await self._storage.save(goal)
            
            await self._storage.after_commit(partial(
                self._audit.log_goal_deposit, goal.id, amount, goal.current_amount
            ))
            if goal.status == GoalStatus.COMPLETED:
                await self._log(AuditEventType.GOAL_COMPLETED, goal, "Goal target reached")
        return goal
    
    async def cancel(self, goal_id: UUID) -> Goal:
        """
        Abandon a goal. Only IN_PROGRESS goals can be cancelled.
        
        Raises:
            NotFoundError: Unknown goal
            InvalidStateTransition: Goal is not IN_PROGRESS
        """
        await self._require(goal_id)
        async with self._storage.unit_of_work([goal_lock(goal_id)]):
            goal = await self._require(goal_id)
            self._require_in_progress(goal, "cancel")
            goal.status = GoalStatus.CANCELLED
            await self._storage.save(goal)
            await self._log(AuditEventType.GOAL_CANCELLED, goal, f"Goal cancelled: {goal.name}")
        return goal
