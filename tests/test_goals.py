"""Tests for the Goal Tracker."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger.engine.goals import percentage_completed, remaining_amount
from ledger.errors import InvalidStateTransition, NotFoundError, ValidationError
from ledger.models import AuditEventType, GoalRequest, GoalStatus


def _goal(**overrides) -> GoalRequest:
    fields = {
        "name": "Trip",
        "target_amount": Decimal("100.00"),
        "current_amount": Decimal("70.00"),
        "deadline": date(2024, 12, 31),
    }
    fields.update(overrides)
    return GoalRequest(**fields)


class TestCreate:
    
    async def test_starts_in_progress(self, goals):
        goal = await goals.create(_goal())
        assert goal.status == GoalStatus.IN_PROGRESS
    
    async def test_already_funded_goal_is_completed(self, goals):
        goal = await goals.create(_goal(current_amount=Decimal("100.00")))
        assert goal.status == GoalStatus.COMPLETED
    
    async def test_current_amount_defaults_to_zero(self, goals):
        goal = await goals.create(_goal(current_amount=None))
        assert goal.current_amount == Decimal("0")
    
    @pytest.mark.parametrize("overrides, field", [
        ({"target_amount": Decimal("0")}, "targetAmount"),
        ({"target_amount": Decimal("-5")}, "targetAmount"),
        ({"current_amount": Decimal("-1")}, "currentAmount"),
    ])
    async def test_invalid_amounts(self, goals, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await goals.create(_goal(**overrides))
        assert exc_info.value.fields[0]["field"] == field


class TestDeposit:
    
    async def test_overshoot_is_kept(self, goals):
        goal = await goals.create(_goal())
        goal = await goals.deposit(goal.id, Decimal("40.00"))
        
        assert goal.current_amount == Decimal("110.00")
        assert goal.status == GoalStatus.COMPLETED
        assert remaining_amount(goal) == Decimal("0")
        assert percentage_completed(goal) == Decimal("100")
    
    async def test_deposit_to_completed_goal_is_rejected(self, goals):
        goal = await goals.create(_goal())
        await goals.deposit(goal.id, Decimal("40.00"))
        with pytest.raises(InvalidStateTransition):
            await goals.deposit(goal.id, Decimal("1.00"))
        assert (await goals.get(goal.id)).current_amount == Decimal("110.00")
    
    async def test_partial_deposit(self, goals):
        goal = await goals.create(_goal(current_amount=Decimal("0")))
        goal = await goals.deposit(goal.id, Decimal("25.50"))
        assert goal.status == GoalStatus.IN_PROGRESS
        assert remaining_amount(goal) == Decimal("74.50")
        assert percentage_completed(goal) == Decimal("25.50")
    
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10")])
    async def test_non_positive_deposit(self, goals, amount):
        goal = await goals.create(_goal())
        with pytest.raises(ValidationError):
            await goals.deposit(goal.id, amount)
    
    async def test_unknown_goal(self, goals):
        with pytest.raises(NotFoundError):
            await goals.deposit(uuid4(), Decimal("10"))
    
    async def test_deposit_is_audited(self, goals, audit_storage):
        goal = await goals.create(_goal())
        await goals.deposit(goal.id, Decimal("40.00"))
        events = await audit_storage.get_events_by_entity("goal", goal.id)
        assert [e.event_type for e in events] == [
            AuditEventType.GOAL_CREATED,
            AuditEventType.GOAL_DEPOSIT,
            AuditEventType.GOAL_COMPLETED,
        ]


class TestUpdate:
    
    async def test_completed_goal_is_not_reopened(self, goals):
        goal = await goals.create(_goal(current_amount=Decimal("100.00")))
        goal = await goals.update(goal.id, _goal(target_amount=Decimal("500.00")))
        assert goal.status == GoalStatus.COMPLETED
        assert goal.target_amount == Decimal("500.00")
    
    async def test_lowering_target_completes_goal(self, goals):
        goal = await goals.create(_goal())
        goal = await goals.update(goal.id, _goal(target_amount=Decimal("50.00")))
        assert goal.status == GoalStatus.COMPLETED
    
    async def test_update_does_not_change_current_amount(self, goals):
        goal = await goals.create(_goal())
        goal = await goals.update(goal.id, _goal(current_amount=Decimal("5.00")))
        assert goal.current_amount == Decimal("70.00")


class TestCancel:
    
    async def test_cancel_in_progress(self, goals):
        goal = await goals.create(_goal())
        assert (await goals.cancel(goal.id)).status == GoalStatus.CANCELLED
    
    async def test_cancel_twice_is_rejected(self, goals):
        goal = await goals.create(_goal())
        await goals.cancel(goal.id)
        with pytest.raises(InvalidStateTransition):
            await goals.cancel(goal.id)
    
    async def test_deposit_to_cancelled_goal_is_rejected(self, goals):
        goal = await goals.create(_goal())
        await goals.cancel(goal.id)
        with pytest.raises(InvalidStateTransition):
            await goals.deposit(goal.id, Decimal("10"))
    
    async def test_delete(self, goals):
        goal = await goals.create(_goal())
        await goals.delete(goal.id)
        with pytest.raises(NotFoundError):
            await goals.get(goal.id)
