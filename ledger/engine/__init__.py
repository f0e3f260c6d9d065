"""
Ledger Engine Package

The components that change ledger state. Each one validates its input,
then performs its writes inside a single storage unit of work.
"""

from ledger.engine.accounts import AccountStore
from ledger.engine.budgets import BudgetAggregator, BudgetEvaluation
from ledger.engine.categories import DEFAULT_CATEGORIES, CategoryRegistry
from ledger.engine.goals import GoalTracker
from ledger.engine.installments import InstallmentScheduler, split_amount
from ledger.engine.transactions import TransactionEngine

__all__ = [
    "AccountStore",
    "BudgetAggregator",
    "BudgetEvaluation",
    "CategoryRegistry",
    "DEFAULT_CATEGORIES",
    "GoalTracker",
    "InstallmentScheduler",
    "TransactionEngine",
    "split_amount",
]
