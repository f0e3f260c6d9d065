"""
Household Ledger - Source Package

The ledger consistency engine for a single-user personal-finance book:
accounts, categorized transactions, installment plans, monthly budgets
and savings goals.

DESIGN PRINCIPLES:
1. Balances change only through the Transaction Engine
2. Every mutation commits all-or-nothing
3. Derived figures are computed on read, never stored
4. Every committed mutation is audited
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
