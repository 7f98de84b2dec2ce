"""
Household Ledger - Source Package

A personal ledger engine: accounts, transactions, paired transfers,
derived balances and informal borrowing/lending obligations.

DESIGN PRINCIPLES:
1. Validate everything before the first write
2. Fail early, fail visibly
3. Balances are derived, never stored
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
