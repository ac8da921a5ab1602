"""
Budget Ledger - Source Package

Keeps a user's budget balances, expense records and category running
totals consistent with each other as expenses are created, edited and
deleted.

DESIGN PRINCIPLES:
1. Validate before writing anything
2. Budget and category change together or not at all
3. No floats - every amount is an integer number of cents
4. Every mutation and rejection is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
