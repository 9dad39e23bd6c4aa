"""
billbook - Source Package

The balance-reconciliation engine of a personal bookkeeping app:
bills move account balances, and every account keeps a chain of
balance snapshots that stays consistent however bills are inserted.

DESIGN PRINCIPLES:
1. Money is fixed-point: integer cents, never binary floats
2. Fail early, fail visibly
3. No silent corrections; skipped items are reported
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "billbook Team"
