"""Ledger package.

Public API:
- Bank: account map with deposit/withdraw/transfer and activity views.
- Account, LedgerEntry: balance plus append-only signed entries.
"""

from .bank import Bank  # re-export
from .model import Account, LedgerEntry, finite_amount, to_amount
