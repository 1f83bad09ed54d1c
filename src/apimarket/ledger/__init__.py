"""Ledger package.

Public API:
- Ledger: services, prepaid subscriptions, metered calls and the platform fee.
- Treasury: in-process value transport for payouts, refunds and withdrawals.
"""

from .ledger import Ledger  # re-export
from .treasury import Treasury  # re-export
