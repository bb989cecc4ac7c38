"""Storage adapters.

The attendance events are the source of truth; summaries and balances are
projections of them. Each store wraps one aggregate's table behind a small
async interface so the services above never build queries themselves.
"""

from streakledger.stores.claims import ClaimStore
from streakledger.stores.events import EventStore
from streakledger.stores.ledger import LedgerStore

__all__ = [
    "ClaimStore",
    "EventStore",
    "LedgerStore",
]
