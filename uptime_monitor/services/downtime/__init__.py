"""
Downtime Accounting

Responsibilities:
- Open, extend and close day-scoped downtime records
- Split open records at each customer's local midnight
- Summarise downtime and availability per local day
"""

from .ledger import DowntimeLedger, MachineDayAvailability
from .splitter import BoundarySplitter, open_segment, split_at_day_boundaries

__all__ = [
    "DowntimeLedger",
    "MachineDayAvailability",
    "BoundarySplitter",
    "open_segment",
    "split_at_day_boundaries",
]
