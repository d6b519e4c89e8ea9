"""
Day-bucketed candidate matching.

Groups candidate transactions by calendar day and attaches to each day
the unconsumed settlement entries dated within [day - window, day].
Days without transactions produce no bucket, so entries with no
transaction in range are not offered.
"""

from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, Optional

import structlog

from ..models import DayBucket, SettlementEntry, Transaction

logger = structlog.get_logger()


class DayBucketMatcher:
    """Builds day buckets of candidate transactions and settlement entries."""

    def __init__(self, window_days: int = 0):
        self.window_days = window_days

    def bucket(
        self,
        transactions: Iterable[Transaction],
        entries: Iterable[SettlementEntry],
        window_days: Optional[int] = None,
    ) -> Dict[date, DayBucket]:
        """
        Build buckets keyed by day, in ascending date order.

        Args:
            transactions: Ledger transactions; non-candidates are ignored
            entries: Settlement entries; consumed entries are ignored
            window_days: Lookback in days (defaults to the matcher's window)

        Returns:
            Ordered mapping day -> DayBucket
        """
        window = self.window_days if window_days is None else window_days
        if window < 0:
            raise ValueError(f"Window must be non-negative, got {window}")

        by_day = defaultdict(list)
        for transaction in transactions:
            if transaction.transaction_date is None or not transaction.is_candidate:
                continue
            by_day[transaction.transaction_date].append(transaction)

        live_entries = sorted(
            (e for e in entries if not e.consumed and e.entry_date is not None),
            key=lambda e: (e.entry_date, e.id),
        )
        entry_dates = [e.entry_date for e in live_entries]

        buckets: Dict[date, DayBucket] = {}
        for day in sorted(by_day):
            start = bisect_left(entry_dates, day - timedelta(days=window))
            end = bisect_right(entry_dates, day)
            buckets[day] = DayBucket(
                day=day,
                window_days=window,
                transactions=by_day[day],
                entries=live_entries[start:end],
            )

        logger.debug(
            "Day buckets built",
            buckets=len(buckets),
            window_days=window,
            entries=len(live_entries),
        )
        return buckets
