"""
Decide when a cached identity should be fetched again.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from fedicache.model import has_datetime


class FreshnessPolicy(ABC):
    """
    Computes the point in time after which a cached identity is outdated.
    """
    @abstractmethod
    def next_update_deadline(
        self,
        is_high_priority: bool,
        created: datetime | None,
        updated: datetime | None,
        force_immediate: bool = False
    ) -> datetime:
        ...


class TieredFreshnessPolicy(FreshnessPolicy):
    """
    High-priority identities are refetched a week after their last update. For all
    others, the interval grows with the time the identity has been known, so that
    long-lived, unchanging identities are not fetched over and over.
    """
    HIGH_PRIORITY_INTERVAL = timedelta(days=7)

    # (known for less than, refetch after)
    TIERS = [
        (timedelta(hours=6),   timedelta(hours=6)),
        (timedelta(hours=12),  timedelta(hours=12)),
        (timedelta(days=1),    timedelta(days=1)),
        (timedelta(days=7),    timedelta(days=7)),
        (timedelta(days=14),   timedelta(days=14)),
        (timedelta(days=30),   timedelta(days=30)),
    ]
    LONGEST_INTERVAL = timedelta(days=90)


    def __init__(self, now: datetime | None = None):
        """
        now: pin the current time, for testing
        """
        self._now = now


    # Python 3.12 @override
    def next_update_deadline(
        self,
        is_high_priority: bool,
        created: datetime | None,
        updated: datetime | None,
        force_immediate: bool = False
    ) -> datetime:
        now = self._now or datetime.now(UTC)
        since : datetime = created if created and has_datetime(created) else now
        last : datetime = updated if updated and has_datetime(updated) else now

        if force_immediate:
            return last

        if is_high_priority:
            return last + self.HIGH_PRIORITY_INTERVAL

        known_for = last - since
        for limit, interval in self.TIERS:
            if known_for < limit:
                return last + interval
        return last + self.LONGEST_INTERVAL
