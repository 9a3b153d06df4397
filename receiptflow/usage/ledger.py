"""Monthly usage ledger gating calls to the extraction backend.

A period ("YYYYMM") has no record until its first increment; increments
read-modify-write the same record; at month rollover a new record starts at
zero and the old one stays as history.

Reads are served from an in-process cache for a short window. The cache is
keyed by period, so a new month is never served a stale count.

The ledger fails open: when the store is unreachable, reads return the last
known count (or 0) and increments advance only the in-process count. After
such a write failure the persisted count is understated, which is why the
configured limit must stay below the provider's real billing ceiling.

Increments are not atomic against concurrent documents: two in-flight
documents can read the same count and both write count + 1. Usage can be
under-counted by at most (in-flight documents - 1) per period.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter
from pydantic import BaseModel

from receiptflow.shared.dates import Clock, format_period, make_clock, period_key
from receiptflow.usage.errors import LedgerUnavailable
from receiptflow.usage.store import UsageStore

logger = logging.getLogger(__name__)


ledger_failures_total = Counter(
    "usage_ledger_failures_total",
    "Usage store operations that failed and were degraded",
    ["operation"],  # read, write
)


class QuotaStatus(BaseModel):
    """Result of a quota check.

    Attributes:
        allowed: Whether another extraction may run
        used: Extractions counted in the current period
        limit: Configured limit
        remaining: Extractions left before the limit
        message: User-facing message when not allowed
    """

    allowed: bool
    used: int
    limit: int
    remaining: int
    message: str | None = None


class UsageStats(BaseModel):
    """Usage summary of the current period."""

    period: str
    period_display: str
    used: int
    limit: int
    remaining: int
    percent_used: int
    quota_exceeded: bool


def quota_status(used: int, limit: int, exceeded_message: str) -> QuotaStatus:
    """Apply the quota gate policy to a usage count."""
    allowed = used < limit
    return QuotaStatus(
        allowed=allowed,
        used=used,
        limit=limit,
        remaining=max(0, limit - used),
        message=None if allowed else exceeded_message,
    )


@dataclass
class _CacheEntry:
    period: str
    count: int
    updated_at: float


class UsageLedger:
    """Global monthly usage counter backed by a UsageStore."""

    def __init__(
        self,
        store: UsageStore,
        limit: int,
        quota_message: str,
        cache_ttl_seconds: float = 60.0,
        clock: Clock | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize usage ledger.

        Args:
            store: Persistence for period counts
            limit: Monthly limit
            quota_message: Message returned when the limit is reached
            cache_ttl_seconds: How long a read count is served from memory
            clock: Wall clock deciding the current period
            monotonic: Clock measuring cache age
        """
        self.store = store
        self.limit = limit
        self.quota_message = quota_message
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock or make_clock()
        self._monotonic = monotonic
        self._cache: _CacheEntry | None = None

    def current_period(self) -> str:
        return period_key(self._clock())

    def _cached_count(self, period: str) -> int:
        """Last known count of period regardless of age, 0 if unknown."""
        if self._cache is not None and self._cache.period == period:
            return self._cache.count
        return 0

    def _remember(self, period: str, count: int) -> None:
        self._cache = _CacheEntry(period=period, count=count, updated_at=self._monotonic())

    def usage_count(self) -> int:
        """Count of the current period, from cache when fresh."""
        period = self.current_period()
        cache = self._cache
        if (
            cache is not None
            and cache.period == period
            and self._monotonic() - cache.updated_at < self.cache_ttl_seconds
        ):
            return cache.count

        try:
            count = self.store.get_period_count(period) or 0
        except LedgerUnavailable as e:
            ledger_failures_total.labels(operation="read").inc()
            fallback = self._cached_count(period)
            logger.error(f"Failed to get usage count, failing open with {fallback}: {e}")
            return fallback

        self._remember(period, count)
        return count

    def increment(self) -> int:
        """Count one successful extraction in the current period.

        Returns:
            New count of the current period
        """
        period = self.current_period()
        new_count: int | None = None
        try:
            new_count = (self.store.get_period_count(period) or 0) + 1
            self.store.set_period_count(period, new_count)
        except LedgerUnavailable as e:
            ledger_failures_total.labels(operation="write").inc()
            if new_count is None:
                new_count = self._cached_count(period) + 1
            logger.error(
                f"Failed to persist usage increment for {period}; "
                f"stored count is now behind the in-process count {new_count}: {e}"
            )

        self._remember(period, new_count)
        logger.info(f"OCR usage incremented: {new_count}/{self.limit}")
        return new_count

    def check_availability(self) -> QuotaStatus:
        """Check whether the current period is still under the limit."""
        return quota_status(self.usage_count(), self.limit, self.quota_message)

    def usage_stats(self) -> UsageStats:
        """Usage summary for display."""
        period = self.current_period()
        used = self.usage_count()
        return UsageStats(
            period=period,
            period_display=format_period(period),
            used=used,
            limit=self.limit,
            remaining=max(0, self.limit - used),
            percent_used=round(used / self.limit * 100) if self.limit > 0 else 100,
            quota_exceeded=used >= self.limit,
        )
