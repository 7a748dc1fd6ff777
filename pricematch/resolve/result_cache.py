"""Persistent query -> resolution cache with time-based expiry."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from pricematch import metrics
from pricematch.config import settings
from pricematch.db.records import ResolutionCacheEntry
from pricematch.db.store import PriceStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultCache:
    """
    Read-through / write-through cache over the store's ``price_cache`` rows.

    Expired rows read as a miss and are left in place; the next ``put``
    overwrites them. Negative outcomes (``canonical_key=None``) are cached
    like any other result.
    """

    def __init__(
        self,
        store: PriceStore,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ttl = ttl or timedelta(days=settings.cache_ttl_days)
        self._clock = clock

    async def get(self, normalized_query: str) -> Optional[ResolutionCacheEntry]:
        """Return the cached entry if it has not expired."""
        entry = await self.store.get_cache_entry(normalized_query)
        if entry is None:
            metrics.record_cache_lookup("miss")
            return None

        if not entry.is_fresh(self._clock()):
            logger.debug(f"Cache entry expired for '{normalized_query}'")
            metrics.record_cache_lookup("expired")
            return None

        metrics.record_cache_lookup("negative" if entry.is_negative else "hit")
        return entry

    async def put(
        self,
        normalized_query: str,
        canonical_key: Optional[str],
        avg_price_ils: Optional[Decimal],
        confidence: float,
        sample_count: Optional[int],
    ) -> ResolutionCacheEntry:
        """
        Upsert the entry for ``normalized_query``, restarting its TTL.

        Raises whatever the store raises; callers treat caching as best effort.
        """
        now = self._clock()
        entry = ResolutionCacheEntry(
            normalized_query=normalized_query,
            canonical_key=canonical_key,
            avg_price_ils=avg_price_ils,
            confidence=confidence,
            sample_count=sample_count,
            cached_at=now,
            expires_at=now + self.ttl,
        )
        await self.store.upsert_cache_entry(entry)
        return entry
