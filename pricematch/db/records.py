"""Plain records exchanged through the price store port.

The resolution engine works with these dataclasses only; ORM rows never
leave ``pricematch.db.store``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class CanonicalProduct:
    """Canonical product identity with its national average price."""

    canonical_key: str
    avg_price_ils: Decimal
    sample_count: int = 1
    category: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class ChainPriceEntry:
    """Price of one canonical product at one chain."""

    canonical_key: str
    chain_name: str
    price_ils: Decimal
    last_updated: Optional[datetime] = None


@dataclass
class ResolutionCacheEntry:
    """Cached outcome of resolving a normalized query.

    ``canonical_key is None`` marks a confident negative.
    """

    normalized_query: str
    canonical_key: Optional[str]
    avg_price_ils: Optional[Decimal]
    confidence: float
    sample_count: Optional[int]
    cached_at: datetime
    expires_at: datetime

    @property
    def is_negative(self) -> bool:
        return self.canonical_key is None

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at
