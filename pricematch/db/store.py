"""Price store port and its SQLAlchemy implementation.

The resolution engine depends on ``PriceStore`` only. ``SqlAlchemyPriceStore``
binds it to an ``AsyncSession`` and performs upserts with the dialect's
``INSERT .. ON CONFLICT DO UPDATE`` (PostgreSQL in production, SQLite in tests).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pricematch.db.models import ChainPrice, PriceCache, PriceLookup
from pricematch.db.records import CanonicalProduct, ChainPriceEntry, ResolutionCacheEntry

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_price(value) -> Decimal:
    """Coerce a numeric value to a two-decimal ``Decimal``."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PriceStore(ABC):
    """Typed read/upsert operations the resolution engine needs."""

    @abstractmethod
    async def list_canonical_products(self, limit: Optional[int] = None) -> List[CanonicalProduct]:
        """Return canonical products in insertion order."""

    @abstractmethod
    async def get_canonical_product(self, canonical_key: str) -> Optional[CanonicalProduct]:
        """Return the canonical product with exactly this key."""

    @abstractmethod
    async def get_cache_entry(self, normalized_query: str) -> Optional[ResolutionCacheEntry]:
        """Return the cache row for a query, expired or not."""

    @abstractmethod
    async def upsert_cache_entry(self, entry: ResolutionCacheEntry) -> None:
        """Insert or overwrite the cache row for ``entry.normalized_query``."""

    @abstractmethod
    async def record_web_price(
        self,
        canonical_key: str,
        avg_price: Decimal,
        category: Optional[str],
        chain_prices: Dict[str, Decimal],
    ) -> CanonicalProduct:
        """Persist a web-sourced canonical product and its chain prices together."""

    @abstractmethod
    async def upsert_chain_prices(self, chain_name: str, prices: Dict[str, Decimal]) -> int:
        """Upsert one chain's prices keyed by canonical key. Returns rows written."""

    @abstractmethod
    async def recompute_averages(self, canonical_keys: Iterable[str]) -> int:
        """Recompute ``avg_price_ils`` / ``sample_count`` from chain prices."""

    @abstractmethod
    async def get_chain_prices(self, canonical_keys: Iterable[str]) -> List[ChainPriceEntry]:
        """Return every chain price for the given keys."""


class SqlAlchemyPriceStore(PriceStore):
    """``PriceStore`` backed by an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite_insert(model)
        return pg_insert(model)

    @staticmethod
    def _to_product(row: PriceLookup) -> CanonicalProduct:
        return CanonicalProduct(
            canonical_key=row.canonical_key,
            avg_price_ils=to_price(row.avg_price_ils),
            sample_count=row.sample_count,
            category=row.category,
            updated_at=_as_utc(row.updated_at),
        )

    async def list_canonical_products(self, limit: Optional[int] = None) -> List[CanonicalProduct]:
        query = select(PriceLookup).order_by(PriceLookup.id)
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [self._to_product(row) for row in result.scalars().all()]

    async def get_canonical_product(self, canonical_key: str) -> Optional[CanonicalProduct]:
        result = await self.db.execute(
            select(PriceLookup).where(PriceLookup.canonical_key == canonical_key).limit(1)
        )
        row = result.scalar_one_or_none()
        return self._to_product(row) if row else None

    async def get_cache_entry(self, normalized_query: str) -> Optional[ResolutionCacheEntry]:
        result = await self.db.execute(
            select(PriceCache).where(PriceCache.query == normalized_query).limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return ResolutionCacheEntry(
            normalized_query=row.query,
            canonical_key=row.canonical_key,
            avg_price_ils=to_price(row.avg_price_ils) if row.avg_price_ils is not None else None,
            confidence=float(row.confidence or 0),
            sample_count=row.sample_count,
            cached_at=_as_utc(row.cached_at),
            expires_at=_as_utc(row.expires_at),
        )

    async def upsert_cache_entry(self, entry: ResolutionCacheEntry) -> None:
        values = {
            "query": entry.normalized_query,
            "canonical_key": entry.canonical_key,
            "avg_price_ils": entry.avg_price_ils,
            "confidence": to_price(entry.confidence),
            "sample_count": entry.sample_count,
            "cached_at": entry.cached_at,
            "expires_at": entry.expires_at,
        }
        stmt = self._insert(PriceCache).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PriceCache.query],
            set_={key: stmt.excluded[key] for key in values if key != "query"},
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _upsert_chain_rows(self, rows: List[dict]) -> None:
        stmt = self._insert(ChainPrice).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ChainPrice.canonical_key, ChainPrice.chain_name],
            set_={
                "price_ils": stmt.excluded.price_ils,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await self.db.execute(stmt)

    async def _upsert_lookup_rows(self, rows: List[dict]) -> None:
        stmt = self._insert(PriceLookup).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PriceLookup.canonical_key],
            set_={
                "avg_price_ils": stmt.excluded.avg_price_ils,
                "sample_count": stmt.excluded.sample_count,
                "category": func.coalesce(stmt.excluded.category, PriceLookup.category),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

    async def _chain_averages(self, canonical_keys: List[str]) -> Dict[str, tuple]:
        result = await self.db.execute(
            select(
                ChainPrice.canonical_key,
                func.avg(ChainPrice.price_ils),
                func.count(ChainPrice.id),
            )
            .where(ChainPrice.canonical_key.in_(canonical_keys))
            .group_by(ChainPrice.canonical_key)
        )
        return {key: (to_price(avg), count) for key, avg, count in result.all()}

    async def record_web_price(
        self,
        canonical_key: str,
        avg_price: Decimal,
        category: Optional[str],
        chain_prices: Dict[str, Decimal],
    ) -> CanonicalProduct:
        now = datetime.now(timezone.utc)
        try:
            if chain_prices:
                await self._upsert_chain_rows([
                    {
                        "canonical_key": canonical_key,
                        "chain_name": chain,
                        "price_ils": to_price(price),
                        "last_updated": now,
                    }
                    for chain, price in chain_prices.items()
                ])

            averages = await self._chain_averages([canonical_key])
            mean, count = averages.get(canonical_key, (to_price(avg_price), 1))

            await self._upsert_lookup_rows([{
                "canonical_key": canonical_key,
                "avg_price_ils": mean,
                "sample_count": count,
                "category": category,
                "updated_at": now,
            }])
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        return CanonicalProduct(
            canonical_key=canonical_key,
            avg_price_ils=mean,
            sample_count=count,
            category=category,
            updated_at=now,
        )

    async def upsert_chain_prices(self, chain_name: str, prices: Dict[str, Decimal]) -> int:
        if not prices:
            return 0
        now = datetime.now(timezone.utc)
        try:
            await self._upsert_chain_rows([
                {
                    "canonical_key": key,
                    "chain_name": chain_name,
                    "price_ils": to_price(price),
                    "last_updated": now,
                }
                for key, price in prices.items()
            ])
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return len(prices)

    async def recompute_averages(self, canonical_keys: Iterable[str]) -> int:
        keys = list(dict.fromkeys(canonical_keys))
        if not keys:
            return 0
        now = datetime.now(timezone.utc)
        try:
            averages = await self._chain_averages(keys)
            if not averages:
                return 0
            await self._upsert_lookup_rows([
                {
                    "canonical_key": key,
                    "avg_price_ils": mean,
                    "sample_count": count,
                    "category": None,
                    "updated_at": now,
                }
                for key, (mean, count) in averages.items()
            ])
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return len(averages)

    async def get_chain_prices(self, canonical_keys: Iterable[str]) -> List[ChainPriceEntry]:
        keys = [key.strip() for key in canonical_keys if key and key.strip()]
        if not keys:
            return []
        result = await self.db.execute(
            select(ChainPrice).where(ChainPrice.canonical_key.in_(keys))
        )
        return [
            ChainPriceEntry(
                canonical_key=row.canonical_key,
                chain_name=row.chain_name,
                price_ils=to_price(row.price_ils),
                last_updated=_as_utc(row.last_updated),
            )
            for row in result.scalars().all()
        ]
