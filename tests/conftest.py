"""Shared fixtures: an in-memory price store and an aiosqlite session."""

from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricematch.db.models import Base
from pricematch.db.records import CanonicalProduct, ChainPriceEntry, ResolutionCacheEntry
from pricematch.db.store import PriceStore, to_price

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class InMemoryPriceStore(PriceStore):
    """Dict-backed PriceStore that counts calls and can fail writes on demand."""

    def __init__(self, products: Optional[Iterable[CanonicalProduct]] = None):
        self.products: Dict[str, CanonicalProduct] = {}
        self.chain_prices: Dict[tuple, ChainPriceEntry] = {}
        self.cache: Dict[str, ResolutionCacheEntry] = {}
        self.calls = Counter()
        self.fail_writes = False
        self.fail_reads = False
        for product in products or []:
            self.products[product.canonical_key] = product

    def add_product(self, key: str, price: str = "10.00", sample_count: int = 1) -> CanonicalProduct:
        product = CanonicalProduct(key, Decimal(price), sample_count)
        self.products[key] = product
        return product

    def _write(self, name: str):
        self.calls[name] += 1
        if self.fail_writes:
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    def _read(self, name: str):
        self.calls[name] += 1
        if self.fail_reads:
            raise OperationalError("SELECT", {}, Exception("connection refused"))

    async def list_canonical_products(self, limit: Optional[int] = None) -> List[CanonicalProduct]:
        self._read("list_canonical_products")
        products = list(self.products.values())
        return products[:limit] if limit else products

    async def get_canonical_product(self, canonical_key: str) -> Optional[CanonicalProduct]:
        self._read("get_canonical_product")
        return self.products.get(canonical_key)

    async def get_cache_entry(self, normalized_query: str) -> Optional[ResolutionCacheEntry]:
        self._read("get_cache_entry")
        return self.cache.get(normalized_query)

    async def upsert_cache_entry(self, entry: ResolutionCacheEntry) -> None:
        self._write("upsert_cache_entry")
        self.cache[entry.normalized_query] = entry

    async def record_web_price(
        self,
        canonical_key: str,
        avg_price: Decimal,
        category: Optional[str],
        chain_prices: Dict[str, Decimal],
    ) -> CanonicalProduct:
        self._write("record_web_price")
        now = datetime.now(timezone.utc)
        for chain, price in chain_prices.items():
            self.chain_prices[(canonical_key, chain)] = ChainPriceEntry(
                canonical_key, chain, to_price(price), now
            )
        prices = [
            entry.price_ils for (key, _), entry in self.chain_prices.items()
            if key == canonical_key
        ]
        if prices:
            mean, count = to_price(sum(prices) / len(prices)), len(prices)
        else:
            mean, count = to_price(avg_price), 1
        product = CanonicalProduct(canonical_key, mean, count, category, now)
        self.products[canonical_key] = product
        return product

    async def upsert_chain_prices(self, chain_name: str, prices: Dict[str, Decimal]) -> int:
        self._write("upsert_chain_prices")
        now = datetime.now(timezone.utc)
        for key, price in prices.items():
            self.chain_prices[(key, chain_name)] = ChainPriceEntry(key, chain_name, to_price(price), now)
        return len(prices)

    async def recompute_averages(self, canonical_keys: Iterable[str]) -> int:
        self._write("recompute_averages")
        updated = 0
        for key in dict.fromkeys(canonical_keys):
            prices = [
                entry.price_ils for (entry_key, _), entry in self.chain_prices.items()
                if entry_key == key
            ]
            if not prices:
                continue
            existing = self.products.get(key)
            self.products[key] = CanonicalProduct(
                key,
                to_price(sum(prices) / len(prices)),
                len(prices),
                existing.category if existing else None,
            )
            updated += 1
        return updated

    async def get_chain_prices(self, canonical_keys: Iterable[str]) -> List[ChainPriceEntry]:
        self._read("get_chain_prices")
        keys = {key.strip() for key in canonical_keys}
        return [entry for (key, _), entry in self.chain_prices.items() if key in keys]


@pytest.fixture
def memory_store():
    """Empty in-memory price store."""
    return InMemoryPriceStore()


@pytest.fixture
async def test_db():
    """In-memory SQLite database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()
