"""FastAPI dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pricematch.ai.suggestions import ItemSuggester, item_suggester
from pricematch.db.session import get_db
from pricematch.db.store import PriceStore, SqlAlchemyPriceStore
from pricematch.resolve.orchestrator import ResolutionOrchestrator
from pricematch.resolve.web_price_fetcher import WebPriceFetcher


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


async def get_price_store(db: AsyncSession = Depends(get_database)) -> PriceStore:
    """Dependency for the session-bound price store."""
    return SqlAlchemyPriceStore(db)


async def get_orchestrator(store: PriceStore = Depends(get_price_store)) -> ResolutionOrchestrator:
    """Dependency for a resolution orchestrator over the request's store."""
    return ResolutionOrchestrator(store)


async def get_web_fetcher(store: PriceStore = Depends(get_price_store)) -> WebPriceFetcher:
    """Dependency for a web price fetcher over the request's store."""
    return WebPriceFetcher(store)


async def get_item_suggester() -> ItemSuggester:
    """Dependency for the list item suggester."""
    return item_suggester
