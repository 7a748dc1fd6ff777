"""Product name resolution API routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricematch.ai.suggestions import ItemSuggester
from pricematch.api.deps import get_item_suggester, get_orchestrator, get_web_fetcher
from pricematch.resolve.orchestrator import ResolutionOrchestrator
from pricematch.resolve.web_price_fetcher import WebPriceFetcher
from pricematch.shopping.list_entry import build_list_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["resolve"])


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be empty")
    return value.strip()


class ProductNameRequest(BaseModel):
    """Request model carrying a product name."""
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(alias="productName")

    @field_validator("product_name")
    @classmethod
    def validate_product_name(cls, v):
        return _require_text(v)


class ListItemCreate(BaseModel):
    """Request model for adding an item to a shopping list."""
    model_config = ConfigDict(populate_by_name=True)

    user_text: str = Field(alias="userText")
    quantity: int = Field(default=1, ge=1)

    @field_validator("user_text")
    @classmethod
    def validate_user_text(cls, v):
        return _require_text(v)


class SuggestionRequest(BaseModel):
    """Request model for list item suggestions."""
    model_config = ConfigDict(populate_by_name=True)

    current_items: List[str] = Field(default_factory=list, alias="currentItems")
    history: List[str] = Field(default_factory=list)


@router.get("/resolve")
async def resolve_product(
    query: str = Query(..., description="Product name as typed by the user"),
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """Resolve a free-text product name to a canonical key and average price."""
    if not query.strip():
        raise HTTPException(status_code=400, detail="query must not be empty")

    result = await orchestrator.resolve(query)
    return result.to_dict()


@router.post("/resolve/retry")
async def retry_resolution(
    request: ProductNameRequest,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """Re-run every tier for a product name, ignoring any cached outcome."""
    logger.info(f"Retrying resolution for '{request.product_name}'")
    result = await orchestrator.resolve(request.product_name, retry=True)
    return result.to_dict()


@router.post("/web-price")
async def web_price(
    request: ProductNameRequest,
    fetcher: WebPriceFetcher = Depends(get_web_fetcher),
):
    """Look up a product's price on the web."""
    result = await fetcher.fetch_from_web(request.product_name)
    return result.to_dict()


@router.post("/list/items")
async def add_list_item(
    request: ListItemCreate,
    orchestrator: ResolutionOrchestrator = Depends(get_orchestrator),
):
    """Resolve the user's text and return the shopping list entry to store."""
    resolution = await orchestrator.resolve(request.user_text)
    entry = build_list_entry(request.user_text, resolution, request.quantity)
    return {
        **entry.to_dict(),
        "avgPrice": float(resolution.avg_price_ils) if resolution.avg_price_ils is not None else None,
    }


@router.post("/list/suggestions")
async def suggest_list_items(
    request: SuggestionRequest,
    suggester: ItemSuggester = Depends(get_item_suggester),
):
    """Suggest items the user probably forgot; an empty list when none are available."""
    suggestions = await suggester.suggest_items(request.current_items, request.history)
    return {"suggestions": [{"name": s.name, "reason": s.reason} for s in suggestions]}
