"""Price comparison and chain price import API routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from pricematch.api.deps import get_price_store
from pricematch.db.store import PriceStore
from pricematch.prices.comparison import build_price_matrix
from pricematch.prices.importer import import_chain_prices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/prices", tags=["prices"])


class CompareItem(BaseModel):
    """A shopping list line as sent for comparison."""
    model_config = ConfigDict(populate_by_name=True)

    canonical_key: str = Field(alias="canonicalKey", min_length=1)
    quantity: int = Field(default=1, ge=1)
    is_bought: bool = Field(default=False, alias="isBought")


class CompareRequest(BaseModel):
    """Request model for a basket comparison."""
    items: List[CompareItem]


class ImportItem(BaseModel):
    """One parsed row of a chain price file."""
    name: str
    price: float


class ImportRequest(BaseModel):
    """Request model for importing one chain's parsed price list."""
    model_config = ConfigDict(populate_by_name=True)

    chain_name: str = Field(alias="chainName", min_length=1)
    items: List[ImportItem]


@router.post("/compare")
async def compare_prices(
    request: CompareRequest,
    store: PriceStore = Depends(get_price_store),
):
    """Per-chain totals and the price matrix for a shopping list."""
    matrix = await build_price_matrix(store, request.items)
    return matrix.to_dict()


@router.post("/import")
async def import_prices(
    request: ImportRequest,
    store: PriceStore = Depends(get_price_store),
):
    """Import one chain's parsed price list and refresh national averages."""
    summary = await import_chain_prices(
        store,
        request.chain_name,
        [(item.name, item.price) for item in request.items],
    )
    return {"success": summary.items_processed > 0, **summary.to_dict()}
