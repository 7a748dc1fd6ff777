"""Per-chain basket totals for a shopping list.

All lookups join on ``canonical_key``; the user's text is never used.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Protocol, Sequence

from pricematch.db.records import ChainPriceEntry
from pricematch.db.store import PriceStore

logger = logging.getLogger(__name__)


class PricedItem(Protocol):
    canonical_key: str
    quantity: int
    is_bought: bool


@dataclass
class ChainTotal:
    """Basket total at one chain."""

    chain_name: str
    total: Decimal
    items_matched: int

    def to_dict(self) -> dict:
        return {
            "chainName": self.chain_name,
            "total": float(self.total),
            "itemsMatched": self.items_matched,
        }


@dataclass
class PriceMatrix:
    """Prices per canonical key and chain, with chains ordered cheapest first."""

    prices: Dict[str, Dict[str, Decimal]]
    chain_names: List[str]
    chain_totals: List[ChainTotal]

    def to_dict(self) -> dict:
        return {
            "priceData": {
                key: {chain: float(price) for chain, price in chains.items()}
                for key, chains in self.prices.items()
            },
            "allChainNames": self.chain_names,
            "chainTotals": [total.to_dict() for total in self.chain_totals],
        }


def _unbought(items: Sequence[PricedItem]) -> List[PricedItem]:
    return [item for item in items if not item.is_bought]


def _price_map(chain_prices: Sequence[ChainPriceEntry]) -> Dict[str, Dict[str, Decimal]]:
    prices: Dict[str, Dict[str, Decimal]] = {}
    for entry in chain_prices:
        prices.setdefault(entry.canonical_key, {})[entry.chain_name] = entry.price_ils
    return prices


def totals_from_prices(
    items: Sequence[PricedItem],
    chain_prices: Sequence[ChainPriceEntry],
) -> List[ChainTotal]:
    """Sum ``price * quantity`` per chain over un-bought items, cheapest first."""
    prices = _price_map(chain_prices)
    totals: Dict[str, ChainTotal] = {}

    for item in _unbought(items):
        for chain_name, price in prices.get(item.canonical_key.strip(), {}).items():
            total = totals.setdefault(chain_name, ChainTotal(chain_name, Decimal("0"), 0))
            total.total += price * item.quantity
            total.items_matched += 1

    return sorted(totals.values(), key=lambda total: total.total)


async def calculate_chain_totals(store: PriceStore, items: Sequence[PricedItem]) -> List[ChainTotal]:
    """Fetch chain prices for the un-bought items and total them per chain."""
    pending = _unbought(items)
    if not pending:
        return []

    chain_prices = await store.get_chain_prices(item.canonical_key for item in pending)
    totals = totals_from_prices(pending, chain_prices)
    logger.debug(f"Chain totals for {len(pending)} items: {len(totals)} chains")
    return totals


async def build_price_matrix(store: PriceStore, items: Sequence[PricedItem]) -> PriceMatrix:
    """Price matrix for the comparison view."""
    pending = _unbought(items)
    if not pending:
        return PriceMatrix(prices={}, chain_names=[], chain_totals=[])

    chain_prices = await store.get_chain_prices(item.canonical_key for item in pending)
    totals = totals_from_prices(pending, chain_prices)

    chain_names = [total.chain_name for total in totals]
    for entry in chain_prices:
        if entry.chain_name not in chain_names:
            chain_names.append(entry.chain_name)

    return PriceMatrix(
        prices=_price_map(chain_prices),
        chain_names=chain_names,
        chain_totals=totals,
    )
