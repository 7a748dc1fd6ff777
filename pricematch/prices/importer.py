"""Aggregation of one chain's price list into chain prices and national averages."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from pricematch.config import settings
from pricematch.db.store import PriceStore, to_price
from pricematch.logging_config import get_logger
from pricematch.resolve.normalizer import normalize_product_name


@dataclass
class ImportSummary:
    """Outcome of a chain price import."""

    chain_name: str
    items_processed: int = 0
    unique_products: int = 0
    batch_errors: int = 0
    averages_updated: int = 0

    def to_dict(self) -> dict:
        return {
            "chainName": self.chain_name,
            "itemsProcessed": self.items_processed,
            "uniqueProducts": self.unique_products,
            "batchErrors": self.batch_errors,
            "averagesUpdated": self.averages_updated,
        }


def _parse_price(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def group_prices(
    items: Iterable[Tuple[str, object]],
    min_key_length: Optional[int] = None,
) -> Dict[str, Decimal]:
    """
    Map raw ``(item name, price)`` rows to ``{canonical key: mean price}``.

    Rows with a non-positive or non-numeric price, or whose derived key is
    shorter than ``min_key_length``, are skipped.
    """
    min_key_length = min_key_length or settings.import_min_key_length
    grouped: Dict[str, List[Decimal]] = {}

    for name, raw_price in items:
        price = _parse_price(raw_price)
        if price is None or not name:
            continue
        canonical_key = normalize_product_name(str(name))
        if len(canonical_key) < min_key_length:
            continue
        grouped.setdefault(canonical_key, []).append(price)

    return {
        key: to_price(sum(prices) / len(prices))
        for key, prices in grouped.items()
    }


async def import_chain_prices(
    store: PriceStore,
    chain_name: str,
    items: Iterable[Tuple[str, object]],
    batch_size: Optional[int] = None,
) -> ImportSummary:
    """
    Import one chain's parsed price list.

    Chain rows are upserted in batches; a failing batch is counted and
    skipped. Afterwards every touched key gets its average recomputed over
    all chains.

    Args:
        store: Price store
        chain_name: Chain the prices belong to
        items: ``(item name, price)`` rows as parsed from the chain's file
        batch_size: Rows per upsert (defaults to settings.import_batch_size)

    Returns:
        ImportSummary
    """
    chain_name = chain_name.strip()
    log = get_logger(__name__, chain=chain_name, tier="import")
    batch_size = batch_size or settings.import_batch_size
    summary = ImportSummary(chain_name=chain_name)

    prices = group_prices(items)
    summary.unique_products = len(prices)
    if not prices:
        log.warning(f"No importable items for {chain_name}")
        return summary

    entries = list(prices.items())
    written_keys: List[str] = []

    for start in range(0, len(entries), batch_size):
        batch = dict(entries[start:start + batch_size])
        try:
            summary.items_processed += await store.upsert_chain_prices(chain_name, batch)
            written_keys.extend(batch)
        except SQLAlchemyError as e:
            log.error(f"Batch error importing {chain_name} (offset {start}): {e}")
            summary.batch_errors += 1

    log.info(f"Updating price_lookup averages for {len(written_keys)} products...")
    for start in range(0, len(written_keys), batch_size):
        keys = written_keys[start:start + batch_size]
        try:
            summary.averages_updated += await store.recompute_averages(keys)
        except SQLAlchemyError as e:
            log.error(f"Failed to recompute averages (offset {start}): {e}")
            summary.batch_errors += 1

    log.info(
        f"Imported {chain_name}: {summary.items_processed}/{summary.unique_products} products, "
        f"{summary.batch_errors} batch errors"
    )
    return summary
