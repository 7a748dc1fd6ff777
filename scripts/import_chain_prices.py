#!/usr/bin/env python3
"""
Chain price import script.

Loads one chain's parsed price list from a JSON file and imports it into
chain_prices, then refreshes the national averages in price_lookup.

Schema of the JSON file:
- chainName: str (REQUIRED) - Chain the prices belong to, e.g. "שופרסל"
- items: list (REQUIRED) - Objects with "name" (raw item name) and "price"

Usage:
    python scripts/import_chain_prices.py prices.json
    python scripts/import_chain_prices.py prices.json --chain "רמי לוי"
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import SQLAlchemyError
from pricematch.db.session import AsyncSessionLocal
from pricematch.db.store import SqlAlchemyPriceStore
from pricematch.prices.importer import import_chain_prices


async def run_import(price_file: Path, chain_override: str | None = None):
    """Import a price file."""
    try:
        with open(price_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        print(f"Error: {price_file} not found")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in {price_file}: {e}")
        sys.exit(1)

    chain_name = chain_override or data.get("chainName")
    items = data.get("items") or []
    if not chain_name:
        print("Error: chainName is missing (set it in the file or pass --chain)")
        sys.exit(1)
    if not items:
        print("No items found in price file")
        return

    rows = [
        (item.get("name"), item.get("price"))
        for item in items
        if isinstance(item, dict)
    ]
    print(f"Found {len(rows)} items for {chain_name}...")

    try:
        async with AsyncSessionLocal() as db:
            summary = await import_chain_prices(SqlAlchemyPriceStore(db), chain_name, rows)
    except SQLAlchemyError as e:
        print(f"\nError: Database connection failed: {e}")
        print("Make sure Docker containers are running and database is accessible.")
        sys.exit(1)

    print(f"\nImport complete!")
    print(f"  - Unique products: {summary.unique_products}")
    print(f"  - Processed: {summary.items_processed}")
    print(f"  - Averages updated: {summary.averages_updated}")
    if summary.batch_errors:
        print(f"  - Batch errors: {summary.batch_errors}")


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] == "--help":
        print("Usage: python import_chain_prices.py PRICE_FILE [--chain NAME]")
        print("")
        print("Options:")
        print("  --chain NAME  Override the chainName from the file")
        print("  --help        Show this help message")
        sys.exit(0)

    chain = None
    if len(sys.argv) > 3 and sys.argv[2] == "--chain":
        chain = sys.argv[3]
    asyncio.run(run_import(Path(sys.argv[1]), chain))
