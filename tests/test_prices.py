"""Tests for chain price import and basket comparison."""

from decimal import Decimal

import pytest

from pricematch.prices.comparison import build_price_matrix, calculate_chain_totals
from pricematch.prices.importer import group_prices, import_chain_prices
from pricematch.resolve.results import ResolutionResult, ResolveSource
from pricematch.shopping.list_entry import ShoppingListEntry, build_list_entry


def _entry(key: str, quantity: int = 1, is_bought: bool = False) -> ShoppingListEntry:
    return ShoppingListEntry(
        user_text=key,
        canonical_key=key,
        resolve_confidence=1.0,
        resolve_source=ResolveSource.EXACT,
        quantity=quantity,
        is_bought=is_bought,
    )


def test_group_prices_averages_duplicates_and_skips_bad_rows():
    """Test keys are derived, duplicates averaged and junk dropped."""
    rows = [
        ("חלב תנובה 3% 1 ליטר", "6.90"),
        ("חלב תנובה 1% 1 ליטר", 7.10),
        ("במבה אסם 80 גרם", 4.5),
        ("א 500 גרם", 3),
        ("ביסלי", 0),
        ("שוקו", "free"),
        ("", 5),
    ]

    grouped = group_prices(rows, min_key_length=2)

    assert grouped == {
        "חלב תנובה": Decimal("7.00"),
        "במבה אסם": Decimal("4.50"),
    }


@pytest.mark.asyncio
async def test_import_chain_prices(memory_store):
    """Test chain rows are written in batches and averages refreshed."""
    await memory_store.upsert_chain_prices("רמי לוי", {"במבה אסם": Decimal("3.50")})
    rows = [(f"מוצר {i}", 10 + i) for i in range(5)] + [("במבה אסם 80 גרם", 4.5)]

    summary = await import_chain_prices(memory_store, " שופרסל ", rows, batch_size=2)

    assert summary.chain_name == "שופרסל"
    assert summary.unique_products == 6
    assert summary.items_processed == 6
    assert summary.batch_errors == 0
    assert memory_store.calls["upsert_chain_prices"] == 1 + 3
    assert memory_store.products["במבה אסם"].avg_price_ils == Decimal("4.00")
    assert memory_store.products["במבה אסם"].sample_count == 2


@pytest.mark.asyncio
async def test_import_counts_batch_errors(memory_store):
    """Test failing batches are counted, not raised."""
    memory_store.fail_writes = True

    summary = await import_chain_prices(memory_store, "מגה", [("חלב", 6), ("לחם", 8)], batch_size=1)

    assert summary.items_processed == 0
    assert summary.batch_errors == 2


@pytest.mark.asyncio
async def test_import_with_nothing_usable(memory_store):
    """Test an import without valid rows writes nothing."""
    summary = await import_chain_prices(memory_store, "מגה", [("א", 5), ("ב", -1)])

    assert summary.unique_products == 0
    assert memory_store.calls["upsert_chain_prices"] == 0


@pytest.mark.asyncio
async def test_chain_totals_use_canonical_key_and_quantity(memory_store):
    """Test totals multiply by quantity, skip bought items and sort cheapest first."""
    await memory_store.upsert_chain_prices("שופרסל", {"חלב": Decimal("7"), "לחם": Decimal("9")})
    await memory_store.upsert_chain_prices("רמי לוי", {"חלב": Decimal("6"), "לחם": Decimal("8")})
    await memory_store.upsert_chain_prices("מגה", {"חלב": Decimal("5")})

    items = [_entry("חלב", quantity=2), _entry("לחם"), _entry("במבה", is_bought=True), _entry("משהו")]

    totals = await calculate_chain_totals(memory_store, items)

    assert [(t.chain_name, t.total, t.items_matched) for t in totals] == [
        ("מגה", Decimal("10"), 1),
        ("רמי לוי", Decimal("20"), 2),
        ("שופרסל", Decimal("23"), 2),
    ]


@pytest.mark.asyncio
async def test_chain_totals_empty_when_everything_bought(memory_store):
    """Test a fully bought list has no totals and does not query prices."""
    assert await calculate_chain_totals(memory_store, [_entry("חלב", is_bought=True)]) == []
    assert memory_store.calls["get_chain_prices"] == 0


@pytest.mark.asyncio
async def test_price_matrix(memory_store):
    """Test the matrix is keyed by canonical key with chains cheapest first."""
    await memory_store.upsert_chain_prices("שופרסל", {"חלב": Decimal("7")})
    await memory_store.upsert_chain_prices("רמי לוי", {"חלב": Decimal("6")})

    matrix = await build_price_matrix(memory_store, [_entry("חלב")])

    assert matrix.chain_names == ["רמי לוי", "שופרסל"]
    assert matrix.prices == {"חלב": {"שופרסל": Decimal("7.00"), "רמי לוי": Decimal("6.00")}}
    assert matrix.to_dict()["chainTotals"][0] == {"chainName": "רמי לוי", "total": 6.0, "itemsMatched": 1}


def test_list_entry_uses_resolved_key():
    """Test a resolved entry keys on the canonical key."""
    resolution = ResolutionResult("קוטג׳ 5%", "קוטג'", 0.8, ResolveSource.PARTIAL)

    entry = build_list_entry(" קוטג׳ 5% ", resolution, quantity=2)

    assert entry.user_text == "קוטג׳ 5%"
    assert entry.canonical_key == "קוטג'"
    assert entry.resolve_source == ResolveSource.PARTIAL
    assert entry.quantity == 2
    assert not entry.is_bought


def test_list_entry_falls_back_to_user_text():
    """Test an unresolved entry still has a non-empty join key."""
    resolution = ResolutionResult("משהו מוזר", None, 0.0, ResolveSource.FALLBACK)

    entry = build_list_entry("  משהו מוזר ", resolution)

    assert entry.canonical_key == "משהו מוזר"
    assert entry.resolve_source == ResolveSource.FALLBACK
    assert entry.to_dict()["resolveSource"] == "fallback"


def test_list_entry_rejects_blank_text():
    """Test blank text cannot become an entry."""
    with pytest.raises(ValueError):
        build_list_entry("  ", ResolutionResult("", None, 0.0, ResolveSource.FALLBACK))
