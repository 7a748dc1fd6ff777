"""Tests for tiered resolution."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pricematch.ai.llm_service import LLMService
from pricematch.ai.semantic_matcher import SemanticMatcher
from pricematch.db.records import ResolutionCacheEntry
from pricematch.resolve.orchestrator import ResolutionOrchestrator
from pricematch.resolve.results import ResolveSource, SemanticMatch, WebPriceResult


@pytest.fixture
def semantic():
    mock = MagicMock()
    mock.match_via_language_model = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def web():
    mock = MagicMock()
    mock.fetch_from_web = AsyncMock(
        side_effect=lambda name, normalized_query=None: WebPriceResult.not_found(name, "No reliable price found")
    )
    return mock


@pytest.fixture
def orchestrator(memory_store, semantic, web):
    orch = ResolutionOrchestrator(memory_store, semantic_matcher=semantic, web_fetcher=web)
    orch.fuzzy_floor = 0.6
    orch.semantic_floor = 0.45
    orch.semantic_max_candidates = 150
    orch.semantic_enabled = True
    orch.web_enabled = True
    orch.web_on_empty_catalog = True
    return orch


def _negative(query: str) -> ResolutionCacheEntry:
    now = datetime.now(timezone.utc)
    return ResolutionCacheEntry(
        normalized_query=query,
        canonical_key=None,
        avg_price_ils=None,
        confidence=0.0,
        sample_count=None,
        cached_at=now,
        expires_at=now + timedelta(days=30),
    )


@pytest.mark.asyncio
async def test_exact_match_short_circuits(orchestrator, memory_store, semantic, web):
    """Test an exact hit has confidence 1.0 and skips the paid tiers."""
    memory_store.add_product("חלב", "6.90", 4)
    memory_store.add_product("חלב 3%", "7.20")

    result = await orchestrator.resolve("  חלב ")

    assert result.resolved_key == "חלב"
    assert result.confidence == 1.0
    assert result.source == ResolveSource.EXACT
    assert result.avg_price_ils == Decimal("6.90")
    assert result.sample_count == 4
    semantic.match_via_language_model.assert_not_called()
    web.fetch_from_web.assert_not_called()
    assert memory_store.cache["חלב"].canonical_key == "חלב"


@pytest.mark.asyncio
async def test_positive_cache_hit(orchestrator, memory_store):
    """Test a second resolution is served from the cache."""
    memory_store.add_product("חלב")

    await orchestrator.resolve("חלב")
    result = await orchestrator.resolve("חלב")

    assert result.source == ResolveSource.CACHE
    assert result.cached
    assert result.resolved_key == "חלב"
    assert memory_store.calls["list_canonical_products"] == 1


@pytest.mark.asyncio
async def test_fuzzy_scenario_prefers_shorter_key(orchestrator, memory_store, semantic):
    """Test "קוטג׳ 5%" resolves to the plain cottage cheese key."""
    for key in ["קוטג'", "קוטג' 9%", "גבינה לבנה"]:
        memory_store.add_product(key)

    result = await orchestrator.resolve("קוטג׳ 5%")

    assert result.resolved_key == "קוטג'"
    assert result.source == ResolveSource.PARTIAL
    assert result.confidence == 0.8
    semantic.match_via_language_model.assert_not_called()
    assert memory_store.cache["קוטג 5%"].canonical_key == "קוטג'"


@pytest.mark.asyncio
async def test_stale_negative_is_revalidated(orchestrator, memory_store, semantic, web):
    """Test a cached negative yields to a product imported later."""
    memory_store.cache["קוטג"] = _negative("קוטג")
    memory_store.add_product("קוטג'", "5.50")

    result = await orchestrator.resolve("קוטג׳")

    assert result.resolved_key == "קוטג'"
    assert result.source == ResolveSource.EXACT
    assert result.confidence == 1.0
    assert memory_store.cache["קוטג"].canonical_key == "קוטג'"
    semantic.match_via_language_model.assert_not_called()
    web.fetch_from_web.assert_not_called()


@pytest.mark.asyncio
async def test_confirmed_negative_skips_paid_tiers(orchestrator, memory_store, semantic, web):
    """Test a negative that survives the recheck does not re-run semantic or web."""
    memory_store.cache["חלב קוקוס"] = _negative("חלב קוקוס")
    memory_store.add_product("במבה")

    result = await orchestrator.resolve("חלב קוקוס")

    assert result.resolved_key is None
    assert result.source == ResolveSource.FALLBACK
    assert result.cached
    semantic.match_via_language_model.assert_not_called()
    web.fetch_from_web.assert_not_called()


@pytest.mark.asyncio
async def test_retry_reruns_paid_tiers(orchestrator, memory_store, semantic, web):
    """Test an explicit retry ignores the cached negative."""
    memory_store.cache["חלב קוקוס"] = _negative("חלב קוקוס")
    memory_store.add_product("במבה")

    await orchestrator.resolve("חלב קוקוס", retry=True)

    semantic.match_via_language_model.assert_awaited_once()
    web.fetch_from_web.assert_awaited_once()
    assert memory_store.calls["get_cache_entry"] == 0


@pytest.mark.asyncio
async def test_generic_key_is_not_substituted(orchestrator, memory_store, semantic, web):
    """Test "חלב קוקוס" does not resolve to "חלב" when the model is unsure."""
    memory_store.add_product("חלב")
    semantic.match_via_language_model.return_value = SemanticMatch("חלב", 0.3)

    result = await orchestrator.resolve("חלב קוקוס")

    assert result.resolved_key is None
    assert result.source == ResolveSource.FALLBACK
    semantic.match_via_language_model.assert_awaited_once()
    web.fetch_from_web.assert_awaited_once()
    assert memory_store.cache["חלב קוקוס"].is_negative


@pytest.mark.asyncio
async def test_semantic_match_above_floor(orchestrator, memory_store, semantic, web):
    """Test a confident semantic match is accepted with its price."""
    memory_store.add_product("חלב", "6.90", 3)
    semantic.match_via_language_model.return_value = SemanticMatch("חלב", 0.7)

    result = await orchestrator.resolve("חלב טרי תנובה")

    assert result.resolved_key == "חלב"
    assert result.source == ResolveSource.AI
    assert result.confidence == 0.7
    assert result.avg_price_ils == Decimal("6.90")
    web.fetch_from_web.assert_not_called()


@pytest.mark.asyncio
async def test_semantic_candidates_put_fuzzy_ranked_first(orchestrator, memory_store, semantic):
    """Test the candidate list is bounded and led by fuzzy-ranked keys."""
    for i in range(200):
        memory_store.add_product(f"מוצר {i}")
    memory_store.add_product("חלב")
    orchestrator.semantic_max_candidates = 150

    await orchestrator.resolve("חלב סויה")

    candidates = semantic.match_via_language_model.call_args.args[1]
    assert len(candidates) == 150
    assert candidates[0] == "חלב"


@pytest.mark.asyncio
async def test_web_tier_result(orchestrator, memory_store, semantic, web):
    """Test a web price is returned when the catalog has nothing."""
    memory_store.add_product("במבה")
    web.fetch_from_web.side_effect = None
    web.fetch_from_web.return_value = WebPriceResult(
        product_name="סירופ מייפל",
        found=True,
        canonical_name="סירופ מייפל",
        avg_price=Decimal("34.90"),
        confidence=0.75,
        sample_count=2,
    )

    result = await orchestrator.resolve("סירופ מייפל")

    assert result.resolved_key == "סירופ מייפל"
    assert result.source == ResolveSource.WEBSCRAPE
    assert result.avg_price_ils == Decimal("34.90")
    assert web.fetch_from_web.call_args.kwargs["normalized_query"] == "סירופ מייפל"
    # The fetcher owns the positive cache write
    assert "סירופ מייפל" not in memory_store.cache


@pytest.mark.asyncio
async def test_empty_catalog_goes_to_web(orchestrator, semantic, web):
    """Test an empty catalog skips semantic matching but still tries the web."""
    result = await orchestrator.resolve("חלב")

    assert result.source == ResolveSource.FALLBACK
    assert result.avg_price_ils is None
    semantic.match_via_language_model.assert_not_called()
    web.fetch_from_web.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_catalog_without_web(orchestrator, web):
    """Test the web tier can be skipped for an empty catalog."""
    orchestrator.web_on_empty_catalog = False

    result = await orchestrator.resolve("חלב")

    assert result.source == ResolveSource.FALLBACK
    web.fetch_from_web.assert_not_called()


@pytest.mark.asyncio
async def test_cache_write_failure_still_returns_result(orchestrator, memory_store):
    """Test a failing cache write does not lose the resolution."""
    memory_store.add_product("חלב", "6.90")
    memory_store.fail_writes = True

    result = await orchestrator.resolve("חלב")

    assert result.resolved_key == "חלב"
    assert result.avg_price_ils == Decimal("6.90")


@pytest.mark.asyncio
async def test_store_read_failure_is_fallback(orchestrator, memory_store):
    """Test an unreachable store yields a fallback result, not an exception."""
    memory_store.fail_reads = True

    result = await orchestrator.resolve("חלב")

    assert result.source == ResolveSource.FALLBACK
    assert result.resolved_key is None


@pytest.mark.asyncio
async def test_malformed_semantic_response_cascades_to_web(memory_store, web):
    """Test a broken tool call from the gateway falls through to the web tier."""
    memory_store.add_product("במבה")
    service = LLMService()
    service._client = MagicMock()
    message = SimpleNamespace(content=None, tool_calls=[SimpleNamespace(function=None)])
    service._client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=None)
    )
    orchestrator = ResolutionOrchestrator(
        memory_store, semantic_matcher=SemanticMatcher(llm=service), web_fetcher=web
    )
    orchestrator.semantic_enabled = True
    orchestrator.web_enabled = True

    with patch("pricematch.ai.llm_service.settings.llm_use_tool_calls", True):
        result = await orchestrator.resolve("חלב קוקוס")

    assert result.source == ResolveSource.FALLBACK
    service._client.chat.completions.create.assert_awaited_once()
    web.fetch_from_web.assert_awaited_once()
    assert memory_store.cache["חלב קוקוס"].is_negative


@pytest.mark.asyncio
async def test_crashing_tier_is_fallback(orchestrator, memory_store, web):
    """Test an exception escaping a tier never propagates out of resolve."""
    memory_store.add_product("במבה")
    web.fetch_from_web.side_effect = RuntimeError("boom")

    result = await orchestrator.resolve("חלב קוקוס")

    assert result.source == ResolveSource.FALLBACK
    assert result.resolved_key is None


@pytest.mark.asyncio
async def test_blank_query(orchestrator, memory_store):
    """Test a blank query resolves to nothing without touching the store."""
    result = await orchestrator.resolve("   ")

    assert result.source == ResolveSource.FALLBACK
    assert sum(memory_store.calls.values()) == 0


def test_result_to_dict():
    """Test the public result shape."""
    from pricematch.resolve.results import ResolutionResult

    result = ResolutionResult("חלב", "חלב", 1.0, ResolveSource.EXACT, Decimal("6.90"), 4)
    assert result.to_dict() == {
        "query": "חלב",
        "resolvedKey": "חלב",
        "confidence": 1.0,
        "source": "exact",
        "avgPrice": 6.9,
        "sampleCount": 4,
        "cached": False,
    }
