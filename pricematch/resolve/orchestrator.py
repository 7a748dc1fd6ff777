"""Tiered product-name resolution.

normalize -> cache -> exact -> fuzzy -> semantic (LLM) -> web -> cache write

Each tier runs only when the previous one produced nothing usable. A cached
negative re-runs the exact and fuzzy tiers (new products may have been
imported since) but not the paid tiers, which run again only on an
explicit retry.
"""

import logging
import time
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from pricematch import metrics
from pricematch.ai.semantic_matcher import SemanticMatcher
from pricematch.config import settings
from pricematch.db.records import CanonicalProduct, ResolutionCacheEntry
from pricematch.db.store import PriceStore
from pricematch.logging_config import get_logger
from pricematch.resolve.exact_matcher import EXACT_CONFIDENCE, ExactMatcher
from pricematch.resolve.fuzzy_scorer import FuzzyScorer, ScoredCandidate
from pricematch.resolve.normalizer import normalize_text
from pricematch.resolve.result_cache import ResultCache
from pricematch.resolve.results import ResolutionResult, ResolveSource
from pricematch.resolve.web_price_fetcher import WebPriceFetcher

logger = logging.getLogger(__name__)


class ResolutionOrchestrator:
    """
    Resolves free-text product names to canonical keys.

    ``resolve`` never raises: tier failures fall through to the next tier,
    and anything unexpected ends in a ``fallback`` result.
    """

    def __init__(
        self,
        store: PriceStore,
        cache: Optional[ResultCache] = None,
        exact_matcher: Optional[ExactMatcher] = None,
        fuzzy_scorer: Optional[FuzzyScorer] = None,
        semantic_matcher: Optional[SemanticMatcher] = None,
        web_fetcher: Optional[WebPriceFetcher] = None,
    ):
        self.store = store
        self.cache = cache or ResultCache(store)
        self.exact_matcher = exact_matcher or ExactMatcher()
        self.fuzzy_scorer = fuzzy_scorer or FuzzyScorer()
        self.semantic_matcher = semantic_matcher or SemanticMatcher()
        self.web_fetcher = web_fetcher or WebPriceFetcher(store, cache=self.cache)

        self.fuzzy_floor = settings.fuzzy_acceptance_floor
        self.semantic_floor = settings.semantic_acceptance_floor
        self.semantic_max_candidates = settings.semantic_max_candidates
        self.catalog_limit = settings.fuzzy_max_candidates
        self.semantic_enabled = settings.semantic_matching_enabled
        self.web_enabled = settings.web_fetch_enabled
        self.web_on_empty_catalog = settings.web_fetch_on_empty_catalog

    async def resolve(self, query: str, retry: bool = False) -> ResolutionResult:
        """
        Resolve ``query`` to a canonical key.

        Args:
            query: Text as the user typed it
            retry: Ignore any cached outcome and run every tier again,
                including the semantic and web tiers for a cached negative

        Returns:
            ResolutionResult; ``resolved_key`` is None when nothing matched
        """
        start = time.monotonic()
        query = (query or "").strip()
        normalized = normalize_text(query)

        if not normalized:
            result = self._fallback(query)
        else:
            try:
                result = await self._resolve(query, normalized, retry)
            except Exception as e:
                logger.error(f"Resolution of '{query}' failed: {e}", exc_info=True)
                metrics.record_tier_error("orchestrator", "unexpected")
                result = self._fallback(query)

        metrics.record_resolution(result.source.value, time.monotonic() - start)
        return result

    async def _resolve(self, query: str, normalized: str, retry: bool) -> ResolutionResult:
        log = get_logger(__name__, query=normalized, tier="orchestrator")

        cached = None if retry else await self._read_cache(normalized, log)
        if cached is not None and not cached.is_negative:
            log.debug(f"Cache hit: '{normalized}' -> '{cached.canonical_key}'")
            return ResolutionResult(
                query=query,
                resolved_key=cached.canonical_key,
                confidence=cached.confidence,
                source=ResolveSource.CACHE,
                avg_price_ils=cached.avg_price_ils,
                sample_count=cached.sample_count,
                cached=True,
            )

        products = await self.store.list_canonical_products(limit=self.catalog_limit)
        by_key: Dict[str, CanonicalProduct] = {}
        for product in products:
            by_key.setdefault(product.canonical_key, product)

        # Exact
        exact_key = self.exact_matcher.find_exact(normalized, by_key)
        if exact_key is not None:
            return await self._accept(
                query, normalized, by_key[exact_key], EXACT_CONFIDENCE, ResolveSource.EXACT, log
            )

        # Fuzzy
        ranked = self.fuzzy_scorer.score_and_rank(normalized, products)
        if ranked:
            match = self.fuzzy_scorer.to_match(normalized, ranked[0])
            if match.confidence >= self.fuzzy_floor:
                return await self._accept(
                    query, normalized, by_key[match.canonical_key], match.confidence, match.source, log
                )
            log.debug(
                f"Fuzzy candidate '{match.canonical_key}' below floor "
                f"({match.confidence:.2f} < {self.fuzzy_floor})"
            )

        if cached is not None:
            # Stale negative survived the deterministic recheck
            log.debug(f"Cached negative confirmed for '{normalized}'")
            return ResolutionResult(
                query=query,
                resolved_key=None,
                confidence=cached.confidence,
                source=ResolveSource.FALLBACK,
                cached=True,
            )

        # Semantic
        if products and self.semantic_enabled:
            candidates = self._semantic_candidates(products, ranked)
            semantic = await self.semantic_matcher.match_via_language_model(query, candidates)
            if semantic is not None and semantic.confidence >= self.semantic_floor:
                product = by_key.get(semantic.canonical_key)
                if product is None:
                    product = await self.store.get_canonical_product(semantic.canonical_key)
                if product is not None:
                    return await self._accept(
                        query, normalized, product, semantic.confidence, ResolveSource.AI, log
                    )
                log.warning(f"Semantic match '{semantic.canonical_key}' missing from store")
            elif semantic is not None:
                log.info(
                    f"Semantic match '{semantic.canonical_key}' below floor "
                    f"({semantic.confidence:.2f} < {self.semantic_floor})"
                )

        # Web
        if self.web_enabled and (products or self.web_on_empty_catalog):
            web = await self.web_fetcher.fetch_from_web(query, normalized_query=normalized)
            if web.found:
                # The fetcher has already written the cache entry
                return ResolutionResult(
                    query=query,
                    resolved_key=web.canonical_name,
                    confidence=web.confidence,
                    source=ResolveSource.WEBSCRAPE,
                    avg_price_ils=web.avg_price,
                    sample_count=web.sample_count,
                )

        log.info(f"No match for '{query}'")
        await self._write_cache(normalized, None, None, 0.0, None, log)
        return self._fallback(query)

    def _semantic_candidates(
        self,
        products: List[CanonicalProduct],
        ranked: List[ScoredCandidate],
    ) -> List[str]:
        """Fuzzy-ranked keys first, then the rest of the catalog, capped."""
        ordered = dict.fromkeys(item.canonical_key for item in ranked)
        for product in products:
            if len(ordered) >= self.semantic_max_candidates:
                break
            ordered.setdefault(product.canonical_key)
        return list(ordered)[:self.semantic_max_candidates]

    async def _read_cache(self, normalized: str, log) -> Optional[ResolutionCacheEntry]:
        try:
            return await self.cache.get(normalized)
        except SQLAlchemyError as e:
            log.warning(f"Cache read failed: {e}")
            metrics.record_tier_error("cache", "store")
            return None

    async def _write_cache(
        self,
        normalized: str,
        canonical_key: Optional[str],
        avg_price: Optional[Decimal],
        confidence: float,
        sample_count: Optional[int],
        log,
    ) -> None:
        try:
            await self.cache.put(normalized, canonical_key, avg_price, confidence, sample_count)
        except SQLAlchemyError as e:
            log.warning(f"Cache write failed: {e}")
            metrics.cache_write_errors_total.inc()

    async def _accept(
        self,
        query: str,
        normalized: str,
        product: CanonicalProduct,
        confidence: float,
        source: ResolveSource,
        log,
    ) -> ResolutionResult:
        log.info(
            f"Resolved '{query}' -> '{product.canonical_key}' "
            f"(source: {source.value}, confidence: {confidence:.2f})"
        )
        await self._write_cache(
            normalized,
            product.canonical_key,
            product.avg_price_ils,
            confidence,
            product.sample_count,
            log,
        )
        return ResolutionResult(
            query=query,
            resolved_key=product.canonical_key,
            confidence=confidence,
            source=source,
            avg_price_ils=product.avg_price_ils,
            sample_count=product.sample_count,
        )

    @staticmethod
    def _fallback(query: str) -> ResolutionResult:
        return ResolutionResult(
            query=query,
            resolved_key=None,
            confidence=0.0,
            source=ResolveSource.FALLBACK,
        )
