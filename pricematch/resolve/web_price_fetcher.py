"""Web price lookup: search, LLM extraction and persistence of the result."""

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from pricematch import metrics
from pricematch.ai.json_parsing import parse_model
from pricematch.ai.llm_service import LLMService, LLMServiceError, llm_service
from pricematch.ai.prompts import (
    PRICE_EXTRACTION_SCHEMA,
    PRICE_EXTRACTION_SYSTEM_PROMPT,
    PriceExtractionPrompt,
    PriceExtractionResponse,
)
from pricematch.config import settings
from pricematch.db.store import PriceStore, to_price
from pricematch.logging_config import get_logger
from pricematch.resolve.normalizer import normalize_text
from pricematch.resolve.result_cache import ResultCache
from pricematch.resolve.results import WebPriceResult
from pricematch.search.web_search import (
    WebSearchClient,
    WebSearchError,
    build_search_query,
    combine_results,
    web_search_client,
)

logger = logging.getLogger(__name__)

TIER = "web"


class WebPriceFetcher:
    """
    Finds a price for a product that the catalog does not know.

    Steps: localized web search, concatenation of the top result bodies,
    LLM extraction into ``PriceExtractionResponse``, then persistence of the
    canonical product, its chain prices and the cache entry for the query.
    Every failure returns ``found=False``.
    """

    def __init__(
        self,
        store: PriceStore,
        llm: Optional[LLMService] = None,
        search_client: Optional[WebSearchClient] = None,
        cache: Optional[ResultCache] = None,
        acceptance_floor: Optional[float] = None,
    ):
        self.store = store
        self.llm = llm or llm_service
        self.search_client = search_client or web_search_client
        self.cache = cache or ResultCache(store)
        self.acceptance_floor = (
            acceptance_floor if acceptance_floor is not None else settings.web_acceptance_floor
        )

    async def fetch_from_web(
        self,
        product_name: str,
        normalized_query: Optional[str] = None,
    ) -> WebPriceResult:
        """
        Look up ``product_name`` on the web.

        :param product_name: The user's text
        :param normalized_query: Cache key to update on success
            (defaults to ``normalize_text(product_name)``)
        :return: Result with ``found`` set; never raises
        """
        product_name = (product_name or "").strip()
        if not product_name:
            return WebPriceResult.not_found(product_name, "Product name is required")

        log = get_logger(__name__, query=normalized_query or normalize_text(product_name), tier="web")
        try:
            return await self._fetch(product_name, normalized_query, log)
        except Exception as e:
            log.error(f"Web price lookup crashed: {e}", exc_info=True)
            metrics.record_tier_error(TIER, "unexpected")
            metrics.record_web_fetch("error")
            return WebPriceResult.not_found(product_name, "Web price lookup failed")

    async def _fetch(self, product_name: str, normalized_query: Optional[str], log) -> WebPriceResult:
        content = await self._search(product_name, log)
        if content is None:
            metrics.record_web_fetch("error")
            return WebPriceResult.not_found(product_name, "Web search failed")
        if not content:
            metrics.record_web_fetch("not_found")
            return WebPriceResult.not_found(product_name, "No search results")

        extraction = await self._extract(product_name, content, log)
        if extraction is None:
            metrics.record_web_fetch("error")
            return WebPriceResult.not_found(product_name, "Price extraction failed")

        if (
            not extraction.found
            or extraction.avg_price is None
            or extraction.confidence < self.acceptance_floor
        ):
            log.info(
                f"No reliable web price (found: {extraction.found}, "
                f"confidence: {extraction.confidence:.2f})"
            )
            metrics.record_web_fetch("not_found")
            return WebPriceResult.not_found(product_name, "No reliable price found")

        canonical_key = extraction.canonical_name or product_name
        chain_prices: Dict[str, Optional[Decimal]] = {
            chain: to_price(price) if price is not None else None
            for chain, price in extraction.chain_prices.items()
        }
        priced = {chain: price for chain, price in chain_prices.items() if price is not None}
        avg_price = to_price(extraction.avg_price)
        sample_count = len(priced) or 1

        try:
            product = await self.store.record_web_price(
                canonical_key,
                avg_price,
                extraction.category,
                priced,
            )
            avg_price = product.avg_price_ils
            sample_count = product.sample_count
        except SQLAlchemyError as e:
            log.warning(f"Failed to persist web price for '{canonical_key}': {e}")
            metrics.record_tier_error(TIER, "store")

        cache_key = normalized_query or normalize_text(product_name)
        try:
            await self.cache.put(
                cache_key,
                canonical_key,
                avg_price,
                extraction.confidence,
                sample_count,
            )
        except SQLAlchemyError as e:
            log.warning(f"Failed to cache web price for '{cache_key}': {e}")
            metrics.cache_write_errors_total.inc()

        metrics.record_web_fetch("found")
        log.info(
            f"Web price found: '{canonical_key}' = {avg_price} ILS "
            f"({len(priced)} chains, confidence: {extraction.confidence:.2f})"
        )
        return WebPriceResult(
            product_name=product_name,
            found=True,
            canonical_name=canonical_key,
            avg_price=avg_price,
            chain_prices=chain_prices,
            category=extraction.category,
            confidence=extraction.confidence,
            sample_count=sample_count,
        )

    async def _search(self, product_name: str, log) -> Optional[str]:
        """Combined result bodies, "" when there are none, None on failure."""
        try:
            results = await self.search_client.search(build_search_query(product_name))
        except WebSearchError as e:
            log.warning(f"Web search failed ({e.error_type}): {e}")
            metrics.record_tier_error(TIER, e.error_type)
            return None
        return combine_results(results)

    async def _extract(self, product_name: str, content: str, log) -> Optional[PriceExtractionResponse]:
        prompt = PriceExtractionPrompt(product_name=product_name, search_content=content)
        try:
            payload = await self.llm.call_llm_structured(
                prompt=prompt.to_prompt(),
                response_schema=PRICE_EXTRACTION_SCHEMA,
                system_prompt=PRICE_EXTRACTION_SYSTEM_PROMPT,
                tool_name="extract_price",
            )
        except LLMServiceError as e:
            log.warning(f"Price extraction failed ({e.error_type}): {e}")
            metrics.record_tier_error(TIER, e.error_type)
            return None

        extraction = parse_model(payload, PriceExtractionResponse)
        if extraction is None:
            metrics.record_tier_error(TIER, "malformed")
        return extraction
