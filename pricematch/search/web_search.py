"""Web search client for a Firecrawl-compatible search endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from pricematch.config import settings

logger = logging.getLogger(__name__)

SEARCH_PATH = "/v1/search"
RESULT_SEPARATOR = "\n\n---\n\n"

# Chains named in the search query to bias results towards grocery listings
QUERY_CHAINS = ("שופרסל", "רמי לוי")

# Transport exceptions treated as "service unavailable"
UNAVAILABLE_EXC = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.NetworkError,
)


class WebSearchError(RuntimeError):
    """Base error for web search calls."""

    error_type = "transport"


class WebSearchRateLimitedError(WebSearchError):
    """Raised when the search service answers 429."""

    error_type = "rate_limited"

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Web search rate limited")
        self.retry_after = retry_after


class WebSearchQuotaExceededError(WebSearchError):
    """Raised when search credits are exhausted (402)."""

    error_type = "quota_exceeded"


class WebSearchUnavailableError(WebSearchError):
    """Raised on timeouts, connection failures and 5xx responses."""

    error_type = "transport"


class WebSearchConfigurationError(WebSearchError):
    """Raised when no API key is configured or it is rejected (401/403)."""

    error_type = "configuration"


@dataclass(frozen=True)
class WebSearchResult:
    """One search hit with the best available body text."""

    url: str
    title: str = ""
    content: str = ""

    @classmethod
    def from_payload(cls, item: dict) -> "WebSearchResult":
        return cls(
            url=str(item.get("url") or ""),
            title=str(item.get("title") or ""),
            content=str(item.get("markdown") or item.get("description") or ""),
        )


def build_search_query(product_name: str) -> str:
    """Localized price query: price + product + supermarket + major chains."""
    return f"מחיר {product_name.strip()} סופרמרקט ישראל {' '.join(QUERY_CHAINS)}"


def combine_results(
    results: Sequence[WebSearchResult],
    max_results: Optional[int] = None,
    max_chars: Optional[int] = None,
) -> str:
    """
    Concatenate the top result bodies for the extraction prompt.

    Each block is ``מקור: <url>`` followed by the body; blocks are separated
    by ``---`` and the combined text is cut at ``max_chars``.
    """
    max_results = max_results or settings.web_search_content_results
    max_chars = max_chars or settings.web_search_content_max_chars

    blocks = [
        f"מקור: {result.url}\n{result.content}"
        for result in results[:max_results]
        if result.content
    ]
    return RESULT_SEPARATOR.join(blocks)[:max_chars]


class WebSearchClient:
    """
    Async client for the search endpoint.

    Maps HTTP failures onto distinct errors so callers can tell a systemic
    problem (quota, rate limit, bad key) from a per-request one.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.web_search_api_key
        self.base_url = (base_url or settings.web_search_base_url).rstrip("/")
        self.timeout = timeout or settings.web_search_timeout_seconds
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
            )
        return self._client

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        lang: Optional[str] = None,
        country: Optional[str] = None,
    ) -> list[WebSearchResult]:
        """
        Run a search and return results with markdown bodies.

        Raises:
            WebSearchConfigurationError: missing or rejected API key
            WebSearchRateLimitedError: 429
            WebSearchQuotaExceededError: 402
            WebSearchUnavailableError: timeouts, connection errors, 5xx
            WebSearchError: any other non-2xx status or an unreadable body
        """
        if not self.api_key:
            raise WebSearchConfigurationError("Web search API key not configured")

        payload = {
            "query": query,
            "limit": limit or settings.web_search_result_limit,
            "lang": lang or settings.web_search_lang,
            "country": country or settings.web_search_country,
            "scrapeOptions": {"formats": ["markdown"]},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        client = await self._get_client()
        try:
            resp = await client.post(f"{self.base_url}{SEARCH_PATH}", json=payload, headers=headers)
        except UNAVAILABLE_EXC as e:
            raise WebSearchUnavailableError(f"Web search unreachable: {e}") from e

        sc = resp.status_code
        if sc == 429:
            retry_after = resp.headers.get("Retry-After")
            retry_seconds = None
            if retry_after:
                try:
                    retry_seconds = int(retry_after)
                except (ValueError, TypeError):
                    pass
            raise WebSearchRateLimitedError(retry_after=retry_seconds)
        if sc == 402:
            raise WebSearchQuotaExceededError("Web search credits exhausted (402)")
        if sc in (401, 403):
            raise WebSearchConfigurationError(f"Web search rejected API key ({sc})")
        if 500 <= sc < 600:
            raise WebSearchUnavailableError(f"Web search server error {sc}")
        if not 200 <= sc < 300:
            raise WebSearchError(f"Web search failed with status {sc}")

        try:
            body = resp.json()
        except ValueError as e:
            raise WebSearchError(f"Web search returned invalid JSON: {e}") from e

        items = body.get("data") if isinstance(body, dict) else None
        if not isinstance(items, list):
            logger.debug(f"Web search returned no data list for '{query}'")
            return []

        results = [WebSearchResult.from_payload(item) for item in items if isinstance(item, dict)]
        logger.debug(f"Web search '{query}' returned {len(results)} results")
        return results

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global web search client instance
web_search_client = WebSearchClient()
