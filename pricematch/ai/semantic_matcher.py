"""Language-model matching of a query against a bounded list of canonical keys."""

import logging
from typing import Optional, Sequence

from pricematch import metrics
from pricematch.ai.json_parsing import parse_model
from pricematch.ai.llm_service import LLMService, LLMServiceError, llm_service
from pricematch.ai.prompts import (
    SEMANTIC_MATCH_SCHEMA,
    SEMANTIC_MATCH_SYSTEM_PROMPT,
    SemanticMatchPrompt,
    SemanticMatchResponse,
)
from pricematch.config import settings
from pricematch.resolve.normalizer import normalize_text
from pricematch.resolve.results import SemanticMatch

logger = logging.getLogger(__name__)

TIER = "semantic"


class SemanticMatcher:
    """
    Asks the LLM to pick the canonical key that names the same product.

    Every failure (transport, rate limit, quota, malformed answer, a key that
    is not in the candidate list) yields None. The acceptance floor is
    applied by the caller.
    """

    def __init__(self, llm: Optional[LLMService] = None, max_candidates: Optional[int] = None):
        self.llm = llm or llm_service
        self.max_candidates = max_candidates or settings.semantic_max_candidates

    async def match_via_language_model(
        self,
        query: str,
        candidate_keys: Sequence[str],
    ) -> Optional[SemanticMatch]:
        """
        Match ``query`` to one of ``candidate_keys``.

        :param query: The user's text (not normalized, the model reads it as typed)
        :param candidate_keys: Canonical keys; only the first ``max_candidates`` are sent
        :return: Matched stored key with model-reported confidence, or None
        """
        candidates = list(dict.fromkeys(key for key in candidate_keys if key))[:self.max_candidates]
        if not query.strip() or not candidates:
            return None

        prompt = SemanticMatchPrompt(query=query.strip(), candidate_keys=candidates)
        try:
            payload = await self.llm.call_llm_structured(
                prompt=prompt.to_prompt(),
                response_schema=SEMANTIC_MATCH_SCHEMA,
                system_prompt=SEMANTIC_MATCH_SYSTEM_PROMPT,
                tool_name="match_product",
            )
        except LLMServiceError as e:
            logger.warning(f"Semantic match failed for '{query}' ({e.error_type}): {e}")
            metrics.record_tier_error(TIER, e.error_type)
            return None
        except Exception as e:
            logger.error(f"Semantic match crashed for '{query}': {e}", exc_info=True)
            metrics.record_tier_error(TIER, "unexpected")
            return None

        response = parse_model(payload, SemanticMatchResponse)
        if response is None:
            metrics.record_tier_error(TIER, "malformed")
            return None

        if response.canonical_key is None:
            logger.debug(f"Semantic match: no candidate for '{query}'")
            return None

        # Answer must name a candidate; compare normalized, return the stored form
        by_normalized = {normalize_text(key): key for key in reversed(candidates)}
        matched = by_normalized.get(normalize_text(response.canonical_key))
        if matched is None:
            logger.warning(
                f"Semantic match returned key outside candidate list: '{response.canonical_key}'"
            )
            metrics.record_tier_error(TIER, "malformed")
            return None

        logger.info(
            f"Semantic match: '{query}' -> '{matched}' (confidence: {response.confidence:.2f})"
        )
        return SemanticMatch(canonical_key=matched, confidence=response.confidence)
