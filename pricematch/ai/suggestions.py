"""LLM suggestions of items the user probably forgot to add to a list."""

import logging
from typing import List, Optional, Sequence

from pricematch import metrics
from pricematch.ai.json_parsing import parse_model
from pricematch.ai.llm_service import LLMService, LLMServiceError, llm_service
from pricematch.ai.prompts import (
    SUGGESTION_SCHEMA,
    SUGGESTION_SYSTEM_PROMPT,
    SuggestedItem,
    SuggestionPrompt,
    SuggestionResponse,
)
from pricematch.resolve.normalizer import normalize_text

logger = logging.getLogger(__name__)

TIER = "suggestions"
HISTORY_LIMIT = 30
MAX_SUGGESTIONS = 5


class ItemSuggester:
    """Suggests complementary items from the current list and purchase history."""

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or llm_service

    async def suggest_items(
        self,
        current_items: Sequence[str],
        history: Sequence[str] = (),
    ) -> List[SuggestedItem]:
        """
        Suggest up to five items missing from ``current_items``.

        Any failure yields an empty list; suggestions are never worth an error.
        """
        current = [item.strip() for item in current_items if item and item.strip()]
        past = [item.strip() for item in history if item and item.strip()][:HISTORY_LIMIT]

        prompt = SuggestionPrompt(current_items=current, history=past)
        try:
            payload = await self.llm.call_llm_structured(
                prompt=prompt.to_prompt(),
                response_schema=SUGGESTION_SCHEMA,
                system_prompt=SUGGESTION_SYSTEM_PROMPT,
                tool_name="suggest_items",
            )
        except LLMServiceError as e:
            logger.warning(f"Item suggestions failed ({e.error_type}): {e}")
            metrics.record_tier_error(TIER, e.error_type)
            return []
        except Exception as e:
            logger.error(f"Item suggestions crashed: {e}", exc_info=True)
            metrics.record_tier_error(TIER, "unexpected")
            return []

        response = parse_model(payload, SuggestionResponse)
        if response is None:
            metrics.record_tier_error(TIER, "malformed")
            return []

        # The model is told to skip listed items but does not always
        seen = {normalize_text(item) for item in current}
        suggestions = []
        for suggestion in response.suggestions:
            key = normalize_text(suggestion.name)
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(suggestion)

        suggestions = suggestions[:MAX_SUGGESTIONS]
        logger.info(f"Suggested {len(suggestions)} items for a list of {len(current)}")
        return suggestions


item_suggester = ItemSuggester()
