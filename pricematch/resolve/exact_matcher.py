"""Exact matching against known canonical keys."""

from typing import Iterable, Optional

from pricematch.resolve.normalizer import normalize_text

EXACT_CONFIDENCE = 1.0


class ExactMatcher:
    """
    Case-insensitive exact lookup of a normalized query.

    Canonical keys are normalized with the same function as queries, so a
    stored "קוטג'" matches a typed "קוטג׳". A hit always carries confidence 1.0.
    """

    def find_exact(self, normalized_query: str, canonical_keys: Iterable[str]) -> Optional[str]:
        """
        Return the first canonical key equal to the query after normalization.

        :param normalized_query: Query already passed through ``normalize_text``
        :param canonical_keys: Known canonical keys, as stored
        :return: The stored key (not its normalized form) or None
        """
        if not normalized_query:
            return None

        for key in canonical_keys:
            if normalize_text(key) == normalized_query:
                return key
        return None
