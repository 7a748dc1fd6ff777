"""Containment and word-overlap scoring of canonical keys against a query.

Scoring rules, first applicable wins per candidate:

1. key == query                       -> 1000
2. key contains query                 -> 100 + 50 / len(key)
3. query contains key                 -> 80 + 40 / len(key)
4. partial word overlap               -> overlapping_query_words / query_words * 60
5. otherwise                          -> 0 (excluded)

Shorter keys win inside tiers 2 and 3: a generic key ("חלב") is a safer
default than an accidental specific one ("חלב דל לקטוז"). Equal scores keep
the candidates' original order.

This is a full scan, O(candidates x query words). Callers bound the
candidate set (``settings.fuzzy_max_candidates``).
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Union

from pricematch.db.records import CanonicalProduct
from pricematch.resolve.normalizer import is_variant_token, normalize_text, split_words
from pricematch.resolve.results import FuzzyMatch, ResolveSource

logger = logging.getLogger(__name__)

EXACT_SCORE = 1000.0
KEY_CONTAINS_QUERY_BASE = 100.0
KEY_CONTAINS_QUERY_BONUS = 50.0
QUERY_CONTAINS_KEY_BASE = 80.0
QUERY_CONTAINS_KEY_BONUS = 40.0
WORD_OVERLAP_WEIGHT = 60.0

# Confidence reported for each rule
EXACT_CONFIDENCE = 1.0
CONTAINMENT_CONFIDENCE = 0.8
# Query has extra words that are not sizes/percentages: possibly another product family
QUALIFIED_CONTAINMENT_CONFIDENCE = 0.5
WORD_OVERLAP_CONFIDENCE = 0.6


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate key with its score and the rule that produced it."""

    canonical_key: str
    score: float
    rule: str  # exact, key_contains_query, query_contains_key, words


Candidate = Union[CanonicalProduct, str]


def _key_of(candidate: Candidate) -> str:
    return candidate.canonical_key if isinstance(candidate, CanonicalProduct) else candidate


class FuzzyScorer:
    """Scores and ranks canonical keys for a normalized query."""

    def score(self, normalized_query: str, canonical_key: str) -> ScoredCandidate:
        """Score a single canonical key."""
        key = normalize_text(canonical_key)

        if not key or not normalized_query:
            return ScoredCandidate(canonical_key, 0.0, "none")

        if key == normalized_query:
            return ScoredCandidate(canonical_key, EXACT_SCORE, "exact")

        if normalized_query in key:
            score = KEY_CONTAINS_QUERY_BASE + KEY_CONTAINS_QUERY_BONUS / len(key)
            return ScoredCandidate(canonical_key, score, "key_contains_query")

        if key in normalized_query:
            score = QUERY_CONTAINS_KEY_BASE + QUERY_CONTAINS_KEY_BONUS / len(key)
            return ScoredCandidate(canonical_key, score, "query_contains_key")

        query_words = split_words(normalized_query)
        key_words = split_words(key)
        overlapping = [
            qw for qw in query_words
            if any(kw in qw or qw in kw for kw in key_words)
        ]
        if overlapping:
            score = len(overlapping) / len(query_words) * WORD_OVERLAP_WEIGHT
            return ScoredCandidate(canonical_key, score, "words")

        return ScoredCandidate(canonical_key, 0.0, "none")

    def score_and_rank(
        self,
        normalized_query: str,
        candidates: Sequence[Candidate],
    ) -> List[ScoredCandidate]:
        """
        Score every candidate and return those above zero, best first.

        :param normalized_query: Query already passed through ``normalize_text``
        :param candidates: Canonical products or bare canonical keys
        :return: Positive-scoring candidates sorted by descending score (stable)
        """
        scored = [self.score(normalized_query, _key_of(candidate)) for candidate in candidates]
        ranked = [item for item in scored if item.score > 0]
        ranked.sort(key=lambda item: item.score, reverse=True)
        return ranked

    def confidence_for(self, normalized_query: str, scored: ScoredCandidate) -> float:
        """
        Map a scored candidate to a [0, 1] confidence.

        A query that contains the key plus extra non-size words ("חלב קוקוס"
        vs "חלב") may name a different product family, so it stays below
        the acceptance floor and escalates to the semantic tier.
        """
        if scored.rule == "exact":
            return EXACT_CONFIDENCE
        if scored.rule == "key_contains_query":
            return CONTAINMENT_CONFIDENCE
        if scored.rule == "query_contains_key":
            key_words = set(split_words(normalize_text(scored.canonical_key)))
            leftover = [
                word for word in split_words(normalized_query)
                if word not in key_words
            ]
            if all(is_variant_token(word) for word in leftover):
                return CONTAINMENT_CONFIDENCE
            return QUALIFIED_CONTAINMENT_CONFIDENCE
        if scored.rule == "words":
            return round(scored.score / WORD_OVERLAP_WEIGHT * WORD_OVERLAP_CONFIDENCE, 4)
        return 0.0

    def to_match(self, normalized_query: str, top: ScoredCandidate) -> FuzzyMatch:
        """Attach confidence and terminal source to a scored candidate."""
        source = {
            "exact": ResolveSource.EXACT,
            "words": ResolveSource.WORDS,
        }.get(top.rule, ResolveSource.PARTIAL)
        confidence = self.confidence_for(normalized_query, top)

        logger.debug(
            f"Fuzzy match: '{normalized_query}' -> '{top.canonical_key}' "
            f"(score: {top.score:.2f}, rule: {top.rule}, confidence: {confidence})"
        )
        return FuzzyMatch(
            canonical_key=top.canonical_key,
            score=top.score,
            confidence=confidence,
            source=source,
        )
