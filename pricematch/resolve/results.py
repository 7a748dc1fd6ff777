"""Result types shared by the resolution tiers."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ResolveSource(str, Enum):
    """Terminal tier that produced a resolution."""

    EXACT = "exact"
    CACHE = "cache"
    PARTIAL = "partial"
    WORDS = "words"
    AI = "ai"
    WEBSCRAPE = "webscrape"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FuzzyMatch:
    """A scored candidate from the fuzzy tier."""

    canonical_key: str
    score: float
    confidence: float
    source: ResolveSource


@dataclass(frozen=True)
class SemanticMatch:
    """Canonical key chosen by the language model."""

    canonical_key: str
    confidence: float


@dataclass
class WebPriceResult:
    """Outcome of a web price lookup. ``found=False`` is a normal outcome."""

    product_name: str
    found: bool
    canonical_name: Optional[str] = None
    avg_price: Optional[Decimal] = None
    chain_prices: Dict[str, Optional[Decimal]] = field(default_factory=dict)
    category: Optional[str] = None
    confidence: float = 0.0
    sample_count: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def not_found(cls, product_name: str, message: str) -> "WebPriceResult":
        return cls(product_name=product_name, found=False, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productName": self.product_name,
            "found": self.found,
            "canonicalName": self.canonical_name,
            "avgPrice": float(self.avg_price) if self.avg_price is not None else None,
            "chainPrices": {
                chain: float(price) if price is not None else None
                for chain, price in self.chain_prices.items()
            },
            "category": self.category,
            "confidence": self.confidence,
            "message": self.message,
        }


@dataclass
class ResolutionResult:
    """
    What the rest of the application receives for a free-text product name.

    ``resolved_key is None`` means nothing matched; ``avg_price_ils is None``
    means no known price. Neither is an error.
    """

    query: str
    resolved_key: Optional[str]
    confidence: float
    source: ResolveSource
    avg_price_ils: Optional[Decimal] = None
    sample_count: Optional[int] = None
    cached: bool = False

    @property
    def resolved(self) -> bool:
        return self.resolved_key is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "resolvedKey": self.resolved_key,
            "confidence": self.confidence,
            "source": self.source.value,
            "avgPrice": float(self.avg_price_ils) if self.avg_price_ils is not None else None,
            "sampleCount": self.sample_count,
            "cached": self.cached,
        }
