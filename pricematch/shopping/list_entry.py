"""Shopping list entries built from resolution results."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from pricematch.resolve.results import ResolutionResult, ResolveSource


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ShoppingListEntry:
    """
    One line of a shopping list.

    ``user_text`` is for display only. Price lookups join on
    ``canonical_key``, which is never empty.
    """

    user_text: str
    canonical_key: str
    resolve_confidence: float
    resolve_source: ResolveSource
    quantity: int = 1
    is_bought: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userText": self.user_text,
            "canonicalKey": self.canonical_key,
            "resolveConfidence": self.resolve_confidence,
            "resolveSource": self.resolve_source.value,
            "quantity": self.quantity,
            "isBought": self.is_bought,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def build_list_entry(
    user_text: str,
    resolution: ResolutionResult,
    quantity: int = 1,
) -> ShoppingListEntry:
    """
    Build a list entry from the user's text and its resolution.

    An unresolved entry keys on the trimmed user text so it still joins
    (to nothing) in price comparisons.
    """
    user_text = user_text.strip()
    if not user_text:
        raise ValueError("user_text must not be empty")

    return ShoppingListEntry(
        user_text=user_text,
        canonical_key=(resolution.resolved_key or "").strip() or user_text,
        resolve_confidence=resolution.confidence,
        resolve_source=resolution.source,
        quantity=max(1, quantity),
    )
