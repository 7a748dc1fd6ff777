"""Text normalization for product names and queries.

``normalize_text`` is the single canonicalization applied to both stored
canonical keys and incoming queries before any comparison.
``normalize_product_name`` derives canonical keys from raw chain item names
during price import.
"""

import re
from typing import List

# ASCII quotes, backtick, Hebrew geresh/gershayim and typographic quotes
QUOTE_CHARS = "\"'`׳״‘’“”"
# Hyphen, en dash, em dash, Hebrew maqaf
DASH_CHARS = "-–—־"

_QUOTES_RE = re.compile(f"[{re.escape(QUOTE_CHARS)}]")
_DASHES_RE = re.compile(f"[{re.escape(DASH_CHARS)}]")
_WHITESPACE_RE = re.compile(r"\s+")

# Units as they appear after normalize_text (quotes already stripped)
_UNITS = r"(?:גרם|גר|ג|מל|ליטר|ל|קג|יחידות|יחידה|יח|מג|ml|gr|kg|l|g)"
_VARIANT_TOKEN_RE = re.compile(
    rf"^(?:\d+(?:\.\d+)?%?|\d+(?:\.\d+)?{_UNITS}|{_UNITS}|[x×]\d+|\d+[x×])$",
    re.IGNORECASE,
)

# Raw chain item names still carry quotes (מ"ל, ק"ג, יח')
_IMPORT_SIZE_RE = re.compile(
    r"\d+(?:\.\d+)?\s*(?:גרם|גר|ג|מ\"ל|מל|ליטר|ל|ק\"ג|קג|יח'|יחידות|יחידה|מ\"ג|מג|ml|gr|kg|l|g)",
    re.IGNORECASE,
)
_IMPORT_MULTIPLIER_RE = re.compile(r"\s*[xX×]\s*\d+")
_IMPORT_PERCENT_RE = re.compile(r"\d+%")
_IMPORT_BRACKETS_RE = re.compile(r"[()\[\]{}]")


def normalize_text(text: str) -> str:
    """
    Canonicalize free text for matching.

    Trims, lower-cases, strips quote variants, turns dash variants into
    spaces and collapses whitespace runs. Pure and idempotent.
    """
    if not text:
        return ""
    text = text.strip().lower()
    text = _QUOTES_RE.sub("", text)
    text = _DASHES_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def split_words(normalized: str) -> List[str]:
    """Split normalized text into non-empty whitespace-delimited words."""
    return [word for word in normalized.split(" ") if word]


def is_variant_token(word: str) -> bool:
    """True for size, quantity and percentage tokens ("5%", "500גרם", "x6")."""
    return bool(_VARIANT_TOKEN_RE.match(word))


def normalize_product_name(name: str) -> str:
    """
    Derive a canonical key from a chain's raw item name.

    Removes sizes with units, pack multipliers, percentages and brackets.
    Case and Hebrew spelling are kept; matching applies ``normalize_text``
    on top of this.
    """
    name = _IMPORT_SIZE_RE.sub("", name)
    name = _IMPORT_MULTIPLIER_RE.sub("", name)
    name = _IMPORT_PERCENT_RE.sub("", name)
    name = _IMPORT_BRACKETS_RE.sub("", name)
    name = _WHITESPACE_RE.sub(" ", name)
    return name.strip()
