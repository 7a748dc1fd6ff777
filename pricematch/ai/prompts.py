"""Centralized prompt templates and response shapes for LLM interactions."""

import math
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

KNOWN_CHAINS = [
    "שופרסל",
    "רמי לוי",
    "ויקטורי",
    "יוחננוף",
    "מגה",
    "חצי חינם",
    "סופר יודה",
    "סטופ מרקט",
]

CATEGORIES = [
    "מוצרי חלב",
    "ירקות",
    "פירות",
    "בשר",
    "דגים",
    "מוצרים יבשים",
    "משקאות",
    "ניקיון",
    "אחר",
]


def coerce_confidence(value) -> float:
    """Numeric value in [0, 1], anything else becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or not 0.0 <= number <= 1.0:
        return 0.0
    return number


def coerce_price(value) -> Optional[float]:
    """Positive finite price, anything else becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


SEMANTIC_MATCH_SYSTEM_PROMPT = """אתה מערכת התאמה למוצרי מזון ישראליים.
קיבלת שם מוצר מהמשתמש ורשימת שמות קנוניים של מוצרים.
עליך להתאים את שם המוצר לשם הקנוני המתאים ביותר מהרשימה.

חוקים:
1. התאם לפי סוג המוצר הבסיסי (לא מותג)
2. התעלם ממותגים (תנובה, טרה, אסם וכו')
3. התעלם מאחוזי שומן מדויקים - התאם לקטגוריה כללית
4. התעלם מגדלים ספציפיים - התאם למוצר הבסיסי
5. תחליפים צמחיים הם מוצרים שונים: חלב קוקוס, חלב שקדים, חלב סויה או גבינה טבעונית אינם "חלב" או "גבינה"
6. גרסאות מיוחדות הן מוצרים שונים: סירופ מייפל אינו "סירופ", שמן זית אינו "שמן", קמח או אורז מיוחדים אינם הגרסה הכללית
7. מוצר אורגני, ללא גלוטן, טבעוני או כשר לפסח אינו המוצר הרגיל
8. אם המוצר המתאים אינו ברשימה, אל תבחר מוצר כללי במקומו - החזר confidence נמוך

החזר JSON בפורמט הבא בלבד:
{"canonicalKey": "שם_מהרשימה", "confidence": 0.0-1.0}

אם אין התאמה טובה, החזר:
{"canonicalKey": null, "confidence": 0}"""


_CHAIN_PRICE_LINES = ",\n".join(f'    "{chain}": מספר או null' for chain in KNOWN_CHAINS)
_CATEGORY_CHOICES = "/".join(CATEGORIES)

PRICE_EXTRACTION_SYSTEM_PROMPT = f"""אתה מנתח מחירי מוצרים בסופרמרקטים ישראליים.
קיבלת תוצאות חיפוש ואתה צריך לחלץ מחיר למוצר הספציפי.

החזר JSON בפורמט הבא בלבד:
{{
  "found": true/false,
  "canonicalName": "שם המוצר הסטנדרטי בעברית",
  "avgPrice": מספר (מחיר ממוצע בש"ח),
  "chainPrices": {{
{_CHAIN_PRICE_LINES}
  }},
  "category": "קטגוריה ({_CATEGORY_CHOICES})",
  "confidence": 0.0-1.0
}}

אם לא מצאת מחיר אמין, החזר found: false.
המחיר צריך להיות הגיוני עבור המוצר (לא מחיר לחבילה גדולה אם המוצר הוא יחידה בודדת)."""


SUGGESTION_SYSTEM_PROMPT = """אתה עוזר קניות חכם. על בסיס רשימת הקניות הנוכחית והיסטוריית הקניות של המשתמש, הצע 3-5 פריטים שכנראה שכחו להוסיף.

כללים:
- הצע רק פריטים שלא נמצאים כבר ברשימה הנוכחית
- התמקד בפריטים משלימים הגיוניים (למשל: אם יש חלב - אולי חסרים ביצים או לחם)
- תן עדיפות לפריטים שהמשתמש קנה בעבר
- ענה בעברית בלבד
- ענה אך ורק בפורמט JSON"""


class SuggestionPrompt(BaseModel):
    """Prompt schema for suggesting forgotten shopping list items."""

    current_items: List[str]
    history: List[str]

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        current = ", ".join(self.current_items) if self.current_items else "אין פריטים ברשימה"
        history = ", ".join(self.history) if self.history else "אין היסטוריה"
        return f"""רשימה נוכחית: {current}

היסטוריית קניות: {history}

הצע פריטים חסרים."""


class SemanticMatchPrompt(BaseModel):
    """Prompt schema for choosing a canonical key from a candidate list."""

    query: str
    candidate_keys: List[str]

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        keys = "\n".join(self.candidate_keys)
        return f"""מוצר: "{self.query}"

רשימת שמות קנוניים:
{keys}

התאם את המוצר לשם הקנוני המתאים ביותר."""


class PriceExtractionPrompt(BaseModel):
    """Prompt schema for extracting prices from web search results."""

    product_name: str
    search_content: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        return f"""חפש מחיר עבור: "{self.product_name}"

תוצאות חיפוש:
{self.search_content}"""


class SemanticMatchResponse(BaseModel):
    """Shape of the model's answer to a semantic match prompt."""

    model_config = ConfigDict(populate_by_name=True)

    canonical_key: Optional[str] = Field(default=None, alias="canonicalKey")
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, v):
        return coerce_confidence(v)

    @field_validator("canonical_key", mode="before")
    @classmethod
    def validate_key(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None


class PriceExtractionResponse(BaseModel):
    """Shape of the model's answer to a price extraction prompt."""

    model_config = ConfigDict(populate_by_name=True)

    found: bool = False
    canonical_name: Optional[str] = Field(default=None, alias="canonicalName")
    avg_price: Optional[float] = Field(default=None, alias="avgPrice")
    chain_prices: Dict[str, Optional[float]] = Field(default_factory=dict, alias="chainPrices")
    category: Optional[str] = None
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, v):
        return coerce_confidence(v)

    @field_validator("avg_price", mode="before")
    @classmethod
    def validate_avg_price(cls, v):
        return coerce_price(v)

    @field_validator("chain_prices", mode="before")
    @classmethod
    def validate_chain_prices(cls, v):
        if not isinstance(v, dict):
            return {}
        return {
            str(chain).strip(): coerce_price(price)
            for chain, price in v.items()
            if str(chain).strip()
        }

    @field_validator("canonical_name", "category", mode="before")
    @classmethod
    def validate_text(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None


class SuggestedItem(BaseModel):
    """One suggested item with a short reason."""

    name: str
    reason: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @field_validator("reason", mode="before")
    @classmethod
    def validate_reason(cls, v):
        return v.strip() if isinstance(v, str) else ""


class SuggestionResponse(BaseModel):
    """Shape of the model's answer to a suggestion prompt."""

    suggestions: List[SuggestedItem] = Field(default_factory=list)

    @field_validator("suggestions", mode="before")
    @classmethod
    def drop_unnamed(cls, v):
        if not isinstance(v, list):
            return []
        return [
            item for item in v
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"].strip()
        ]


# Response schemas for forced tool calls
SEMANTIC_MATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "canonicalKey": {"type": ["string", "null"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["canonicalKey", "confidence"],
}

PRICE_EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "found": {"type": "boolean"},
        "canonicalName": {"type": "string"},
        "avgPrice": {"type": ["number", "null"]},
        "chainPrices": {
            "type": "object",
            "properties": {chain: {"type": ["number", "null"]} for chain in KNOWN_CHAINS},
        },
        "category": {"type": "string", "enum": CATEGORIES},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["found", "confidence"],
}

SUGGESTION_SCHEMA = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "שם הפריט"},
                    "reason": {"type": "string", "description": "סיבה קצרה להצעה"},
                },
                "required": ["name", "reason"],
            },
        },
    },
    "required": ["suggestions"],
}
