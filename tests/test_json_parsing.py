"""Tests for defensive JSON extraction and response validation."""

import pytest

from pricematch.ai.json_parsing import extract_json_object, parse_model
from pricematch.ai.prompts import PriceExtractionResponse, SemanticMatchResponse


def test_extract_json_from_surrounding_text():
    """Test the first object is found inside prose and code fences."""
    text = 'Sure! ```json\n{"canonicalKey": "חלב", "confidence": 0.9}\n``` hope it helps {"x": 1}'
    assert extract_json_object(text) == {"canonicalKey": "חלב", "confidence": 0.9}


def test_extract_json_nested_and_braces_in_strings():
    """Test nested objects and braces inside strings balance correctly."""
    text = 'prefix {"a": {"b": "}{"}, "c": "say \\"{hi}\\""} suffix'
    assert extract_json_object(text) == {"a": {"b": "}{"}, "c": 'say "{hi}"'}


@pytest.mark.parametrize("text", [
    "",
    "no json here",
    '{"unterminated": ',
    "{not json}",
    "[1, 2, 3]",
])
def test_extract_json_failures_return_none(text):
    """Test unparseable input yields None."""
    assert extract_json_object(text) is None


@pytest.mark.parametrize("confidence, expected", [
    (0.7, 0.7),
    ("0.4", 0.4),
    (1.5, 0.0),
    (-0.1, 0.0),
    ("high", 0.0),
    (None, 0.0),
    (True, 0.0),
])
def test_semantic_confidence_coercion(confidence, expected):
    """Test non-numeric and out-of-range confidences become 0."""
    response = parse_model({"canonicalKey": "חלב", "confidence": confidence}, SemanticMatchResponse)
    assert response.confidence == pytest.approx(expected)


def test_semantic_blank_key_is_none():
    """Test an empty key is treated as no match."""
    response = parse_model('{"canonicalKey": "  ", "confidence": 0.8}', SemanticMatchResponse)
    assert response.canonical_key is None


def test_price_extraction_drops_bad_prices():
    """Test invalid prices are cleared rather than failing validation."""
    payload = {
        "found": True,
        "canonicalName": " חלב קוקוס ",
        "avgPrice": "12.9",
        "chainPrices": {"שופרסל": 13.5, "רמי לוי": "n/a", "מגה": -1, "": 5},
        "category": "מוצרי חלב",
        "confidence": 0.8,
    }
    response = parse_model(payload, PriceExtractionResponse)

    assert response.canonical_name == "חלב קוקוס"
    assert response.avg_price == pytest.approx(12.9)
    assert response.chain_prices == {"שופרסל": 13.5, "רמי לוי": None, "מגה": None}


def test_price_extraction_not_an_object():
    """Test a payload of the wrong shape yields None."""
    assert parse_model("the price is 5 shekels", PriceExtractionResponse) is None
    assert parse_model(None, PriceExtractionResponse) is None
    assert parse_model({"found": "definitely"}, PriceExtractionResponse) is None
