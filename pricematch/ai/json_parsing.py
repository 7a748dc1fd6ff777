"""Defensive JSON extraction from free-form model output."""

import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse the first balanced ``{...}`` object found in ``text``.

    Braces inside JSON strings (and escaped quotes) are skipped while
    balancing. Returns None when there is no balanced object or it does
    not parse to a dict.
    """
    if not text:
        return None

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                candidate = text[start:index + 1]
                try:
                    parsed = json.loads(candidate)
                except json.JSONDecodeError as e:
                    logger.debug(f"Balanced object is not valid JSON: {e}")
                    return None
                return parsed if isinstance(parsed, dict) else None

    return None


def parse_model(
    payload: Union[str, Dict[str, Any], None],
    model: Type[ModelT],
) -> Optional[ModelT]:
    """
    Validate model output against ``model``.

    ``payload`` is either raw text (the first JSON object is extracted) or an
    already-decoded dict such as tool-call arguments. Any deviation from the
    expected shape yields None.
    """
    if payload is None:
        return None

    data = extract_json_object(payload) if isinstance(payload, str) else payload
    if not isinstance(data, dict):
        return None

    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Model output failed {model.__name__} validation: {e}")
        return None
