"""Parsing and schema checks of raw model answers."""

import json
import re
from typing import Any

from receiptflow.extraction.errors import ResponseParseError, ValidationWarning
from receiptflow.parsing.fields import parse_number

_OPENING_FENCE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\n?```$")

REQUIRED_FIELDS = ("grandTotal", "confidence")


def parse_json_response(text: str) -> Any:
    """Decode the JSON answer of a model.

    Models frequently wrap their answer in a markdown code fence even when
    told not to, and sometimes never close it. The opening and closing fences
    are stripped independently before decoding.

    Raises:
        ResponseParseError: If the text is not valid JSON
    """
    cleaned = (text or "").strip()
    cleaned = _OPENING_FENCE.sub("", cleaned, count=1)
    cleaned = _CLOSING_FENCE.sub("", cleaned, count=1).strip()
    if not cleaned:
        raise ResponseParseError("Model returned an empty response")
    try:
        return json.loads(cleaned)
    except ValueError as e:
        # JSONDecodeError, or an integer literal over the int conversion limit
        raise ResponseParseError(f"Model response is not valid JSON: {e}") from e


def validate_payload(payload: Any) -> list[ValidationWarning]:
    """Check a decoded answer against the expected invoice schema.

    Problems are returned, not raised: the normalizer copes with all of them.
    """
    if not isinstance(payload, dict):
        return [ValidationWarning(f"Expected a JSON object, got {type(payload).__name__}")]

    warnings: list[ValidationWarning] = []
    for field in REQUIRED_FIELDS:
        if payload.get(field) is None:
            warnings.append(ValidationWarning(f"Missing required field: {field}"))

    grand_total = payload.get("grandTotal")
    if grand_total is not None and parse_number(grand_total) is None:
        warnings.append(ValidationWarning(f"grandTotal is not a number: {grand_total!r}"))

    confidence = payload.get("confidence")
    if confidence is not None:
        value = parse_number(confidence)
        if value is None:
            warnings.append(ValidationWarning(f"confidence is not a number: {confidence!r}"))
        elif not 0 <= value <= 1:
            warnings.append(ValidationWarning(f"confidence out of range [0, 1]: {confidence}"))

    line_items = payload.get("lineItems")
    if line_items is not None and not isinstance(line_items, list):
        warnings.append(ValidationWarning("lineItems must be an array"))

    return warnings
