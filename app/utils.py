"""Utility helpers for the VaroLogs service."""

from __future__ import annotations

import json
import re
from typing import Any


LEADING_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
TRAILING_FENCE_RE = re.compile(r"\n?```$")
YEAR_RE = re.compile(r"(1[5-9]|20|21)\d{2}")


def strip_code_fences(content: str) -> str:
    """Remove a leading ```json fence and a trailing ``` fence, if present."""

    text = content.strip()
    text = LEADING_FENCE_RE.sub("", text, count=1)
    text = TRAILING_FENCE_RE.sub("", text, count=1)
    return text.strip()


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse model output as exactly one JSON object.

    Unlike a lenient search for the first ``{...}`` block, any prose around the
    object makes the payload invalid.
    """

    payload = strip_code_fences(content)
    if not payload:
        raise ValueError("Empty response from the model")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON payload produced by the model: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


def parse_year(value: Any) -> int | None:
    """Return a four digit year found in ``value``, if any."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not value:
        return None
    match = YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))
