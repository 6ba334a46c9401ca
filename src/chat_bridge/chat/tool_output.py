"""Tool result normalization.

Providers hand back tool output in many shapes. Before a result reaches
the reducer it is normalized to the canonical union::

    {"type": "text" | "error-text", "value": str}
    {"type": "json" | "error-json", "value": <JSON value>}
    {"type": "content", "value": [{"type": "text", "text"} | {"type": "media", "data", "mediaType"}]}

Normalization is idempotent: a value that is already a well-formed union
comes back unchanged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

OUTPUT_TYPES: frozenset[str] = frozenset(("text", "json", "error-text", "error-json", "content"))


def is_json_value(value: Any) -> bool:
    """Check that a value survives a JSON round-trip unchanged in shape."""
    if value is None or isinstance(value, str | bool | int | float):
        return True
    if isinstance(value, list):
        return all(is_json_value(item) for item in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and is_json_value(v) for k, v in value.items())
    return False


def _is_content_item(item: Any) -> bool:
    if not isinstance(item, Mapping):
        return False
    if item.get("type") == "text":
        return isinstance(item.get("text"), str)
    if item.get("type") == "media":
        return isinstance(item.get("data"), str) and isinstance(item.get("mediaType"), str)
    return False


def is_tool_output(value: Any) -> bool:
    """Check whether a value is already a well-formed output union."""
    if not isinstance(value, Mapping) or "value" not in value:
        return False
    output_type = value.get("type")
    inner = value["value"]
    match output_type:
        case "text" | "error-text":
            return isinstance(inner, str)
        case "json" | "error-json":
            return is_json_value(inner)
        case "content":
            return isinstance(inner, list) and all(_is_content_item(item) for item in inner)
        case _:
            return False


def normalize_tool_output(raw: Any) -> dict[str, Any]:
    """Normalize raw tool output to the canonical ``{type, value}`` union.

    Args:
        raw: Whatever the provider returned for a tool call

    Returns:
        A new dict in canonical form
    """
    if is_tool_output(raw):
        return {"type": raw["type"], "value": raw["value"]}

    if isinstance(raw, BaseException):
        return {"type": "error-text", "value": str(raw) or type(raw).__name__}

    if isinstance(raw, str):
        return {"type": "text", "value": raw}

    if raw is None:
        return {"type": "text", "value": ""}

    if isinstance(raw, bool | int | float):
        return {"type": "text", "value": json.dumps(raw)}

    if isinstance(raw, tuple):
        raw = list(raw)

    if isinstance(raw, Mapping) and not isinstance(raw, dict):
        raw = dict(raw)

    if isinstance(raw, dict | list) and is_json_value(raw):
        return {"type": "json", "value": raw}

    logger.warning(f"Unrecognized tool output of type {type(raw).__name__}")
    return {"type": "error-text", "value": f"Unrecognized value: {raw!r}"}
