"""Helpers for reading JSON out of tool and model replies."""

import json
import re
from typing import Any

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_json_reply(text: str) -> dict[str, Any]:
    """Parse a JSON object from plain or fenced text.

    Tool gateways and text-generation services sometimes wrap JSON in a
    markdown code fence. Anything that does not parse to a JSON object
    yields an empty dict.

    Args:
        text: Raw reply text

    Returns:
        Parsed object, or {} if no JSON object could be read
    """
    if not text:
        return {}

    candidates = [text.strip()]
    match = _FENCED_JSON.search(text)
    if match:
        candidates.append(match.group(1).strip())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed

    return {}
