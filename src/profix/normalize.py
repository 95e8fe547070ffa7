from __future__ import annotations

import json
import logging
import re
from typing import Any

from profix.errors import MalformedResponse

logger = logging.getLogger(__name__)

# One fenced wrapper around the whole reply; the language tag is optional.
_FENCE_RE = re.compile(
    r"\A```[ \t]*(?:[A-Za-z0-9_+.-]+)?[ \t]*\r?\n?(?P<body>.*?)\r?\n?[ \t]*```\Z",
    re.DOTALL,
)


def strip_code_fence(raw: str) -> str:
    """
    Remove a single leading/trailing fenced-code wrapper, if present.

    Text outside the wrapper (conversational prose) is not stripped: a reply
    with prose around the fence stays unparsable.
    """

    text = raw.strip().lstrip("\ufeff").strip()
    match = _FENCE_RE.match(text)
    if match is None:
        return text
    return match.group("body").strip()


def parse_response(raw: str) -> list[Any]:
    """
    Parse a raw model reply into a list of candidate elements.

    Raises `MalformedResponse` for anything that is not a complete JSON array.
    There is no best-effort recovery of partial arrays.
    """

    if not isinstance(raw, str):
        raise MalformedResponse(f"Model reply must be text, got {type(raw).__name__}.")

    text = strip_code_fence(raw)
    if not text:
        raise MalformedResponse("Model reply was empty.", raw=raw)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.debug("model reply is not valid JSON: %s", exc)
        raise MalformedResponse(f"Failed to parse AI response: {exc.msg} (line {exc.lineno}).", raw=raw) from exc
    except RecursionError as exc:
        raise MalformedResponse("Failed to parse AI response: nesting too deep.", raw=raw) from exc

    if not isinstance(data, list):
        raise MalformedResponse(f"Expected a JSON array, got {type(data).__name__}.", raw=raw)
    return data
