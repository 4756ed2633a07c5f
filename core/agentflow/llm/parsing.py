"""Helpers for turning assistant text into usable values.

Models wrap JSON in fences, prepend chatter or leak control tokens. These
helpers recover what they can and leave the final fallback to the caller.
"""

import json
import re
from typing import Any

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_CONTROL_TOKENS = re.compile(r"<\|[^>]+\|>")


def clean_assistant_text(text: str | None) -> str:
    """Strip markdown fences and control tokens such as ``<|eot_id|>``."""
    if not text:
        return ""
    cleaned = _FENCE_OPEN.sub("", text.strip())
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    cleaned = _CONTROL_TOKENS.sub("", cleaned)
    return cleaned.strip()


def try_extract_json(text: str) -> str | None:
    """Return the substring from the first ``{`` to the last ``}`` if it parses."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    candidate = text[start : end + 1].strip()
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return candidate


def parse_json_response(text: str | None) -> Any | None:
    """
    Parse JSON out of an LLM reply.

    Tries the cleaned text directly, then a brace-delimited extraction.
    Returns None when neither parses; callers apply their own fallback.
    """
    cleaned = clean_assistant_text(text)
    if not cleaned:
        return None
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    extracted = try_extract_json(cleaned)
    return json.loads(extracted) if extracted is not None else None


def parse_true_false(text: str | None) -> bool:
    """Exact TRUE/FALSE contract: anything other than ``TRUE`` is False."""
    return (text or "").strip() == "TRUE"
