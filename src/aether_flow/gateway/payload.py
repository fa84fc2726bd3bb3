"""Best-effort JSON object recovery from LLM stdout."""

from __future__ import annotations

import json
import re

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def parse_json_payload(text: str) -> dict[str, object] | None:
    """Return the first JSON object found in ``text``.

    Tried in order: the whole text, a fenced ```json block, and the span
    between the outermost braces.
    """

    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def normalize_plain_text(text: str) -> str:
    """Drop blank lines and trailing whitespace from free-form output."""

    lines = [line.rstrip() for line in text.splitlines()]
    compact = "\n".join(line for line in lines if line.strip())
    return compact.strip()


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
