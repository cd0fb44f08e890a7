"""
Tolerant parsing of JSON emitted as plain text by language models.

Some models write tool calls as text (``{"name": ..., "parameters": ...}``)
instead of using the structured tool channel, and JSON answers often come
wrapped in code fences or prose. The repair passes here cover a small set of
observed mistakes. They run only after strict parsing has failed.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

# A name key followed later by a parameters/arguments key, quotes optional.
_TEXT_TOOL_CALL_RE = re.compile(
    r'\{[\s\S]*?"?name"?\s*[:=][\s\S]*?(?:parameters|arguments)[\s\S]*\}'
)

_REPAIRS: list[tuple[re.Pattern[str], str]] = [
    # \"key\" -> "key"
    (re.compile(r'\\+"'), '"'),
    # "key"{...} -> "key":{...}
    (re.compile(r'([{,]\s*"[A-Za-z_]\w*")\s*(?=[{\[])'), r"\1:"),
    # "key":"value, "next" -> "key":"value", "next"
    (re.compile(r':\s*"([^",{}\[\]]*),\s*"'), r':"\1", "'),
    # key": / "key= / key:: -> "key":
    (re.compile(r'([{,]\s*)"?([A-Za-z_]\w*)"?\s*[:=]+\s*'), r'\1"\2":'),
    # "a":1 "b":2 -> "a":1, "b":2
    (re.compile(r'(["\d\]}])\s*("[A-Za-z_]\w*"\s*:)'), r"\1, \2"),
    # }{ -> }, {
    (re.compile(r"}\s*{"), "}, {"),
]


@dataclass
class TextToolCall:
    """A tool call recovered from free text."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


def repair_json(text: str) -> str:
    """Apply the repair passes in order and return the patched text."""
    for pattern, replacement in _REPAIRS:
        text = pattern.sub(replacement, text)
    return text


def loads_lenient(text: str) -> Any:
    """Parse JSON strictly, falling back to one repaired attempt.

    Raises ValueError when the repaired text still does not parse.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(repair_json(text))


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _extract(text: str, opener: str, closer: str) -> Any:
    candidate = strip_code_fences(text)
    start = candidate.find(opener)
    end = candidate.rfind(closer)
    if start == -1 or end <= start:
        return None
    try:
        return loads_lenient(candidate[start:end + 1])
    except ValueError:
        return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Recover the outermost JSON object in ``text``."""
    value = _extract(text, "{", "}")
    return value if isinstance(value, dict) else None


def extract_json_array(text: str) -> list[Any] | None:
    """Recover the outermost JSON array in ``text``."""
    value = _extract(text, "[", "]")
    return value if isinstance(value, list) else None


def looks_like_text_tool_call(text: str) -> bool:
    return bool(text) and _TEXT_TOOL_CALL_RE.search(text) is not None


def parse_text_tool_call(text: str) -> TextToolCall | None:
    """Parse a textual ``{"name": ..., "parameters": ...}`` payload.

    ``arguments`` is accepted in place of ``parameters``, and a string value
    for either is decoded as JSON. Returns None when no usable call is found.
    """
    if not looks_like_text_tool_call(text):
        return None

    payload = extract_json_object(text)
    if payload is None:
        return None

    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    params = payload.get("parameters", payload.get("arguments", {}))
    if isinstance(params, str):
        try:
            params = json.loads(params)
        except ValueError:
            params = {}
    if not isinstance(params, dict):
        params = {}

    return TextToolCall(name=name.strip(), parameters=params)
