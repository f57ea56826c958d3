"""Cleaning and decoding of raw language-model output.

Model responses routinely arrive wrapped in Markdown code fences, prefixed
with ``<think>`` reasoning blocks, or cut off mid-object when the token
limit is reached.  This module turns that text into usable values:

- :func:`clean_text` removes reasoning blocks and surrounding whitespace.
- :func:`decode_json` parses a JSON object or array, applying one
  structural repair pass (strip fences, drop trailing commas, cut back to
  the last complete field, close open brackets) before giving up with
  :class:`~synthwiki.core.errors.MalformedModelOutputError`.
- :func:`salvage_string_pairs` recovers flat ``"key": "value"`` pairs from
  text that could not be repaired; used for infoboxes.
"""

from __future__ import annotations

import json
import re
from typing import Any

from synthwiki.core.errors import MalformedModelOutputError

_THINK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_UNCLOSED_THINK_RE = re.compile(r"^\s*<think>.*", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_STRING_PAIR_RE = re.compile(r'"([^"\\]+)"\s*:\s*"((?:[^"\\]|\\.)*)"')

_CLOSERS = {"{": "}", "[": "]"}


def clean_text(text: str | None) -> str:
    """Strip ``<think>`` blocks and surrounding whitespace from model text."""
    if not text:
        return ""
    cleaned = _THINK_RE.sub("", text)
    # A reasoning block that never closed swallows the whole answer.
    if _UNCLOSED_THINK_RE.match(cleaned) and "</think>" not in cleaned.lower():
        cleaned = ""
    return cleaned.strip()


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fence markers, keeping their contents."""
    return _FENCE_RE.sub("", text).replace("```", "").strip()


def decode_json(text: str | None, expect: type = dict) -> Any:
    """Decode model output as JSON, repairing it once if needed.

    Args:
        text: Raw model output.
        expect: ``dict`` or ``list``; the decoded value must be of this type.

    Returns:
        The decoded object.

    Raises:
        MalformedModelOutputError: If the text is still not valid JSON of
            the expected type after one repair pass.
    """
    candidate = _extract_json_body(strip_code_fences(clean_text(text)), expect)
    if not candidate:
        raise MalformedModelOutputError("Model returned no JSON content", raw=(text or "")[:300])

    try:
        value = json.loads(candidate)
    except ValueError:
        try:
            value = json.loads(repair_json(candidate))
        except ValueError as exc:
            raise MalformedModelOutputError(
                f"Could not decode model JSON after repair: {exc}",
                raw=candidate[:300],
            ) from exc

    if not isinstance(value, expect):
        raise MalformedModelOutputError(
            f"Expected a JSON {expect.__name__}, got {type(value).__name__}",
            raw=candidate[:300],
        )
    return value


def repair_json(text: str) -> str:
    """Apply one structural repair pass to truncated or sloppy JSON.

    Trailing commas are removed.  If the text ends inside a string or with
    brackets still open, it is cut back to the last top-level-safe comma
    and the open brackets are closed in order.
    """
    text = text.strip()
    stack, in_string, last_comma = _scan(text)

    if stack or in_string:
        if not in_string:
            closed = _close(text, stack)
            try:
                json.loads(_TRAILING_COMMA_RE.sub(r"\1", closed))
            except ValueError:
                pass
            else:
                return _TRAILING_COMMA_RE.sub(r"\1", closed)
        if last_comma is not None:
            text = text[:last_comma]
            stack, in_string, _ = _scan(text)
        if in_string:
            text += '"'
        text = _close(text, stack)

    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _close(text: str, stack: list[str]) -> str:
    return text.rstrip().rstrip(",") + "".join(_CLOSERS[opener] for opener in reversed(stack))


def salvage_string_pairs(text: str | None) -> dict[str, str]:
    """Recover flat ``"key": "value"`` pairs from unparseable JSON text."""
    pairs: dict[str, str] = {}
    for key, value in _STRING_PAIR_RE.findall(text or ""):
        try:
            decoded = json.loads(f'"{value}"')
        except ValueError:
            decoded = value
        if decoded:
            pairs[key] = decoded
    return pairs


def _extract_json_body(text: str, expect: type) -> str:
    opener = "[" if expect is list else "{"
    start = text.find(opener)
    if start == -1:
        return ""
    closer = _CLOSERS[opener]
    end = text.rfind(closer)
    if end > start:
        # Keep anything after the last closer only if brackets are unbalanced.
        stack, in_string, _ = _scan(text[start : end + 1])
        if not stack and not in_string:
            return text[start : end + 1]
    return text[start:]


def _scan(text: str) -> tuple[list[str], bool, int | None]:
    """Return the open-bracket stack, string state and last comma position."""
    stack: list[str] = []
    in_string = False
    escaped = False
    last_comma: int | None = None

    for index, char in enumerate(text):
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
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]":
            if stack and _CLOSERS[stack[-1]] == char:
                stack.pop()
        elif char == ",":
            last_comma = index

    return stack, in_string, last_comma
