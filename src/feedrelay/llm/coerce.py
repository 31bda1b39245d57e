"""Recover JSON from model output.

Models wrap JSON in code fences, prose, typographic quotes and raw newlines.
``coerce_structured`` applies a fixed list of repair passes, retrying the
parse after each one, and raises ``CoercionError`` once every pass has failed.
The passes are cumulative and run in this order:

1. parse the text as-is
2. strip code fences and surrounding prose, keeping the outermost JSON block
3. strip control characters and invisible format characters; U+200C and
   U+200D are kept because Persian and other scripts need them
4. replace typographic double quotes with ASCII quotes
5. escape raw newlines and stray double quotes inside string literals
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable

from .router import LlmError


class CoercionError(LlmError):
    pass


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INVISIBLE_RE = re.compile("[\u200b\u2060\ufeff\u00ad]")
_QUOTE_MAP = str.maketrans({"\u201c": '"', "\u201d": '"', "\u201e": '"'})
_CLOSERS = {",", ":", "}", "]"}


def coerce_structured(raw_text: str) -> Any:
    if raw_text is None:
        raise CoercionError("empty_response")
    text = raw_text
    errors: list[str] = []
    for name, repair in _PASSES:
        text = repair(text)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            errors.append(f"{name}: {exc.msg}")
    raise CoercionError("unparseable_response: " + "; ".join(errors))


def _as_is(text: str) -> str:
    return text.strip()


def _extract_block(text: str) -> str:
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    starts = [index for index in (text.find("{"), text.find("[")) if index >= 0]
    if not starts:
        return text.strip()
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text[start:].strip()
    return text[start : end + 1]


def _strip_invisible(text: str) -> str:
    # Newlines and tabs survive here; the last pass escapes them inside strings.
    text = _CONTROL_RE.sub("", text)
    return _INVISIBLE_RE.sub("", text)


def _normalize_quotes(text: str) -> str:
    return text.translate(_QUOTE_MAP)


def _escape_string_literals(text: str) -> str:
    out: list[str] = []
    in_string = False
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if not in_string:
            out.append(char)
            if char == '"':
                in_string = True
            index += 1
            continue
        if char == "\\" and index + 1 < length:
            out.append(text[index : index + 2])
            index += 2
            continue
        if char == '"':
            if _closes_string(text, index + 1):
                out.append(char)
                in_string = False
            else:
                out.append('\\"')
            index += 1
            continue
        if char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        else:
            out.append(char)
        index += 1
    return "".join(out)


def _closes_string(text: str, position: int) -> bool:
    while position < len(text) and text[position].isspace():
        position += 1
    return position >= len(text) or text[position] in _CLOSERS


_PASSES: list[tuple[str, Callable[[str], str]]] = [
    ("as_is", _as_is),
    ("extract_block", _extract_block),
    ("strip_invisible", _strip_invisible),
    ("normalize_quotes", _normalize_quotes),
    ("escape_string_literals", _escape_string_literals),
]
