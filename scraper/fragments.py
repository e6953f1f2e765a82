"""
Best-effort structured-fragment scanner.

Product galleries are embedded as JavaScript object literals inside larger,
non-JSON inline scripts. Rather than parse the whole script we locate an
anchor, brace-match the object that follows it and try to read it as JSON.

This is inherently heuristic: callers must treat a None result as normal.
Parsing falls back strict JSON -> quote-normalized JSON -> give up.
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)


_SINGLE_QUOTED_KEY_RE = re.compile(r"([{,]\s*)'([^']+?)'\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*?)'(\s*[},\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)\s*:(?!//)")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def match_braces(text: str, start: int) -> Optional[str]:
    """
    Return the balanced {...} or [...] block opening at text[start].

    String literals (single or double quoted, with escapes) are skipped so
    braces inside them do not count.
    """
    if start < 0 or start >= len(text) or text[start] not in "{[":
        return None

    opening = text[start]
    closing = "}" if opening == "{" else "]"
    depth = 0
    quote = None
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def find_object_after(text: str, anchor: str) -> Optional[str]:
    """
    Find anchor in text and brace-match the first object/array after it.

    Args:
        text: Script or document text to scan
        anchor: Literal marker preceding the object, e.g. "'colorImages'"
    """
    position = text.find(anchor)
    while position != -1:
        cursor = position + len(anchor)
        # Skip separators such as ':' or '=' and whitespace
        while cursor < len(text) and text[cursor] in " \t\r\n:=":
            cursor += 1
        if cursor < len(text) and text[cursor] in "{[":
            fragment = match_braces(text, cursor)
            if fragment:
                return fragment
        position = text.find(anchor, position + 1)
    return None


def normalize_quotes(fragment: str) -> str:
    """Rewrite common JS-literal quirks into JSON."""
    cleaned = fragment.replace("&quot;", '"')
    cleaned = _SINGLE_QUOTED_KEY_RE.sub(r'\1"\2":', cleaned)
    cleaned = _SINGLE_QUOTED_VALUE_RE.sub(r':"\1"\2', cleaned)
    cleaned = _BARE_KEY_RE.sub(r'\1"\2":', cleaned)
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)
    return cleaned


def parse_loose_json(fragment: Optional[str]) -> Optional[Any]:
    """Strict parse, then a quote-normalized retry, then None."""
    if not fragment:
        return None
    try:
        return json.loads(fragment)
    except ValueError:
        pass
    try:
        return json.loads(normalize_quotes(fragment))
    except ValueError as e:
        logger.debug(f"Fragment abandoned after quote normalization: {e}")
        return None


def extract_object(text: str, anchor: str) -> Optional[Any]:
    """find_object_after + parse_loose_json in one step."""
    return parse_loose_json(find_object_after(text, anchor))
