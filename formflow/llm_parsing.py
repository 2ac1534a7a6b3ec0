from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict

from formflow.errors import InvalidGeneratorOutput, JsonSyntaxError, NoJsonFound
from formflow.fallback import TERMINAL_PAGE_ID, build_fallback_graph
from formflow.validators import validate_and_normalize

log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_BLANK_LINE_RE = re.compile(r"^\s*[\r\n]", re.MULTILINE)
_STRING_LITERAL_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_LABEL_ONLY_BUTTON_RE = re.compile(r'("routeButton"\s*:\s*\{\s*"label"\s*:\s*"[^"]*")\s*,?\s*\}')
_BARE_KEY_RE = re.compile(r"([{,]\s*)([a-zA-Z_][a-zA-Z0-9_]*)\s*:")
_PAGES_FRAGMENT_RE = re.compile(r'"pages"\s*:\s*\[(.*?)\]', re.DOTALL)


def snippet(text: str, size: int = 200) -> str:
    """Head and tail of a long raw response, for log lines."""
    t = text or ""
    if len(t) <= size * 2:
        return t
    return f"{t[:size]} ... {t[-size:]}"


def extract_json_object(text: str) -> str:
    """Strip fences and blank lines, then slice from the first `{` to the last `}`.

    Raises NoJsonFound when there is no such span.
    """
    cleaned = _FENCE_RE.sub("", text or "")
    cleaned = _BLANK_LINE_RE.sub("", cleaned).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise NoJsonFound("No JSON object found in response")
    return cleaned[first : last + 1]


def _outside_strings(text: str, fn: Callable[[str], str]) -> str:
    # Apply `fn` to the stretches between JSON string literals only.
    out = []
    pos = 0
    for m in _STRING_LITERAL_RE.finditer(text):
        out.append(fn(text[pos : m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(fn(text[pos:]))
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Drop a comma that directly precedes `}` or `]`."""
    return _outside_strings(text, lambda s: _TRAILING_COMMA_RE.sub(r"\1", s))


def close_route_buttons(text: str) -> str:
    """Give a label-only routeButton object a terminal routeTo."""
    return _LABEL_ONLY_BUTTON_RE.sub(rf'\1, "routeTo": "{TERMINAL_PAGE_ID}"}}', text)


def quote_bare_keys(text: str) -> str:
    """`{key:` / `,key:` -> `{"key":` / `,"key":` for keys outside string literals."""
    return _outside_strings(text, lambda s: _BARE_KEY_RE.sub(r'\1"\2":', s))


REPAIR_RULES = (remove_trailing_commas, close_route_buttons, quote_bare_keys)


def repair_json_syntax(text: str) -> str:
    """Apply the fixed repair rules in order. The result may still be invalid JSON."""
    fixed = text
    for rule in REPAIR_RULES:
        fixed = rule(fixed)
    return fixed


def loads_object(text: str) -> Dict[str, Any]:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise JsonSyntaxError(f"{e.msg} at line {e.lineno} column {e.colno}") from e
    if not isinstance(doc, dict):
        raise JsonSyntaxError("top-level JSON value is not an object")
    return doc


def parse_json_object(text: str) -> Dict[str, Any]:
    """Sanitize, repair and parse generator text into a dict.

    Raises NoJsonFound or JsonSyntaxError; no reconstruction is attempted.
    """
    return loads_object(repair_json_syntax(extract_json_object(text)))


def emergency_reconstruct(raw_text: str, intent: str = "") -> Dict[str, Any]:
    """Salvage path for text that would not parse.

    The `pages` fragment is only used as evidence that the generator was
    producing a form; its content is discarded in favour of the canned graph.
    """
    if not _PAGES_FRAGMENT_RE.search(raw_text or ""):
        raise InvalidGeneratorOutput("Invalid JSON response from AI service")
    log.warning("emergency reconstruction: pages fragment found, substituting fallback form")
    return build_fallback_graph(intent)


def parse_page_graph(text: str, intent: str = "") -> Dict[str, Any]:
    """Run generator text through sanitize -> repair -> parse -> normalize.

    Parse failures fall through to the emergency reconstructor; the result is
    always a normalized page graph or an exception.
    """
    try:
        parsed = parse_json_object(text)
    except (NoJsonFound, JsonSyntaxError) as e:
        log.warning("page graph parse failed (%s); raw=%r", e, snippet(text))
        parsed = emergency_reconstruct(text, intent)
    return validate_and_normalize(parsed)
