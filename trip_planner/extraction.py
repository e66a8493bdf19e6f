"""Structured-output extraction from generative model text.

Model responses are supposed to hold exactly one JSON object or array, but
arrive wrapped in prose, fenced code blocks, or with raw newlines inside
string values.  :func:`extract_json` tries, in order:

1. strip a leading/trailing code fence (``json``-tagged or not) and trim
2. parse the cleaned text directly
3. parse it again with ``\\n`` / ``\\r`` collapsed to spaces
4. scan the collapsed text from the first ``{`` for a balanced object
5. scan the collapsed text from the first ``[`` for a balanced array

and never invents a value when all of these fail.  The scanners are
string-aware, so braces inside quoted values (``"a {great} place"``) do not
move the depth counter.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

_LEADING_FENCE_RE = re.compile(r"^```[A-Za-z0-9_+-]*\s*")
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")

Accept = Callable[[Any], bool]


class ExtractionFailed(Exception):
    """Raised by :func:`require_json` when no usable JSON was found."""

    def __init__(self, raw_length: int, preview: str = "") -> None:
        super().__init__(f"No usable JSON found in model output (length={raw_length})")
        self.raw_length = raw_length
        self.preview = preview


@dataclass
class ExtractionResult:
    ok: bool
    value: Any = None
    span: Optional[Tuple[int, int]] = None
    strategy: str = ""
    raw_length: int = 0


class _ScanState(enum.Enum):
    DEFAULT = "default"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


def strip_code_fence(text: str) -> str:
    cleaned = _LEADING_FENCE_RE.sub("", text.strip(), count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned)
    return cleaned.strip()


def collapse_newlines(text: str) -> str:
    return text.replace("\n", " ").replace("\r", " ")


def find_balanced(text: str, opener: str) -> Optional[Tuple[int, int]]:
    """Return ``(start, end)`` of the first balanced block opened by *opener*.

    ``opener`` is ``"{"`` (only braces count toward depth) or ``"["`` (both
    brackets and braces count, since arrays usually hold objects).  ``end``
    is exclusive.  Returns None when the first opener is never closed.
    """
    if opener == "{":
        openers, closers = "{", "}"
    elif opener == "[":
        openers, closers = "[{", "]}"
    else:
        raise ValueError(f"unsupported opener: {opener!r}")

    start = text.find(opener)
    if start == -1:
        return None

    state = _ScanState.DEFAULT
    quote = ""
    depth = 0
    for pos in range(start, len(text)):
        ch = text[pos]
        if state is _ScanState.ESCAPED:
            state = _ScanState.IN_STRING
        elif state is _ScanState.IN_STRING:
            if ch == "\\":
                state = _ScanState.ESCAPED
            elif ch == quote:
                state = _ScanState.DEFAULT
        elif ch == '"' or ch == "'":
            state = _ScanState.IN_STRING
            quote = ch
        elif ch in openers:
            depth += 1
        elif ch in closers:
            depth -= 1
            if depth == 0:
                return start, pos + 1
    return None


def _try_parse(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _accepted(value: Any, accept: Optional[Accept]) -> bool:
    return True if accept is None else bool(accept(value))


def extract_json(raw_text: Optional[str], accept: Optional[Accept] = None) -> ExtractionResult:
    """Locate and parse the JSON value in *raw_text*.

    ``accept`` optionally decides whether a parsed value is a usable payload
    (e.g. "has a non-empty itinerary"); rejected values fall through to the
    next step as if they had not parsed.  ``span`` on success is relative to
    the fence-stripped, newline-collapsed text.
    """
    raw = raw_text or ""
    raw_length = len(raw)

    cleaned = strip_code_fence(raw)
    one_line = collapse_newlines(cleaned)

    for strategy, candidate in (("direct", cleaned), ("collapsed", one_line)):
        if not candidate:
            continue
        ok, value = _try_parse(candidate)
        if ok and _accepted(value, accept):
            return ExtractionResult(
                ok=True, value=value, span=(0, len(one_line)),
                strategy=strategy, raw_length=raw_length,
            )

    for strategy, opener in (("object_scan", "{"), ("array_scan", "[")):
        span = find_balanced(one_line, opener)
        if span is None:
            continue
        ok, value = _try_parse(one_line[span[0]:span[1]])
        if ok and _accepted(value, accept):
            return ExtractionResult(
                ok=True, value=value, span=span,
                strategy=strategy, raw_length=raw_length,
            )

    logger.warning(
        "JSON extraction failed. Raw length: %d, first 200 chars: %r",
        raw_length, raw[:200],
    )
    return ExtractionResult(ok=False, raw_length=raw_length)


def require_json(raw_text: Optional[str], accept: Optional[Accept] = None) -> Any:
    """Like :func:`extract_json` but returns the value or raises ExtractionFailed."""
    result = extract_json(raw_text, accept=accept)
    if not result.ok:
        raise ExtractionFailed(result.raw_length, (raw_text or "")[:200])
    return result.value
