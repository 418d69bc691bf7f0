"""Inline directive parsing for model replies.

Two markers may appear anywhere in a reply:

``CREATE_KEEPSAKE: <free text>``
    Text runs until the next marker or the end of the reply. Trimmed.
``UPDATE_STATE: <json object>``
    One JSON object literal directly after the marker.

Keepsakes are read before state updates. Both markers, and what they
carry, are removed from the text shown to the user. When a marker repeats,
the last keepsake wins and state updates are folded in order.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from luminous.errors import StateDirectiveParseError

KEEPSAKE_MARKER = "CREATE_KEEPSAKE:"
STATE_MARKER = "UPDATE_STATE:"
MARKER_RE = re.compile(rf"({re.escape(KEEPSAKE_MARKER)}|{re.escape(STATE_MARKER)})")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ProcessedReply:
    """Reply split into visible text and the directives it carried."""

    text: str
    state_delta: dict[str, Any] | None = None
    keepsake: str | None = None
    errors: list[StateDirectiveParseError] = field(default_factory=list)


@dataclass(frozen=True)
class _Span:
    marker: str
    start: int
    body_start: int
    body_end: int


def process_reply(raw_text: str) -> ProcessedReply:
    """Extract directives from ``raw_text`` and return the cleaned reply."""
    spans = _find_spans(raw_text)
    if not spans:
        return ProcessedReply(text=raw_text.strip())

    keepsake: str | None = None
    for span in spans:
        if span.marker == KEEPSAKE_MARKER:
            keepsake = raw_text[span.body_start : span.body_end].strip()

    state_delta: dict[str, Any] | None = None
    errors: list[StateDirectiveParseError] = []
    removals: list[tuple[int, int]] = []
    for span in spans:
        if span.marker == KEEPSAKE_MARKER:
            removals.append((span.start, span.body_end))
            continue
        try:
            payload, end = _parse_state_object(raw_text, span)
        except StateDirectiveParseError as exc:
            errors.append(exc)
            removals.append((span.start, _fallback_end(raw_text, span)))
            continue
        state_delta = {**(state_delta or {}), **payload}
        removals.append((span.start, end))

    return ProcessedReply(
        text=_remove(raw_text, removals),
        state_delta=state_delta,
        keepsake=keepsake,
        errors=errors,
    )


def _find_spans(text: str) -> list[_Span]:
    matches = list(MARKER_RE.finditer(text))
    spans: list[_Span] = []
    for index, match in enumerate(matches):
        body_end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        spans.append(_Span(marker=match.group(1), start=match.start(), body_start=match.end(), body_end=body_end))
    return spans


def _parse_state_object(text: str, span: _Span) -> tuple[dict[str, Any], int]:
    start = span.body_start
    while start < span.body_end and text[start].isspace():
        start += 1
    segment = text[start : span.body_end]
    try:
        payload, consumed = _decoder.raw_decode(segment)
    except json.JSONDecodeError as exc:
        raise StateDirectiveParseError(f"invalid JSON after {STATE_MARKER} {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise StateDirectiveParseError(f"{STATE_MARKER} expects a JSON object, got {type(payload).__name__}")
    return payload, start + consumed


def _fallback_end(text: str, span: _Span) -> int:
    # Best effort: drop through the last closing brace, else the whole segment.
    closing = text.rfind("}", span.body_start, span.body_end)
    if closing == -1:
        return span.body_end
    return closing + 1


def _remove(text: str, removals: list[tuple[int, int]]) -> str:
    pieces: list[str] = []
    cursor = 0
    for start, end in sorted(removals):
        pieces.append(text[cursor:start])
        cursor = max(cursor, end)
    pieces.append(text[cursor:])
    cleaned = "".join(pieces)
    cleaned = "\n".join(line.rstrip() for line in cleaned.splitlines())
    return _BLANK_LINES_RE.sub("\n\n", cleaned).strip()
