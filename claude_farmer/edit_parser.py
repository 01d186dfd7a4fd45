#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Forgiving Output Parser
===============================================================================

Purpose
-------
The develop step asks the AI tool for a JSON array of
`{"path": "...", "content": "..."}` objects, but what comes back is free
text. This module extracts the intended edits without ever failing the
iteration over a formatting quirk.

Strategy (each step only if the previous one found nothing)
-----------------------------------------------------------
1) Fenced code blocks, **last block first**; inside each block, bracket‑matched
   array candidates, **last candidate first**. The real answer conventionally
   follows any illustrative example.
2) The same bracket‑matched extraction over the whole text.
3) Per candidate: `json.loads`, then cumulative repairs (trailing commas,
   then unquoted keys, then single quotes), re‑parsing after each step.
4) Accept only a non‑empty list whose every element carries a string path
   (`path` | `file`) and string content (`content` | `code`).
5) No array: a `[]` standing on its own line or a "no changes" phrase
   → `NoEdits`.
6) Otherwise → `Unparseable` (callers treat it as zero edits).

Result type
-----------
`extract_edits()` returns one of `Edits`, `NoEdits`, `Unparseable` so callers
cannot confuse "nothing to do" with "could not understand".
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from claude_farmer import get_logger
from claude_farmer.models import FileEdit

log = get_logger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)(\w+)(\s*:)")
_EMPTY_ARRAY_RE = re.compile(r"^\s*\[\s*\]\s*$", re.MULTILINE)

NO_CHANGE_PHRASES: Tuple[str, ...] = (
    "no changes needed",
    "no changes",
    "no edits",
    "nothing to change",
    "no modifications",
    "already complete",
    "no updates needed",
)

_PATH_KEYS = ("path", "file")
_CONTENT_KEYS = ("content", "code")
_SNIPPET_CHARS = 240


# ─────────────────────────────────────────────────────────────────────────────
# Result variants
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Edits:
    edits: Tuple[FileEdit, ...]


@dataclass(frozen=True)
class NoEdits:
    reason: str


@dataclass(frozen=True)
class Unparseable:
    snippet: str


ParseResult = Union[Edits, NoEdits, Unparseable]


# ─────────────────────────────────────────────────────────────────────────────
# Candidate extraction & repair
# ─────────────────────────────────────────────────────────────────────────────
def extract_array_candidates(text: str) -> List[str]:
    """
    Return every top‑level `[...]` substring of *text*, in order of appearance.

    Depth‑tracked rather than regex‑greedy, so `[a] prose [b]` yields two
    candidates and nested arrays stay inside their parent. Brackets inside
    double‑quoted strings of an open candidate do not count.

    A `[` that never closes (e.g. `arr[i` in prose) is skipped and the scan
    resumes just after it.
    """
    candidates: List[str] = []
    offset = 0
    while True:
        depth = 0
        start = -1
        in_string = False
        escaped = False
        for i in range(offset, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"' and depth > 0:
                in_string = True
            elif ch == "[":
                if depth == 0:
                    start = i
                depth += 1
            elif ch == "]" and depth > 0:
                depth -= 1
                if depth == 0 and start != -1:
                    candidates.append(text[start : i + 1])
                    start = -1
        if depth > 0 and start != -1:
            offset = start + 1
            continue
        return candidates


def repair_json(candidate: str) -> Optional[Any]:
    """
    Parse *candidate*, attempting common LLM formatting repairs on failure.

    Repairs accumulate: each one is applied on top of the previous, and the
    text is re‑parsed after every step.

    Returns the decoded value, or None when nothing parses.
    """
    repairs = (
        lambda s: _TRAILING_COMMA_RE.sub(r"\1", s),
        lambda s: _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', s),
        lambda s: s.replace("'", '"'),
    )
    text = candidate
    try:
        return json.loads(text)
    except ValueError:
        pass
    for fix in repairs:
        text = fix(text)
        try:
            return json.loads(text)
        except ValueError:
            continue
    return None


def _first_str(item: dict, keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        val = item.get(key)
        if val is not None:
            return val if isinstance(val, str) else None
    return None


def _as_edits(value: Any) -> Optional[Tuple[FileEdit, ...]]:
    if not isinstance(value, list) or not value:
        return None
    out: List[FileEdit] = []
    for item in value:
        if not isinstance(item, dict):
            return None
        path = _first_str(item, _PATH_KEYS)
        content = _first_str(item, _CONTENT_KEYS)
        if path is None or content is None:
            return None
        out.append(FileEdit(path=path, content=content))
    return tuple(out)


def _scan(text: str) -> Optional[Tuple[FileEdit, ...]]:
    for candidate in reversed(extract_array_candidates(text)):
        edits = _as_edits(repair_json(candidate))
        if edits is not None:
            return edits
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────
def extract_edits(raw_text: str) -> ParseResult:
    """
    Extract file edits from arbitrary AI output.

    Parameters
    ----------
    raw_text : str
        Output of the develop call, verbatim.

    Returns
    -------
    Edits | NoEdits | Unparseable
    """
    text = raw_text or ""

    for block in reversed(_CODE_BLOCK_RE.findall(text)):
        edits = _scan(block.strip())
        if edits is not None:
            log.debug("Parsed %d edit(s) from fenced block", len(edits))
            return Edits(edits)

    edits = _scan(text)
    if edits is not None:
        log.debug("Parsed %d edit(s) from raw text", len(edits))
        return Edits(edits)

    if _EMPTY_ARRAY_RE.search(text):
        return NoEdits("empty array")

    lowered = text.lower()
    for phrase in NO_CHANGE_PHRASES:
        if phrase in lowered:
            return NoEdits(f"phrase: {phrase}")

    snippet = text.strip().replace("\n", " ")
    if len(snippet) > _SNIPPET_CHARS:
        snippet = snippet[: _SNIPPET_CHARS - 1] + "…"
    log.debug("No edits recognised in output (%d chars)", len(text))
    return Unparseable(snippet)


def edits_or_empty(result: ParseResult) -> Tuple[FileEdit, ...]:
    """Collapse a parse result to a (possibly empty) tuple of edits."""
    return result.edits if isinstance(result, Edits) else ()


__all__ = [
    "Edits",
    "NoEdits",
    "Unparseable",
    "ParseResult",
    "NO_CHANGE_PHRASES",
    "extract_array_candidates",
    "repair_json",
    "extract_edits",
    "edits_or_empty",
]
