#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Develop report (claude-farmer/docs/DEVELOP.json)
===============================================================================

Purpose
-------
After each develop step a machine‑readable report is written next to
REVIEW.md. The orchestrator always produces one:

* the **fallback** report is generated from what actually happened
  (applied edits, rejected paths, dry‑run flag);
* if the AI proposed its own `claude-farmer/docs/DEVELOP.json` as one of its
  edits, its `summary`, `problems` and per‑change `description` are merged
  on top of the fallback. The facts (paths, sizes, rejections) always come
  from the orchestrator.

Validation
----------
The bundled `develop_report.schema.json` is loaded **once** at import time via
`importlib.resources` and compiled to a `Draft7Validator`. A merged report
that fails validation is discarded in favour of the fallback (WARNING).
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from importlib import resources
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jsonschema import Draft7Validator, ValidationError

from claude_farmer import get_logger
from claude_farmer.context import FARMER_DIR
from claude_farmer.edit_parser import repair_json
from claude_farmer.models import SafeEdit

log = get_logger(__name__)

REPORT_RELPATH = f"{FARMER_DIR}/docs/DEVELOP.json"


# -----------------------------------------------------------------------------
# Schema (loaded once)
# -----------------------------------------------------------------------------
def _load_schema() -> Dict[str, Any]:
    try:
        with resources.files("claude_farmer").joinpath("develop_report.schema.json").open(
            encoding="utf-8"
        ) as fh:
            return json.load(fh)
    except FileNotFoundError as exc:  # pragma: no cover
        log.critical("develop_report.schema.json not found inside package: %s", exc)
        raise SystemExit(1) from exc
    except json.JSONDecodeError as exc:  # pragma: no cover
        log.critical("develop_report.schema.json is invalid JSON: %s", exc)
        raise SystemExit(1) from exc


_SCHEMA: Dict[str, Any] = _load_schema()
Draft7Validator.check_schema(_SCHEMA)
_VALIDATOR = Draft7Validator(_SCHEMA)


def _pretty_pointer(exc: ValidationError) -> str:
    if not exc.path:
        return "$"
    return ".".join(["$", *(str(p) for p in exc.path)])


def validate_report(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate *data* against the bundled schema.

    Raises
    ------
    jsonschema.ValidationError
        First (most relevant) violation; the message is prefixed with its
        JSON‑pointer‑ish location.
    """
    errors = sorted(_VALIDATOR.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        first.message = f"{_pretty_pointer(first)}: {first.message}"
        raise first
    return data


# -----------------------------------------------------------------------------
# Build & merge
# -----------------------------------------------------------------------------
def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_report(
    iteration: int,
    applied: Sequence[SafeEdit],
    rejected: Sequence[str] = (),
    *,
    problems: Sequence[str] = (),
    summary: Optional[str] = None,
    dry_run: bool = False,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Fallback report describing what the orchestrator actually did."""
    if summary is None:
        verb = "proposed" if dry_run else "updated"
        summary = f"{verb} {len(applied)} file(s)" if applied else "no changes"
    return {
        "iteration": int(iteration),
        "timestamp": timestamp or _now_iso(),
        "changes": [{"path": e.relpath, "chars": len(e.content)} for e in applied],
        "rejected": [str(p) for p in rejected],
        "problems": [str(p) for p in problems],
        "summary": summary,
        "dry_run": bool(dry_run),
    }


def split_report_edit(edits: Sequence[SafeEdit]) -> Tuple[List[SafeEdit], Optional[SafeEdit]]:
    """Separate an AI‑proposed DEVELOP.json from the source edits (last one wins)."""
    sources: List[SafeEdit] = []
    report: Optional[SafeEdit] = None
    for edit in edits:
        if edit.relpath == REPORT_RELPATH:
            report = edit
        else:
            sources.append(edit)
    return sources, report


def merge_report(base: Dict[str, Any], ai_text: Optional[str]) -> Dict[str, Any]:
    """
    Overlay the AI's narrative fields onto *base*.

    Unparseable or invalid AI content leaves *base* untouched.
    """
    if not ai_text:
        return base
    data = repair_json(ai_text)
    if not isinstance(data, dict):
        log.warning("AI-supplied DEVELOP.json is not a JSON object; using generated report.")
        return base

    merged = dict(base)
    if isinstance(data.get("summary"), str) and data["summary"].strip():
        merged["summary"] = data["summary"].strip()
    if isinstance(data.get("problems"), list):
        merged["problems"] = list(base["problems"]) + [str(p) for p in data["problems"]]

    descriptions = {}
    changes = data.get("changes")
    for item in changes if isinstance(changes, list) else ():
        if isinstance(item, dict) and isinstance(item.get("path"), str):
            desc = item.get("description") or item.get("summary")
            if isinstance(desc, str) and desc:
                descriptions[item["path"]] = desc
    if descriptions:
        merged["changes"] = [
            {**c, "description": descriptions[c["path"]]} if c["path"] in descriptions else dict(c)
            for c in base["changes"]
        ]

    try:
        return validate_report(merged)
    except ValidationError as exc:
        log.warning("AI-supplied DEVELOP.json rejected (%s); using generated report.", exc.message)
        return base


def render_report(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


__all__ = [
    "REPORT_RELPATH",
    "validate_report",
    "build_report",
    "split_report_edit",
    "merge_report",
    "render_report",
]
