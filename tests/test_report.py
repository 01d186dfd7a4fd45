#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
DEVELOP.json report ▸ fallback, merge and schema validation
===============================================================================
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from jsonschema import ValidationError

from claude_farmer.models import SafeEdit
from claude_farmer.report import (
    REPORT_RELPATH,
    build_report,
    merge_report,
    render_report,
    split_report_edit,
    validate_report,
)

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def _edit(rel: str, content: str = "x") -> SafeEdit:
    return SafeEdit(path=Path("/proj") / rel, content=content, relpath=rel)


def test_fallback_report_is_valid() -> None:
    report = build_report(3, [_edit("a.py", "12345")], ["../evil"], timestamp="2030-01-01T00:00:00Z")
    assert validate_report(report) is report
    assert report["changes"] == [{"path": "a.py", "chars": 5}]
    assert report["rejected"] == ["../evil"]
    assert report["summary"] == "updated 1 file(s)"
    assert report["dry_run"] is False


def test_fallback_for_no_changes_and_dry_run() -> None:
    assert build_report(1, [])["summary"] == "no changes"
    assert build_report(1, [_edit("a.py")], dry_run=True)["summary"] == "proposed 1 file(s)"


def test_validation_reports_location() -> None:
    bad = build_report(1, [])
    bad["iteration"] = 0
    with pytest.raises(ValidationError, match=r"^\$\.iteration"):
        validate_report(bad)


def test_split_report_edit() -> None:
    sources, report = split_report_edit([_edit("a.py"), _edit(REPORT_RELPATH, "{}"), _edit("b.py")])
    assert [e.relpath for e in sources] == ["a.py", "b.py"]
    assert report is not None and report.content == "{}"


def test_merge_overlays_narrative_fields() -> None:
    base = build_report(2, [_edit("a.py"), _edit("b.py")])
    ai_text = json.dumps(
        {
            "summary": "Added addition",
            "problems": ["division still missing"],
            "changes": [{"path": "a.py", "description": "new add()"}, {"path": "zzz.py", "description": "ignored"}],
            "iteration": 999,
        }
    )
    merged = merge_report(base, ai_text)
    assert merged["summary"] == "Added addition"
    assert merged["problems"] == ["division still missing"]
    assert merged["changes"][0] == {"path": "a.py", "chars": 1, "description": "new add()"}
    assert "description" not in merged["changes"][1]
    assert merged["iteration"] == 2  # facts stay with the orchestrator


def test_merge_falls_back_on_garbage(farmer_caplog) -> None:
    base = build_report(1, [_edit("a.py")])
    assert merge_report(base, "not json") is base
    assert merge_report(base, "[1, 2]") is base
    assert merge_report(base, None) is base
    assert any("using generated report" in r.getMessage() for r in farmer_caplog.records)


def test_merge_ignores_ill_typed_fields() -> None:
    base = build_report(1, [_edit("a.py")])
    assert merge_report(base, json.dumps({"problems": "not", "summary": 5})) == base
    merged = merge_report(base, json.dumps({"changes": [{"path": "a.py", "description": 7}]}))
    assert merged == base


def test_render_is_pretty_json() -> None:
    text = render_report(build_report(1, []))
    assert text.endswith("\n")
    assert json.loads(text)["iteration"] == 1


@pytest.mark.parametrize("changes", [1, "a.py", {"path": "a.py", "description": "x"}, None, [1, "x", None]])
def test_merge_tolerates_any_changes_value(changes) -> None:
    base = build_report(1, [_edit("a.py")])
    merged = merge_report(base, json.dumps({"summary": "done", "changes": changes}))
    assert merged["summary"] == "done"
    assert merged["changes"] == [{"path": "a.py", "chars": 1}]


@pytest.mark.parametrize("payload", ["1", '"text"', "null", "true", "{}", '{"problems": [null, {"a": 1}]}'])
def test_merge_never_raises_on_decoded_json(payload: str) -> None:
    base = build_report(1, [_edit("a.py")])
    validate_report(merge_report(base, payload))
