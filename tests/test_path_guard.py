#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Path guard ▸ containment & edit filtering
===============================================================================

Goals
-----
* `is_within` accepts the root and anything beneath it, and rejects
  traversal, absolute paths elsewhere, sibling‑prefix directories and
  symlinks that escape.
* `filter_safe_edits` keeps accepted edits in order, reports rejected raw
  paths and never raises.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from claude_farmer.models import FileEdit
from claude_farmer.path_guard import SECURITY_PREFIX, filter_safe_edits, is_within

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    return root


# -----------------------------------------------------------------------------
# is_within
# -----------------------------------------------------------------------------
def test_root_and_children_are_inside(project: Path) -> None:
    assert is_within(project, project)
    assert is_within(project / "src" / "a.py", project)
    assert is_within("src/new/deep.py", project)
    assert is_within("./src/../b.py", project)


def test_traversal_and_foreign_absolute_paths_are_outside(project: Path) -> None:
    assert not is_within("../etc/passwd", project)
    assert not is_within("src/../../outside.txt", project)
    assert not is_within("/etc/passwd", project)


def test_sibling_with_common_prefix_is_outside(tmp_path: Path, project: Path) -> None:
    evil = tmp_path / "project-evil"
    evil.mkdir()
    assert not is_within(evil / "x.py", project)
    assert not is_within("../project-evil/x.py", project)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlink_escaping_root_is_outside(tmp_path: Path, project: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    link = project / "link"
    try:
        link.symlink_to(outside, target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")
    assert not is_within("link/file.txt", project)


def test_malformed_input_never_raises(project: Path) -> None:
    assert is_within("bad\x00name", project) is False


# -----------------------------------------------------------------------------
# filter_safe_edits
# -----------------------------------------------------------------------------
def test_filter_keeps_order_and_reports_rejections(project: Path, farmer_caplog) -> None:
    edits = [
        FileEdit("src/a.py", "A"),
        FileEdit("../escape.py", "X"),
        FileEdit("b.py", "B"),
        FileEdit("/etc/passwd", "root"),
    ]
    accepted, rejected = filter_safe_edits(edits, project)

    assert [e.relpath for e in accepted] == ["src/a.py", "b.py"]
    assert all(e.path.is_absolute() for e in accepted)
    assert rejected == ["../escape.py", "/etc/passwd"]
    assert sum(SECURITY_PREFIX in r.getMessage() for r in farmer_caplog.records if r.levelno == logging.WARNING) == 2


def test_filter_rejects_root_directories_and_git(project: Path) -> None:
    edits = [
        FileEdit(".", "root"),
        FileEdit("src", "a dir"),
        FileEdit(".git/config", "[core]"),
        FileEdit("sub/.git/HEAD", "ref"),
        FileEdit("gitignore_ok.txt", "fine"),
    ]
    accepted, rejected = filter_safe_edits(edits, project)
    assert [e.relpath for e in accepted] == ["gitignore_ok.txt"]
    assert rejected == [".", "src", ".git/config", "sub/.git/HEAD"]


def test_filter_rejects_protected_prefixes(project: Path) -> None:
    edits = [
        FileEdit("claude-farmer/logs/20240101_000000.log", "forged"),
        FileEdit("claude-farmer/docs/REVIEW.md", "ok"),
        FileEdit("claude-farmer/logsbook.md", "also ok"),
    ]
    accepted, rejected = filter_safe_edits(edits, project, protected=("claude-farmer/logs",))
    assert [e.relpath for e in accepted] == ["claude-farmer/docs/REVIEW.md", "claude-farmer/logsbook.md"]
    assert rejected == ["claude-farmer/logs/20240101_000000.log"]


def test_filter_with_no_edits_is_empty(project: Path) -> None:
    assert filter_safe_edits([], project) == ([], [])


def test_filter_rejects_paths_below_an_existing_file(project: Path) -> None:
    (project / "main.py").write_text("print(1)\n", encoding="utf-8")
    edits = [
        FileEdit("main.py/x.py", "a"),
        FileEdit("main.py/deeper/y.py", "a"),
        FileEdit("src/new/z.py", "fine"),
        FileEdit("ok.py", "b"),
    ]
    accepted, rejected = filter_safe_edits(edits, project)
    assert [e.relpath for e in accepted] == ["src/new/z.py", "ok.py"]
    assert rejected == ["main.py/x.py", "main.py/deeper/y.py"]
