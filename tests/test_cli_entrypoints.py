#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
CLI smoke tests for entrypoints
===============================================================================

Goals
-----
* The module entrypoint works without touching the orchestrator stack:

      python -m claude_farmer --version

* The console script is available and shows help:

      claude-farmer --help

* In‑process `cli.main()` maps outcomes to exit codes:
  0 clean · 1 fatal (`claude-farmer: Error - …` on stderr) · 2 no command.

These are **fast** smoke checks to catch packaging/entrypoint regressions.
"""
from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from claude_farmer import cli

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def _run(cmd: list[str]) -> tuple[int, str]:
    """
    Run *cmd*, returning (returncode, combined stdout+stderr).
    """
    proc = subprocess.run(cmd, capture_output=True, text=True)
    out = (proc.stdout or "") + (proc.stderr or "")
    log.info("Ran: %s\n%s", " ".join(cmd), out.strip())
    return proc.returncode, out


# Accept classic "X.Y.Z" or PEP 440 local/dev segments (e.g., 0.4.0.dev1, 0.4.0+local)
_PEP440ish = re.compile(r"\b\d+\.\d+\.\d+(?:[A-Za-z0-9_.+-]+)?\b")


class _OneEditAI:
    def generate_review(self, context):
        return "# Review\nWrite hello.py\n"

    def generate_edits(self, context):
        return json.dumps([{"path": "hello.py", "content": "print('hi')\n"}])


def test_module_entrypoint_version() -> None:
    """
    `python -m claude_farmer --version` should print a version and exit 0.
    """
    code, out = _run([sys.executable, "-m", "claude_farmer", "--version"])
    assert code == 0, "Module entrypoint should exit 0 for --version"
    assert out.startswith("claude-farmer v")
    assert _PEP440ish.search(out), f"Unexpected version output: {out!r}"


def test_console_script_help() -> None:
    """
    `claude-farmer --help` should render argparse help and exit 0.

    If the console script is not on PATH (e.g. tests run without an editable
    install), the test is skipped rather than failing.
    """
    exe = shutil.which("claude-farmer")
    if not exe:
        pytest.skip("console script `claude-farmer` not found on PATH")

    code, out = _run([exe, "--help"])
    assert code == 0, "Console script should exit 0 for --help"
    assert "claude-farmer" in out
    assert "patch" in out and "develop" in out


def test_version_subcommand(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.startswith("claude-farmer v")


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([]) == 2
    assert "usage:" in capsys.readouterr().out


def test_missing_goal_exits_1(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["patch", str(tmp_path), "--once", "--no-hooks"])
    assert code == 1
    err = capsys.readouterr().err
    assert "claude-farmer: Error - " in err
    assert "GOAL.md" in err


def test_missing_working_dir_exits_1(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["patch", str(tmp_path / "nope"), "--once"]) == 1
    assert "Working directory not found" in capsys.readouterr().err


def test_patch_once_dry_run(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    goal = tmp_path / "claude-farmer" / "GOAL.md"
    goal.parent.mkdir(parents=True)
    goal.write_text("Say hello.\n", encoding="utf-8")
    monkeypatch.setattr(cli, "create_ai", lambda *a, **kw: _OneEditAI())

    assert cli.main(["patch", str(tmp_path), "--once", "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert f"{tmp_path.name}: 1 iteration(s), 1 file(s) proposed, 0 commit(s)" in out
    assert not (tmp_path / "hello.py").exists()


def test_develop_single_pass_writes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    goal = tmp_path / "claude-farmer" / "GOAL.md"
    goal.parent.mkdir(parents=True)
    goal.write_text("Say hello.\n", encoding="utf-8")
    monkeypatch.setattr(cli, "create_ai", lambda *a, **kw: _OneEditAI())

    assert cli.main(["develop", str(tmp_path), "--no-hooks"]) == 0
    assert (tmp_path / "hello.py").read_text() == "print('hi')\n"
    assert "1 file(s) written, 0 commit(s)" in capsys.readouterr().out
