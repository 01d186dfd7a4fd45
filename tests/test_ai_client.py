#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
AI capability ▸ Claude Code subprocess & OpenAI adapter (offline)
===============================================================================

Goals
-----
* The Claude Code invocation is `claude -p [--model M] "<prompt>"`, with the
  ultrathink prefix applied to the prompt.
* Non‑zero exits, timeouts and a missing binary surface as `AIError` whose
  `.kind` comes from the message text.
* The OpenAI capability sends a single‑turn chat and wraps SDK failures.

A tiny shell script stands in for the `claude` executable; no network.
"""
from __future__ import annotations

import logging
import shutil
import stat
from pathlib import Path
from types import SimpleNamespace

import pytest

from claude_farmer.ai_client import (
    AIError,
    ClaudeCodeAI,
    ClaudeCodeOptions,
    OpenAIChatAI,
    build_claude_command,
    create_ai,
)
from claude_farmer.backoff import ErrorKind
from claude_farmer.models import FileSnapshot, WorkingDirContext

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="sh not installed")


def _context(root: Path) -> WorkingDirContext:
    return WorkingDirContext(
        name=root.name,
        path=root,
        goal=FileSnapshot(root / "claude-farmer" / "GOAL.md", "Build it."),
    )


def _fake_claude(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-claude"
    script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


# -----------------------------------------------------------------------------
# Command line
# -----------------------------------------------------------------------------
def test_command_shape() -> None:
    assert build_claude_command(ClaudeCodeOptions(prompt="hi"))[1:] == ["-p", "hi"]
    cmd = build_claude_command(ClaudeCodeOptions(prompt="hi", model="opus", ultrathink=True, binary="claude"))
    assert cmd == ["claude", "-p", "--model", "opus", "ultrathink: hi"]


# -----------------------------------------------------------------------------
# Claude Code subprocess
# -----------------------------------------------------------------------------
@needs_sh
def test_review_returns_stdout(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, 'echo "# Review"\necho "args: $1"\n')
    ai = ClaudeCodeAI(cwd=tmp_path, binary=binary, model=None, timeout_s=30)
    out = ai.generate_review(_context(tmp_path))
    assert out.splitlines() == ["# Review", "args: -p"]


@needs_sh
def test_nonzero_exit_raises_with_output(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, 'echo "Spending cap reached" >&2\nexit 1\n')
    ai = ClaudeCodeAI(cwd=tmp_path, binary=binary, model=None, timeout_s=30)
    with pytest.raises(AIError) as info:
        ai.generate_edits(_context(tmp_path))
    assert str(info.value) == "Claude Code failed: Spending cap reached"
    assert info.value.kind is ErrorKind.RATE_LIMITED


@needs_sh
def test_timeout_is_transient(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, "exec sleep 30\n")
    ai = ClaudeCodeAI(cwd=tmp_path, binary=binary, model=None, timeout_s=1)
    with pytest.raises(AIError) as info:
        ai.generate_review(_context(tmp_path))
    assert str(info.value) == "Process timed out after 1000ms"
    assert info.value.kind is ErrorKind.TRANSIENT


def test_missing_binary_is_fatal(tmp_path: Path) -> None:
    ai = ClaudeCodeAI(cwd=tmp_path, binary=str(tmp_path / "no-such-claude"), model=None)
    with pytest.raises(AIError, match="Claude Code CLI not found") as info:
        ai.generate_review(_context(tmp_path))
    assert info.value.kind is ErrorKind.FATAL


# -----------------------------------------------------------------------------
# OpenAI adapter
# -----------------------------------------------------------------------------
class _FakeCompletions:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _sdk(completions: _FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_openai_single_turn(tmp_path: Path) -> None:
    completions = _FakeCompletions(reply='[{"path": "a.py", "content": "x"}]')
    ai = OpenAIChatAI(model="gpt-test", timeout_s=5, _sdk=_sdk(completions))
    assert ai.generate_edits(_context(tmp_path)).startswith("[{")
    (call,) = completions.calls
    assert call["model"] == "gpt-test"
    assert [m["role"] for m in call["messages"]] == ["system", "user"]
    assert "Build it." in call["messages"][1]["content"]


def test_openai_errors_are_wrapped(tmp_path: Path) -> None:
    completions = _FakeCompletions(error=RuntimeError("Connection error."))
    ai = OpenAIChatAI(_sdk=_sdk(completions))
    with pytest.raises(AIError) as info:
        ai.generate_review(_context(tmp_path))
    assert info.value.kind is ErrorKind.TRANSIENT


def test_openai_requires_api_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for var in ("CLAUDE_FARMER_OPENAI_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    with pytest.raises(AIError, match="OPENAI_API_KEY"):
        OpenAIChatAI().generate_review(_context(tmp_path))


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------
def test_create_ai(tmp_path: Path) -> None:
    claude = create_ai("claude", cwd=tmp_path, model="sonnet", timeout_s=10, ultrathink=True)
    assert isinstance(claude, ClaudeCodeAI)
    assert (claude.model, claude.timeout_s, claude.ultrathink) == ("sonnet", 10, True)
    assert isinstance(create_ai("openai"), OpenAIChatAI)
    with pytest.raises(ValueError):
        create_ai("bard")
