#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ AI Capability (Claude Code CLI / OpenAI Chat Completions)
===============================================================================

Contract
--------
The orchestrator only knows the `AICapability` protocol:

    generate_review(context) -> str   # REVIEW.md body, verbatim
    generate_edits(context)  -> str   # raw text; parsed by edit_parser

Any failure (non‑zero exit, transport error, timeout) is raised as `AIError`
with a descriptive message; `backoff.classify()` decides what it means.

Implementations
---------------
* ClaudeCodeAI  – runs `claude -p [--model M] "<prompt>"` in the working
                  directory. The child gets its own session so a terminal
                  Ctrl‑C reaches only this process; the shutdown token decides
                  what happens next. On timeout the child receives SIGTERM,
                  then SIGKILL after a grace period.
* OpenAIChatAI  – single‑turn Chat Completions via the official `openai` SDK
                  (imported lazily).

Environment variables
---------------------
CLAUDE_FARMER_CLAUDE_BIN     – Claude Code executable (default: claude)
CLAUDE_FARMER_MODEL          – model passed via --model (optional)
CLAUDE_FARMER_AI_TIMEOUT     – per‑call timeout in seconds (default 1800; 0 = none)
CLAUDE_FARMER_OPENAI_MODEL   – model for OpenAIChatAI (default gpt-4o)
OPENAI_API_KEY / OPENAI_BASE_URL – honoured by OpenAIChatAI
"""
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence

from claude_farmer import get_logger
from claude_farmer.backoff import ErrorKind, classify
from claude_farmer.models import WorkingDirContext
from claude_farmer.prompts import build_develop_prompt, build_review_prompt

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------
_API_KEY_VARS: Sequence[str] = ("CLAUDE_FARMER_OPENAI_API_KEY", "OPENAI_API_KEY")
_BASE_URL_VARS: Sequence[str] = ("CLAUDE_FARMER_OPENAI_BASE_URL", "OPENAI_BASE_URL", "OPENAI_API_BASE")


def _first_env(names: Iterable[str]) -> str | None:
    for name in names:
        val = os.getenv(name)
        if val:
            return val
    return None


DEFAULT_CLAUDE_BIN = os.getenv("CLAUDE_FARMER_CLAUDE_BIN", "claude")
DEFAULT_MODEL = os.getenv("CLAUDE_FARMER_MODEL") or None
DEFAULT_AI_TIMEOUT = int(os.getenv("CLAUDE_FARMER_AI_TIMEOUT", "1800"))
DEFAULT_OPENAI_MODEL = os.getenv("CLAUDE_FARMER_OPENAI_MODEL", "gpt-4o")
KILL_GRACE_SECONDS = 5
ULTRATHINK_PREFIX = "ultrathink: "


# ---------------------------------------------------------------------------
# Errors & protocol
# ---------------------------------------------------------------------------
class AIError(RuntimeError):
    """Failure reported by an AI capability; `.kind` is derived from the text."""

    @property
    def kind(self) -> ErrorKind:
        return classify(str(self))


class AICapability(Protocol):
    def generate_review(self, context: WorkingDirContext) -> str: ...
    def generate_edits(self, context: WorkingDirContext) -> str: ...


# ---------------------------------------------------------------------------
# Claude Code subprocess
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ProcessResult:
    output: str
    exit_code: int
    success: bool
    timed_out: bool = False


@dataclass(frozen=True)
class ClaudeCodeOptions:
    prompt: str
    cwd: Optional[Path] = None
    model: Optional[str] = None
    ultrathink: bool = False
    timeout_s: Optional[int] = None
    binary: str = DEFAULT_CLAUDE_BIN


def build_claude_command(options: ClaudeCodeOptions) -> List[str]:
    """argv for headless Claude Code; ultrathink is a prompt prefix, not a flag."""
    cmd = [options.binary, "-p"]
    if options.model:
        cmd += ["--model", options.model]
    prompt = f"{ULTRATHINK_PREFIX}{options.prompt}" if options.ultrathink else options.prompt
    cmd.append(prompt)
    return cmd


def run_claude_code(options: ClaudeCodeOptions) -> ProcessResult:
    """
    Run Claude Code in print mode and collect its output.

    Returns
    -------
    ProcessResult
        `output` is stdout, or stderr when stdout is empty.

    Raises
    ------
    AIError
        If the executable cannot be started.
    """
    cmd = build_claude_command(options)
    log.debug("Running %s -p (%d prompt chars, cwd=%s)", options.binary, len(options.prompt), options.cwd)
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(options.cwd) if options.cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        raise AIError(f"Claude Code CLI not found: {options.binary}") from exc
    except OSError as exc:
        raise AIError(f"Failed to start Claude Code: {exc}") from exc

    timeout = options.timeout_s or None
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.terminate()
        try:
            proc.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
        log.warning("Claude Code timed out after %ss; process terminated.", timeout)
        return ProcessResult(
            output=f"Process timed out after {int(timeout * 1000)}ms",
            exit_code=1,
            success=False,
            timed_out=True,
        )

    code = proc.returncode
    return ProcessResult(output=stdout or stderr or "", exit_code=code, success=code == 0)


@dataclass
class ClaudeCodeAI:
    """`AICapability` backed by the Claude Code CLI in headless mode."""

    cwd: Optional[Path] = None
    ultrathink: bool = False
    model: Optional[str] = DEFAULT_MODEL
    timeout_s: Optional[int] = DEFAULT_AI_TIMEOUT
    binary: str = DEFAULT_CLAUDE_BIN

    def _call(self, prompt: str) -> str:
        result = run_claude_code(
            ClaudeCodeOptions(
                prompt=prompt,
                cwd=self.cwd,
                model=self.model,
                ultrathink=self.ultrathink,
                timeout_s=self.timeout_s,
                binary=self.binary,
            )
        )
        if not result.success:
            if result.timed_out:
                raise AIError(result.output)
            raise AIError(f"Claude Code failed: {result.output.strip()}")
        return result.output

    def generate_review(self, context: WorkingDirContext) -> str:
        return self._call(build_review_prompt(context))

    def generate_edits(self, context: WorkingDirContext) -> str:
        output = self._call(build_develop_prompt(context))
        log.debug("Develop output: %d chars; head=%r", len(output), output[:200])
        return output


# ---------------------------------------------------------------------------
# OpenAI Chat Completions
# ---------------------------------------------------------------------------
_SYSTEM_PROMPT = (
    "You are an autonomous software engineer working inside one project directory. "
    "Follow the instructions in each request exactly and keep answers self-contained."
)


@dataclass
class OpenAIChatAI:
    """
    `AICapability` backed by the OpenAI Chat Completions API.

    Each call is a fresh single‑turn conversation (system + user); the working
    directory context is re‑sent every time so no history is kept.
    """

    model: str = DEFAULT_OPENAI_MODEL
    timeout_s: int = DEFAULT_AI_TIMEOUT
    _sdk: Any = field(default=None, repr=False)

    def _ensure_sdk(self) -> Any:
        if self._sdk is not None:
            return self._sdk
        api_key = _first_env(_API_KEY_VARS)
        if not api_key:
            raise AIError("OPENAI_API_KEY is not set in the environment.")
        from openai import OpenAI  # lazy: only needed for this capability

        self._sdk = OpenAI(api_key=api_key, base_url=_first_env(_BASE_URL_VARS))
        log.info("OpenAI client initialised | model=%s | timeout=%ss", self.model, self.timeout_s)
        return self._sdk

    def _call(self, prompt: str) -> str:
        sdk = self._ensure_sdk()
        try:
            resp = sdk.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                timeout=self.timeout_s,
            )
        except Exception as exc:
            raise AIError(f"OpenAI request failed: {exc}") from exc
        try:
            return resp.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise AIError(f"Malformed API response: {exc}") from exc

    def generate_review(self, context: WorkingDirContext) -> str:
        return self._call(build_review_prompt(context))

    def generate_edits(self, context: WorkingDirContext) -> str:
        return self._call(build_develop_prompt(context))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
AI_BACKENDS = ("claude", "openai")


def create_ai(
    backend: str,
    *,
    cwd: Optional[Path] = None,
    model: Optional[str] = None,
    timeout_s: Optional[int] = None,
    ultrathink: bool = False,
) -> AICapability:
    """Instantiate the capability named by *backend* ("claude" | "openai")."""
    timeout = DEFAULT_AI_TIMEOUT if timeout_s is None else timeout_s
    if backend == "claude":
        return ClaudeCodeAI(cwd=cwd, ultrathink=ultrathink, model=model or DEFAULT_MODEL, timeout_s=timeout)
    if backend == "openai":
        if ultrathink:
            log.info("--ultrathink has no effect with the openai backend.")
        return OpenAIChatAI(model=model or DEFAULT_OPENAI_MODEL, timeout_s=timeout)
    raise ValueError(f"Unknown AI backend: {backend!r} (expected one of {', '.join(AI_BACKENDS)})")


__all__ = [
    "AIError",
    "AICapability",
    "ProcessResult",
    "ClaudeCodeOptions",
    "build_claude_command",
    "run_claude_code",
    "ClaudeCodeAI",
    "OpenAIChatAI",
    "AI_BACKENDS",
    "create_ai",
]
