#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Commit collaborator (git + optional hook scripts)
===============================================================================

Responsibilities
----------------
* Run the optional operator hooks in `claude-farmer/scripts/`:
    - `git-patch-checkout.sh`          at the start of every iteration
    - `git-patch-complete.sh "<msg>"`  instead of the built‑in commit
  Hook output is returned so the orchestrator can put it in the iteration log.
* Build the commit message: `claude-farmer: updated a, b, c +N more`.
* Commit **only** the files the iteration wrote (path‑scoped add/commit);
  unrelated work in the tree is left alone.

Design notes
------------
* All git interactions go through `_git()` which logs commands and captures
  output into a `GitRunResult`.
* A working directory that is not a git repository is not an error: commit
  becomes a logged no‑op returning None.
"""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from claude_farmer import get_logger
from claude_farmer.context import FarmerLayout

log = get_logger(__name__)

COMMIT_SUMMARY_LIMIT = 3
CHECKOUT_HOOK = "git-patch-checkout.sh"
COMPLETE_HOOK = "git-patch-complete.sh"
HOOK_TIMEOUT_S = 300


@dataclass(frozen=True)
class GitRunResult:
    """Simple carrier for git / hook command results."""
    ok: bool
    code: int
    out: str
    err: str


def build_commit_message(paths: Sequence[str]) -> str:
    """
    `claude-farmer: updated a, b, c +N more` using file basenames.

    >>> build_commit_message(["src/a.py", "b.py"])
    'claude-farmer: updated a.py, b.py'
    """
    names = [Path(p).name for p in paths]
    shown = ", ".join(names[:COMMIT_SUMMARY_LIMIT])
    extra = len(names) - COMMIT_SUMMARY_LIMIT
    suffix = f" +{extra} more" if extra > 0 else ""
    return f"claude-farmer: updated {shown}{suffix}"


class GitOps:
    """
    Thin wrapper around `git` and the hook scripts for one working directory.
    """

    def __init__(self, working_dir: Path):
        self.layout = FarmerLayout.for_dir(working_dir)
        self.repo = self.layout.root

    # --------------------------------------------------------------------- #
    # Core plumbing
    # --------------------------------------------------------------------- #
    def _git(self, *args: str, check: bool = False) -> GitRunResult:
        """
        Run `git -C <repo> <args...>` and return a structured result.

        Raises
        ------
        RuntimeError
            If git cannot be executed, or on non‑zero exit when *check* is set.
        """
        cmd = ["git", "-C", str(self.repo), *args]
        log.debug("git %s", " ".join(args))
        try:
            res = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as exc:
            log.exception("Failed to execute git: %s", exc)
            raise RuntimeError(f"Failed to execute git: {exc}") from exc

        ok = res.returncode == 0
        out = (res.stdout or "").strip()
        err = (res.stderr or "").strip()

        if check and not ok:
            msg = f"git {' '.join(args)} failed (rc={res.returncode}): {err or out}"
            log.error(msg)
            raise RuntimeError(msg)

        if not ok:
            log.debug("git returned rc=%s | stdout=%r | stderr=%r", res.returncode, out, err)

        return GitRunResult(ok=ok, code=res.returncode, out=out, err=err)

    def is_repo(self) -> bool:
        """True if the working directory is inside a git work tree."""
        try:
            res = self._git("rev-parse", "--is-inside-work-tree")
        except RuntimeError:
            return False
        return res.ok and res.out == "true"

    # --------------------------------------------------------------------- #
    # Hooks
    # --------------------------------------------------------------------- #
    def hook_path(self, name: str) -> Path:
        return self.layout.scripts_dir / name

    def has_hook(self, name: str) -> bool:
        return self.hook_path(name).is_file()

    def run_hook(self, name: str, *args: str) -> Optional[str]:
        """
        Run `bash claude-farmer/scripts/<name> args...` from the working dir.

        Returns
        -------
        str | None
            Combined stdout/stderr (stripped), or None when the hook is absent.

        Raises
        ------
        RuntimeError
            If the hook exits non‑zero or cannot be started.
        """
        script = self.hook_path(name)
        if not script.is_file():
            return None
        log.info("Running hook %s", name)
        try:
            res = subprocess.run(
                ["bash", str(script), *args],
                cwd=str(self.repo),
                capture_output=True,
                text=True,
                timeout=HOOK_TIMEOUT_S,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RuntimeError(f"Hook {name} failed: {exc}") from exc
        output = "\n".join(s for s in ((res.stdout or "").strip(), (res.stderr or "").strip()) if s)
        if res.returncode != 0:
            raise RuntimeError(f"Hook {name} failed (rc={res.returncode}): {output}")
        return output

    # --------------------------------------------------------------------- #
    # Commit
    # --------------------------------------------------------------------- #
    def commit(
        self,
        paths: Sequence[str],
        message: Optional[str] = None,
        *,
        on_output: Optional[Callable[[str], None]] = None,
    ) -> Optional[str]:
        """
        Commit exactly *paths* (working‑dir relative).

        Uses `git-patch-complete.sh "<message>"` when present, otherwise a
        path‑scoped `git add` + `git commit --only`. Hook output, if any, is
        passed to *on_output*.

        Returns
        -------
        str | None
            The commit message used, or None when nothing was committed
            (no paths, not a repository, or nothing staged).
        """
        if not paths:
            return None
        message = message or build_commit_message(paths)

        if self.has_hook(COMPLETE_HOOK):
            output = self.run_hook(COMPLETE_HOOK, message)
            if output:
                log.info("Script output: %s", output)
                if on_output is not None:
                    on_output(output)
            return message

        if not self.is_repo():
            log.info("Not a git repository (%s); skipping commit.", self.repo)
            return None

        self._git("add", "--", *paths, check=True)
        staged = self._git("diff", "--cached", "--name-only", "--", *paths)
        if staged.ok and not staged.out:
            log.info("Nothing staged for %d path(s); skipping commit.", len(paths))
            return None
        self._git("commit", "-m", message, "--only", "--", *paths, check=True)
        log.info("Committed %d file(s): %s", len(paths), message)
        return message


__all__ = [
    "COMMIT_SUMMARY_LIMIT",
    "CHECKOUT_HOOK",
    "COMPLETE_HOOK",
    "GitRunResult",
    "GitOps",
    "build_commit_message",
]
