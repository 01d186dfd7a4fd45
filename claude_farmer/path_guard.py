#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Path Guard
===============================================================================

Purpose
-------
AI‑proposed paths are untrusted. Before anything is written, every edit is
resolved against the working directory and dropped unless it stays inside it.

Rules
-----
* Both inputs are resolved with `os.path.realpath` (collapses `..`, follows
  symlinks). Relative candidates are resolved against the root.
* Inside means: equal to the root, or a string prefix of `root + os.sep`.
  A bare prefix test would accept `/project-evil` for root `/project`.
* `filter_safe_edits` additionally refuses the root itself, existing
  directories, paths whose parent is an existing file, anything under
  `.git/`, and any *protected* prefixes supplied by the caller (e.g. the
  iteration log directory).

Rejections are never errors. They are reported back to the caller (for the
iteration log) and emitted as `[SECURITY]` warnings on the process logger.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from claude_farmer import get_logger
from claude_farmer.models import FileEdit, SafeEdit

log = get_logger(__name__)

SECURITY_PREFIX = "[SECURITY]"


def _resolve(candidate: str | os.PathLike[str], root: str) -> str:
    if os.path.isabs(candidate):
        return os.path.realpath(candidate)
    return os.path.realpath(os.path.join(root, candidate))


def is_within(candidate: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """
    True iff *candidate* resolves to *root* or to a path beneath it.

    Never raises; malformed input (e.g. embedded NUL bytes) is simply outside.
    """
    try:
        if "\x00" in os.fspath(candidate) or "\x00" in os.fspath(root):
            return False
        resolved_root = os.path.realpath(root)
        resolved = _resolve(candidate, resolved_root)
    except (OSError, ValueError, TypeError):
        return False
    return resolved == resolved_root or resolved.startswith(resolved_root + os.sep)


def _under_dot_git(rel: str) -> bool:
    parts = rel.split("/")
    return ".git" in parts


def _blocked_by_file(target: Path, root: str) -> bool:
    """True when an ancestor of *target* below *root* exists and is not a directory."""
    for parent in target.parents:
        if str(parent) == root:
            return False
        if parent.exists() and not parent.is_dir():
            return True
    return False


def filter_safe_edits(
    edits: Iterable[FileEdit],
    root: str | os.PathLike[str],
    *,
    protected: Sequence[str] = (),
) -> Tuple[List[SafeEdit], List[str]]:
    """
    Split *edits* into accepted `SafeEdit`s and rejected raw paths.

    Parameters
    ----------
    edits : Iterable[FileEdit]
        Parsed, untrusted edits in AI order.
    root : path‑like
        Working directory root.
    protected : Sequence[str]
        Root‑relative POSIX prefixes that must never be written
        (e.g. "claude-farmer/logs").

    Returns
    -------
    (accepted, rejected)
        Accepted edits keep their original relative order.
    """
    resolved_root = os.path.realpath(root)
    accepted: List[SafeEdit] = []
    rejected: List[str] = []

    for edit in edits:
        reason = None
        if not is_within(edit.path, resolved_root):
            reason = "outside working directory"
        else:
            target = Path(_resolve(edit.path, resolved_root))
            rel = target.relative_to(resolved_root).as_posix() if str(target) != resolved_root else ""
            if not rel:
                reason = "targets the working directory itself"
            elif target.is_dir():
                reason = "targets a directory"
            elif _blocked_by_file(target, resolved_root):
                reason = "a parent path is an existing file"
            elif _under_dot_git(rel):
                reason = "targets .git internals"
            elif any(rel == p or rel.startswith(p.rstrip("/") + "/") for p in protected):
                reason = "targets a protected path"

        if reason is not None:
            log.warning("%s Rejected edit path %r: %s", SECURITY_PREFIX, edit.path, reason)
            rejected.append(edit.path)
            continue

        accepted.append(SafeEdit(path=target, content=edit.content, relpath=rel))

    if rejected:
        log.info("Path guard: %d accepted, %d rejected", len(accepted), len(rejected))
    return accepted, rejected


__all__ = ["is_within", "filter_safe_edits", "SECURITY_PREFIX"]
