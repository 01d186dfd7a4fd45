#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Shared data models
===============================================================================

Small immutable carriers passed between the context gatherer, the AI
capability, the output parser, the path guard and the orchestrator.

* FileSnapshot      – (path, content) of one file as read from disk
* WorkingDirContext – the snapshot handed to the AI capability per call
* FileEdit          – an **untrusted** full‑file write proposed by the AI
* SafeEdit          – a FileEdit whose path has passed the path guard
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


@dataclass(frozen=True)
class FileSnapshot:
    path: Path
    content: str


@dataclass(frozen=True)
class WorkingDirContext:
    """
    Immutable snapshot of a working directory for one AI call.

    Built fresh each iteration by `context.gather_context`; use
    `dataclasses.replace` to derive a variant instead of mutating.
    """

    name: str
    path: Path
    goal: FileSnapshot
    review: Optional[FileSnapshot] = None
    sources: Tuple[FileSnapshot, ...] = field(default_factory=tuple)

    def relpath(self, p: Path) -> str:
        """POSIX path of *p* relative to the working directory (best effort)."""
        try:
            return Path(p).relative_to(self.path).as_posix()
        except ValueError:
            return Path(p).as_posix()


@dataclass(frozen=True)
class FileEdit:
    """A proposed full‑file overwrite. Both fields are untrusted."""

    path: str
    content: str


@dataclass(frozen=True)
class SafeEdit:
    """A FileEdit after validation: *path* is absolute and inside the root."""

    path: Path
    content: str
    relpath: str


__all__ = ["FileSnapshot", "WorkingDirContext", "FileEdit", "SafeEdit"]
