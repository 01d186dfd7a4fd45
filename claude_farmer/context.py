#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Working‑directory layout & context gathering
===============================================================================

Persisted layout (under the working directory)
----------------------------------------------
    claude-farmer/
      GOAL.md            operator‑authored goal (required, read‑only here)
      docs/REVIEW.md     latest review (overwritten each iteration)
      docs/DEVELOP.json  latest edits report (overwritten each iteration)
      logs/              one file per iteration, rotated
      scripts/           optional git hooks (git-patch-checkout.sh, …)

Context
-------
`gather_context()` builds a fresh, immutable `WorkingDirContext` each time it
is called: goal, optional review, and a sorted, de‑duplicated snapshot of the
source files matching the configured globs. The `claude-farmer/` subtree,
binary files, oversized files and anything resolving outside the working
directory are left out.

Environment
-----------
CLAUDE_FARMER_SOURCE_GLOBS    – comma‑separated globs (default: common sources)
CLAUDE_FARMER_MAX_FILE_BYTES  – per‑file size cap for the snapshot (default 200000)
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from claude_farmer import get_logger
from claude_farmer.fs_ops import FileSystem, LocalFileSystem, is_binary_file
from claude_farmer.models import FileSnapshot, WorkingDirContext
from claude_farmer.path_guard import is_within

log = get_logger(__name__)

FARMER_DIR = "claude-farmer"

_DEFAULT_GLOBS = (
    "**/*.py", "**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx", "**/*.go",
    "**/*.rs", "**/*.java", "**/*.rb", "**/*.sh", "**/*.toml", "**/*.json",
)


def _globs_from_env() -> Tuple[str, ...]:
    raw = os.getenv("CLAUDE_FARMER_SOURCE_GLOBS", "")
    globs = tuple(g.strip() for g in raw.split(",") if g.strip())
    return globs or _DEFAULT_GLOBS


DEFAULT_SOURCE_GLOBS: Tuple[str, ...] = _globs_from_env()
MAX_FILE_BYTES = int(os.getenv("CLAUDE_FARMER_MAX_FILE_BYTES", "200000"))


@dataclass(frozen=True)
class FarmerLayout:
    """Resolved paths of the `claude-farmer/` subtree for one working directory."""

    root: Path

    @classmethod
    def for_dir(cls, working_dir: Path) -> "FarmerLayout":
        return cls(Path(working_dir).expanduser().resolve())

    @property
    def name(self) -> str:
        return self.root.name

    @property
    def farmer_dir(self) -> Path:
        return self.root / FARMER_DIR

    @property
    def goal_path(self) -> Path:
        return self.farmer_dir / "GOAL.md"

    @property
    def docs_dir(self) -> Path:
        return self.farmer_dir / "docs"

    @property
    def review_path(self) -> Path:
        return self.docs_dir / "REVIEW.md"

    @property
    def report_path(self) -> Path:
        return self.docs_dir / "DEVELOP.json"

    @property
    def logs_dir(self) -> Path:
        return self.farmer_dir / "logs"

    @property
    def scripts_dir(self) -> Path:
        return self.farmer_dir / "scripts"

    @property
    def protected_prefixes(self) -> Tuple[str, ...]:
        """Root‑relative prefixes AI edits may never target."""
        return (f"{FARMER_DIR}/logs", f"{FARMER_DIR}/scripts", f"{FARMER_DIR}/GOAL.md")


def _collect_sources(
    layout: FarmerLayout,
    fs: FileSystem,
    globs: Sequence[str],
    max_bytes: int,
) -> Tuple[FileSnapshot, ...]:
    seen: Dict[Path, FileSnapshot] = {}
    for pattern in globs:
        for p in fs.list_files(layout.root, pattern):
            p = Path(p)
            if p in seen or not is_within(p, layout.root):
                continue
            try:
                rel = p.relative_to(layout.root)
            except ValueError:
                continue
            if rel.parts and rel.parts[0] == FARMER_DIR:
                continue
            try:
                size = p.stat().st_size
            except OSError:
                size = 0
            if size > max_bytes:
                log.debug("Skipping oversized file %s (%d bytes)", rel, size)
                continue
            if p.exists() and is_binary_file(p):
                continue
            seen[p] = FileSnapshot(path=p, content=fs.read_file(p))
    return tuple(seen[k] for k in sorted(seen))


def gather_context(
    working_dir: Path,
    fs: Optional[FileSystem] = None,
    *,
    source_globs: Optional[Sequence[str]] = None,
    max_file_bytes: int = MAX_FILE_BYTES,
) -> WorkingDirContext:
    """
    Read goal, optional review and source snapshot for *working_dir*.

    Raises
    ------
    FileNotFoundError
        If `claude-farmer/GOAL.md` is missing.
    """
    fs = fs or LocalFileSystem()
    layout = FarmerLayout.for_dir(working_dir)

    goal = FileSnapshot(layout.goal_path, fs.read_file(layout.goal_path))

    review: Optional[FileSnapshot] = None
    if fs.exists(layout.review_path):
        review = FileSnapshot(layout.review_path, fs.read_file(layout.review_path))

    sources = _collect_sources(layout, fs, source_globs or DEFAULT_SOURCE_GLOBS, max_file_bytes)
    log.debug(
        "Context gathered for %s: goal=%d chars, review=%s, sources=%d",
        layout.name,
        len(goal.content),
        "yes" if review else "no",
        len(sources),
    )
    return WorkingDirContext(
        name=layout.name,
        path=layout.root,
        goal=goal,
        review=review,
        sources=sources,
    )


__all__ = [
    "FARMER_DIR",
    "DEFAULT_SOURCE_GLOBS",
    "MAX_FILE_BYTES",
    "FarmerLayout",
    "gather_context",
]
