#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Filesystem collaborator
===============================================================================

Purpose
-------
The orchestrator, context gatherer and iteration logger only touch disk
through the small `FileSystem` protocol below, so tests can substitute an
in‑memory fake and the real implementation stays in one place.

Operations
----------
* read_file(path)                – UTF‑8 (lossy), EOL normalized to '\n'
* write_file(path, content)      – atomic (same‑dir temp + fsync + os.replace)
* append_file(path, content)     – append + flush + fsync
* exists(path)
* list_files(directory, pattern) – sorted absolute file paths; '**' recurses;
                                   vendor/transient directories are skipped
* mkdir(path)                    – recursive, idempotent
* delete_file(path)

Each call is atomic at single‑file granularity; nothing spans files.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Protocol

from claude_farmer import get_logger

log = get_logger(__name__)

# Transient / build / vendor directories never listed
SKIP_DIRS = frozenset({
    ".git", ".svn", ".hg", ".idea", ".vscode", ".pytest_cache",
    "__pycache__", "dist", "build", "node_modules", ".venv", "venv", ".mypy_cache",
    ".tox", ".cache", ".next", ".nuxt", "coverage", ".ruff_cache",
    "target", "htmlcov",
})

# Heuristic binary extensions (short-circuit before sniff)
_BINARY_EXTS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".avif",
    ".tar", ".gz", ".tgz", ".zip", ".7z", ".rar", ".xz", ".bz2", ".zst",
    ".pdf", ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp3", ".aac", ".flac", ".wav",
    ".mp4", ".mov", ".avi", ".mkv", ".webm",
    ".bin", ".exe", ".dll", ".dylib", ".so", ".class", ".pyc",
}

_LANG_BY_EXT = {
    ".py": "python", ".pyi": "python",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".go": "go", ".rs": "rust", ".java": "java", ".kt": "kotlin",
    ".swift": "swift", ".rb": "ruby", ".php": "php",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".hpp": "cpp", ".cc": "cpp", ".cs": "csharp",
    ".sh": "bash", ".bash": "bash", ".zsh": "bash",
    ".toml": "toml", ".ini": "ini", ".cfg": "ini",
    ".json": "json", ".yaml": "yaml", ".yml": "yaml",
    ".sql": "sql", ".html": "html", ".css": "css", ".md": "markdown",
}


def language_for(path: Path) -> str:
    """Fence tag for *path* in prompts ("" when unknown)."""
    return _LANG_BY_EXT.get(Path(path).suffix.lower(), "")


def is_binary_file(path: Path, sniff_bytes: int = 4096) -> bool:
    """
    Heuristic binary detector: extension short‑circuit, then NUL byte or
    >30% control characters in the first *sniff_bytes*.
    Unreadable files count as binary.
    """
    if path.suffix.lower() in _BINARY_EXTS:
        return True
    try:
        with path.open("rb") as f:
            chunk = f.read(sniff_bytes)
    except OSError:
        return True
    if not chunk:
        return False
    if b"\x00" in chunk:
        return True
    ctrl = sum(1 for b in chunk if b < 32 and b not in (9, 10, 13))
    return (ctrl / len(chunk)) > 0.30


class FileSystem(Protocol):
    def read_file(self, path: Path) -> str: ...
    def write_file(self, path: Path, content: str) -> None: ...
    def append_file(self, path: Path, content: str) -> None: ...
    def exists(self, path: Path) -> bool: ...
    def list_files(self, directory: Path, pattern: str = "**/*") -> List[Path]: ...
    def mkdir(self, path: Path) -> None: ...
    def delete_file(self, path: Path) -> None: ...


class LocalFileSystem:
    """Real filesystem implementation of the `FileSystem` protocol."""

    def read_file(self, path: Path) -> str:
        p = Path(path)
        try:
            data = p.read_bytes()
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"File not found: {p}") from exc
        text = data.decode("utf-8", errors="replace")
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def write_file(self, path: Path, content: str) -> None:
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=str(dest.parent), delete=False) as tmp:
            tmp.write(content.encode("utf-8"))
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = Path(tmp.name)
        try:
            os.replace(tmp_path, dest)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        log.debug("Wrote %s (%d chars)", dest, len(content))

    def append_file(self, path: Path, content: str) -> None:
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def list_files(self, directory: Path, pattern: str = "**/*") -> List[Path]:
        base = Path(directory)
        if not base.is_dir():
            return []
        out: List[Path] = []
        for p in base.glob(pattern):
            try:
                rel_parts = p.relative_to(base).parts
            except ValueError:
                continue
            if any(part in SKIP_DIRS for part in rel_parts[:-1]):
                continue
            if p.is_file():
                out.append(p.resolve())
        return sorted(set(out))

    def mkdir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def delete_file(self, path: Path) -> None:
        Path(path).unlink()


__all__ = ["FileSystem", "LocalFileSystem", "SKIP_DIRS", "is_binary_file", "language_for"]
