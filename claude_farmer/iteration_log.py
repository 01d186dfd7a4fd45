#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Iteration Logger (durable, rotated audit trail)
===============================================================================

Purpose
-------
Every iteration gets one file under `<working_dir>/claude-farmer/logs/`,
named by its start time (`YYYYMMDD_HHMMSS.log`). This is the operator's
audit trail for unattended overnight runs, so:

* each `append()` is flushed **and fsynced** before returning;
* lines are `[<ISO‑8601 UTC>] message`, strictly in append order;
* `finalize()` writes exactly one completion marker, then rotates the
  directory down to the retention limit (oldest first, by the timestamp in
  the filename). Rotation problems are logged and swallowed.

Open file handles are held in a small LRU map owned by the logger; evicted
handles are closed immediately.

Environment
-----------
CLAUDE_FARMER_LOG_RETENTION – number of iteration logs kept (default 100)
"""
from __future__ import annotations

import enum
import os
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, TextIO

from claude_farmer import get_logger
from claude_farmer.backoff import format_duration
from claude_farmer.fs_ops import FileSystem, LocalFileSystem
from claude_farmer.models import SafeEdit
from claude_farmer.path_guard import SECURITY_PREFIX

log = get_logger(__name__)

MAX_LOG_FILES = int(os.getenv("CLAUDE_FARMER_LOG_RETENTION", "100"))
MAX_OPEN_HANDLES = 4

_LOG_NAME_RE = re.compile(r"^(\d{8}_\d{6})(?:_(\d+))?\.log$")


class IterationStatus(enum.Enum):
    COMPLETED = "completed"
    NO_CHANGE = "no_change"
    ERROR = "error"
    INTERRUPTED = "interrupted"


_FINAL_MARKERS = {
    IterationStatus.COMPLETED: "completed in",
    IterationStatus.NO_CHANGE: "completed in",
    IterationStatus.ERROR: "failed after",
    IterationStatus.INTERRUPTED: "interrupted after",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class IterationRecord:
    """Append‑only record of one iteration; finalized exactly once."""

    iteration: int
    started_at: datetime
    path: Path
    lines: List[str] = field(default_factory=list)
    status: Optional[IterationStatus] = None

    @property
    def finalized(self) -> bool:
        return self.status is not None


class _HandleCache:
    """Bounded LRU of open append handles keyed by path; closes on evict."""

    def __init__(self, capacity: int) -> None:
        self.capacity = max(1, capacity)
        self._handles: "OrderedDict[Path, TextIO]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, path: Path) -> bool:
        return path in self._handles

    def get(self, path: Path) -> TextIO:
        fh = self._handles.get(path)
        if fh is not None:
            self._handles.move_to_end(path)
            return fh
        fh = open(path, "a", encoding="utf-8")
        self._handles[path] = fh
        while len(self._handles) > self.capacity:
            old_path, old = self._handles.popitem(last=False)
            old.close()
            log.debug("Closed evicted log handle %s", old_path)
        return fh

    def close(self, path: Path) -> None:
        fh = self._handles.pop(path, None)
        if fh is not None:
            fh.close()

    def close_all(self) -> None:
        while self._handles:
            _, fh = self._handles.popitem(last=False)
            fh.close()


class IterationLogger:
    """
    Creates, appends to, finalizes and rotates per‑iteration log files.

    Parameters
    ----------
    log_dir : Path
        Destination directory (created on first `begin`).
    fs : FileSystem | None
        Storage collaborator used for directory creation, listing and
        deletion. Defaults to the local filesystem.
    retention : int
        Maximum number of `*.log` records kept after rotation.
    max_open_handles : int
        Capacity of the handle LRU.
    clock : callable | None
        Returns an aware `datetime`; injectable for tests.
    """

    def __init__(
        self,
        log_dir: Path,
        fs: Optional[FileSystem] = None,
        *,
        retention: int = MAX_LOG_FILES,
        max_open_handles: int = MAX_OPEN_HANDLES,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.fs = fs or LocalFileSystem()
        self.retention = retention
        self._clock = clock or _utc_now
        self._handles = _HandleCache(max_open_handles)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def begin(self, iteration: int) -> IterationRecord:
        self.fs.mkdir(self.log_dir)
        started = self._clock()
        stamp = started.astimezone().strftime("%Y%m%d_%H%M%S")
        path = self.log_dir / f"{stamp}.log"
        n = 1
        while self.fs.exists(path):
            path = self.log_dir / f"{stamp}_{n}.log"
            n += 1

        record = IterationRecord(iteration=iteration, started_at=started, path=path)
        self.append(record, f"=== Iteration {iteration} started at {_iso(started)} ===")
        log.debug("Iteration %d log: %s", iteration, path)
        return record

    def append(self, record: IterationRecord, message: str) -> None:
        """Append one timestamped line; durable before return."""
        if record.finalized:
            raise ValueError(f"Iteration {record.iteration} log is already finalized")
        line = f"[{_iso(self._clock())}] {message}"
        fh = self._handles.get(record.path)
        fh.write(line + "\n")
        fh.flush()
        os.fsync(fh.fileno())
        record.lines.append(line)
        log.debug("[iteration %d] %s", record.iteration, message)

    def finalize(
        self,
        record: IterationRecord,
        status: IterationStatus = IterationStatus.COMPLETED,
    ) -> Path:
        """
        Write the completion marker, close the file and rotate the archive.

        A second call is a no‑op returning the same path.
        """
        if record.finalized:
            return record.path
        elapsed_ms = int((self._clock() - record.started_at).total_seconds() * 1000)
        self.append(
            record,
            f"=== Iteration {record.iteration} {_FINAL_MARKERS[status]} {elapsed_ms}ms ===",
        )
        record.status = status
        self._handles.close(record.path)
        self.rotate(keep=(record.path,))
        return record.path

    def close(self) -> None:
        self._handles.close_all()

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #
    @staticmethod
    def _sort_key(path: Path):
        m = _LOG_NAME_RE.match(path.name)
        if m is None:
            return (path.name, 0)
        return (m.group(1), int(m.group(2) or 0))

    def rotate(self, keep: Iterable[Path] = ()) -> int:
        """
        Delete the oldest records beyond `retention`. Never raises.

        Returns the number of files deleted.
        """
        deleted = 0
        try:
            protected = {Path(p).resolve() for p in keep}
            records = [
                p for p in self.fs.list_files(self.log_dir, "*.log")
                if _LOG_NAME_RE.match(Path(p).name)
            ]
            excess = len(records) - self.retention
            if excess <= 0:
                return 0
            for p in sorted(records, key=self._sort_key):
                if excess <= 0:
                    break
                if Path(p).resolve() in protected:
                    continue
                try:
                    self.fs.delete_file(p)
                    deleted += 1
                    excess -= 1
                except OSError as exc:
                    log.debug("Log rotation could not delete %s: %s", p, exc)
        except Exception as exc:  # rotation must never fail an iteration
            log.debug("Log rotation skipped: %s", exc)
        if deleted:
            log.debug("Log rotation removed %d old record(s) from %s", deleted, self.log_dir)
        return deleted

    # ------------------------------------------------------------------ #
    # Convenience lines
    # ------------------------------------------------------------------ #
    def log_review(self, record: IterationRecord, review_path: Path, chars: int) -> None:
        self.append(record, f"Review completed: {review_path} ({chars} chars)")

    def log_develop(self, record: IterationRecord, edits: Sequence[SafeEdit]) -> None:
        self.append(record, f"Develop completed: {len(edits)} file(s) edited")
        for edit in edits:
            self.append(record, f"  - {edit.relpath} ({len(edit.content)} chars)")

    def log_commit(self, record: IterationRecord, message: str) -> None:
        self.append(record, f"Committed: {message}")

    def log_no_changes(self, record: IterationRecord) -> None:
        self.append(record, "No changes to commit")

    def log_sleep(self, record: IterationRecord, duration_ms: int) -> None:
        self.append(record, f"Sleeping for {format_duration(duration_ms)} before retry...")

    def log_error(self, record: IterationRecord, message: str) -> None:
        self.append(record, f"ERROR: {message}")

    def log_security(self, record: IterationRecord, message: str) -> None:
        self.append(record, f"{SECURITY_PREFIX} {message}")


__all__ = [
    "MAX_LOG_FILES",
    "IterationStatus",
    "IterationRecord",
    "IterationLogger",
]
