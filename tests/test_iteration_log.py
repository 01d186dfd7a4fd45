#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Iteration logger ▸ durable append, single finalize, rotation, handle LRU
===============================================================================

Goals
-----
* One file per iteration, named by start time; same‑second collisions get a
  numeric suffix.
* Lines are timestamped and kept in append order; appending to a finalized
  record is refused.
* `finalize` writes exactly one marker (status dependent) and rotates the
  directory down to the retention limit, oldest first.
* Rotation never raises.
* The handle cache closes evicted handles.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from claude_farmer.iteration_log import IterationLogger, IterationStatus, _HandleCache
from claude_farmer.models import SafeEdit

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

_LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\] ")


class TickingClock:
    """Aware UTC clock advancing by *step* on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(milliseconds=250)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


def _fixed(ts: datetime):
    return lambda: ts


@pytest.fixture()
def log_dir(tmp_path: Path) -> Path:
    return tmp_path / "claude-farmer" / "logs"


# -----------------------------------------------------------------------------
# begin / append / finalize
# -----------------------------------------------------------------------------
def test_lifecycle_writes_ordered_timestamped_lines(log_dir: Path) -> None:
    ilog = IterationLogger(log_dir, clock=TickingClock(datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)))
    record = ilog.begin(1)
    ilog.log_review(record, Path("claude-farmer/docs/REVIEW.md"), 42)
    ilog.log_develop(record, [SafeEdit(Path("/p/a.py"), "abc", "a.py")])
    ilog.log_commit(record, "claude-farmer: updated a.py")
    path = ilog.finalize(record)

    assert re.match(r"^\d{8}_\d{6}\.log$", path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert all(_LINE_RE.match(line) for line in lines)
    bodies = [_LINE_RE.sub("", line) for line in lines]
    assert bodies[0].startswith("=== Iteration 1 started at 2030-01-02T03:04:05.000Z")
    assert bodies[1:5] == [
        "Review completed: claude-farmer/docs/REVIEW.md (42 chars)",
        "Develop completed: 1 file(s) edited",
        "  - a.py (3 chars)",
        "Committed: claude-farmer: updated a.py",
    ]
    assert re.match(r"^=== Iteration 1 completed in \d+ms ===$", bodies[-1])
    assert record.lines == lines


@pytest.mark.parametrize(
    "status, marker",
    [
        (IterationStatus.NO_CHANGE, "completed in"),
        (IterationStatus.ERROR, "failed after"),
        (IterationStatus.INTERRUPTED, "interrupted after"),
    ],
)
def test_marker_depends_on_status(log_dir: Path, status: IterationStatus, marker: str) -> None:
    ilog = IterationLogger(log_dir)
    record = ilog.begin(7)
    path = ilog.finalize(record, status)
    assert f"=== Iteration 7 {marker} " in path.read_text(encoding="utf-8").splitlines()[-1]
    assert record.status is status


def test_finalize_is_idempotent_and_append_after_is_refused(log_dir: Path) -> None:
    ilog = IterationLogger(log_dir)
    record = ilog.begin(1)
    first = ilog.finalize(record)
    second = ilog.finalize(record, IterationStatus.ERROR)
    assert first == second
    text = first.read_text(encoding="utf-8")
    assert text.count("=== Iteration 1 completed in") == 1
    assert "failed after" not in text

    with pytest.raises(ValueError):
        ilog.append(record, "late line")


def test_same_second_collision_gets_suffix(log_dir: Path) -> None:
    ilog = IterationLogger(log_dir, clock=_fixed(datetime(2030, 5, 5, 5, 5, 5, tzinfo=timezone.utc)))
    a = ilog.begin(1)
    b = ilog.begin(2)
    assert a.path != b.path
    assert b.path.name == a.path.stem + "_1.log"
    ilog.close()


def test_sleep_error_and_security_lines(log_dir: Path) -> None:
    ilog = IterationLogger(log_dir)
    record = ilog.begin(1)
    ilog.log_error(record, "boom")
    ilog.log_security(record, "Rejected edit outside allowed paths: ../x")
    ilog.log_no_changes(record)
    ilog.log_sleep(record, 120_000)
    ilog.finalize(record, IterationStatus.NO_CHANGE)
    bodies = [_LINE_RE.sub("", line) for line in record.lines]
    assert "ERROR: boom" in bodies
    assert "[SECURITY] Rejected edit outside allowed paths: ../x" in bodies
    assert "No changes to commit" in bodies
    assert "Sleeping for 2 minute(s) before retry..." in bodies


# -----------------------------------------------------------------------------
# Rotation
# -----------------------------------------------------------------------------
def test_rotation_keeps_newest_hundred(log_dir: Path) -> None:
    log_dir.mkdir(parents=True)
    for i in range(105):
        (log_dir / f"20240101_{i:06d}.log").write_text("old\n", encoding="utf-8")
    (log_dir / "notes.txt").write_text("not a record\n", encoding="utf-8")

    ilog = IterationLogger(log_dir, retention=100, clock=TickingClock(datetime(2030, 1, 1, tzinfo=timezone.utc)))
    record = ilog.begin(1)
    ilog.finalize(record)

    remaining = sorted(p.name for p in log_dir.glob("*.log"))
    assert len(remaining) == 100
    assert record.path.name in remaining
    for i in range(6):
        assert f"20240101_{i:06d}.log" not in remaining
    assert "20240101_000006.log" in remaining
    assert (log_dir / "notes.txt").exists()


def test_rotation_never_raises(log_dir: Path) -> None:
    class BrokenFS:
        def list_files(self, directory, pattern="**/*"):
            raise OSError("disk on fire")

    ilog = IterationLogger(log_dir, fs=BrokenFS())
    assert ilog.rotate() == 0


# -----------------------------------------------------------------------------
# Handle cache
# -----------------------------------------------------------------------------
def test_handle_cache_closes_evicted_handles(tmp_path: Path) -> None:
    cache = _HandleCache(2)
    paths = [tmp_path / f"{n}.log" for n in range(3)]
    first = cache.get(paths[0])
    cache.get(paths[1])
    cache.get(paths[0])  # refresh: paths[1] is now least recent
    cache.get(paths[2])

    assert len(cache) == 2
    assert paths[1] not in cache
    assert paths[0] in cache and not first.closed

    cache.close_all()
    assert len(cache) == 0 and first.closed


def test_logger_keeps_at_most_max_open_handles(log_dir: Path) -> None:
    ilog = IterationLogger(log_dir, max_open_handles=2, clock=TickingClock(datetime(2030, 1, 1, tzinfo=timezone.utc), timedelta(seconds=1)))
    records = [ilog.begin(n) for n in (1, 2, 3)]
    assert len(ilog._handles) == 2
    ilog.append(records[0], "reopened after eviction")
    for r in records:
        ilog.finalize(r)
    assert len(ilog._handles) == 0
    assert "reopened after eviction" in records[0].path.read_text(encoding="utf-8")
