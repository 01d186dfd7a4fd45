#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Iteration Orchestrator
===============================================================================

Overview
--------
Drives the review → develop → commit loop against one working directory.
Every iteration:

  1) checks for a pending shutdown, opens its iteration log record and runs
     the optional `git-patch-checkout.sh` hook;
  2) gathers a fresh context (GOAL.md, REVIEW.md, sources) and asks the AI for
     a review, persisted to `claude-farmer/docs/REVIEW.md`;
  3) re‑gathers the context so the develop call sees the new review, asks the
     AI for edits and parses its free‑form output (edit_parser);
  4) drops unsafe paths (path_guard), writes the remaining files, writes
     `claude-farmer/docs/DEVELOP.json` and commits exactly those files;
  5) finalizes the log record and decides: continue, sleep, retry or stop.

Outcomes
--------
  • edits applied   → backoff reset, next iteration immediately
  • no edits        → "No changes to commit", sleep the backoff, double it
  • rate limited    → sleep the backoff, double it, retry forever
  • transient error → retried inside the same iteration and log record, up to
                      MAX_TRANSIENT_RETRIES times (30 s × attempt)
  • fatal error     → record finalized as failed, `FatalIterationError` raised

`once` stops after exactly one iteration (its transient retries included; a
rate limit stops the run without sleeping).

Shutdown
--------
The `ShutdownToken` is polled at the start of every iteration, after the
review call, after the develop writes and commit, and after every sleep.
An in‑flight iteration keeps whatever it already wrote and is finalized
with the *interrupted* marker.

Running two orchestrators against the same working directory is not
supported; nothing here locks the directory.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

from claude_farmer import get_logger
from claude_farmer.ai_client import AICapability, AIError
from claude_farmer.backoff import (
    MAX_TRANSIENT_RETRIES,
    BackoffState,
    ErrorKind,
    format_duration,
    transient_delay_ms,
)
from claude_farmer.context import MAX_FILE_BYTES, FarmerLayout, gather_context
from claude_farmer.edit_parser import NoEdits, Unparseable, edits_or_empty, extract_edits
from claude_farmer.fs_ops import FileSystem, LocalFileSystem
from claude_farmer.git_ops import CHECKOUT_HOOK, GitOps
from claude_farmer.iteration_log import IterationLogger, IterationRecord, IterationStatus
from claude_farmer.models import FileSnapshot, SafeEdit, WorkingDirContext
from claude_farmer.path_guard import filter_safe_edits
from claude_farmer.report import build_report, merge_report, render_report, split_report_edit
from claude_farmer.shutdown import ShutdownToken

log = get_logger(__name__)

UNPARSEABLE_LINE = "Develop output unparseable; treating as zero edits"


# =============================================================================
# Data models
# =============================================================================
@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Run configuration.

    `review=False, commit=False` gives the develop‑only mode of the
    `develop` command.
    """

    working_dir: Path
    once: bool = False
    max_iterations: Optional[int] = None
    stop_on_no_change: bool = False
    no_change_limit: int = 2
    dry_run: bool = False
    source_globs: Optional[Tuple[str, ...]] = None
    max_file_bytes: int = MAX_FILE_BYTES
    run_hooks: bool = True
    review: bool = True
    commit: bool = True


@dataclass(frozen=True)
class IterationOutcome:
    iteration: int
    status: IterationStatus
    review_path: Optional[Path] = None
    edits: Tuple[SafeEdit, ...] = ()
    rejected: Tuple[str, ...] = ()
    commit_message: Optional[str] = None
    log_path: Optional[Path] = None


@dataclass(frozen=True)
class RunResult:
    working_dir_name: str
    iterations: int
    outcomes: Tuple[IterationOutcome, ...] = field(default_factory=tuple)
    interrupted: bool = False
    stopped_reason: str = ""


class FatalIterationError(RuntimeError):
    """The only error that escapes `run()`; the cause is chained."""

    def __init__(self, message: str, *, iteration: int, kind: ErrorKind) -> None:
        super().__init__(message)
        self.iteration = iteration
        self.kind = kind


class _Interrupted(Exception):
    """Shutdown observed at a suspension point inside an iteration."""


# =============================================================================
# Orchestrator
# =============================================================================
class IterationOrchestrator:
    """
    Loop driver for one working directory.

    Parameters
    ----------
    config : OrchestratorConfig
    ai : AICapability
        Review / develop provider.
    fs : FileSystem | None
        Defaults to `LocalFileSystem`.
    git : GitOps | None
        Commit collaborator; defaults to `GitOps(working_dir)`.
    shutdown : ShutdownToken | None
        Cancellation token (a fresh, never‑set token by default).
    sleep : callable | None
        `sleep(ms)` used for backoff waits; defaults to `shutdown.sleep`.
    iteration_logger : IterationLogger | None
        Defaults to one writing under `claude-farmer/logs/`.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        ai: AICapability,
        *,
        fs: Optional[FileSystem] = None,
        git: Optional[GitOps] = None,
        shutdown: Optional[ShutdownToken] = None,
        sleep: Optional[Callable[[int], Any]] = None,
        iteration_logger: Optional[IterationLogger] = None,
    ) -> None:
        self.config = config
        self.ai = ai
        self.layout = FarmerLayout.for_dir(config.working_dir)
        self.fs = fs or LocalFileSystem()
        self.git = git or GitOps(self.layout.root)
        self.shutdown = shutdown or ShutdownToken()
        self._sleep_fn = sleep or self.shutdown.sleep
        self.ilog = iteration_logger or IterationLogger(self.layout.logs_dir, self.fs)
        self.backoff = BackoffState()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _gather(self) -> WorkingDirContext:
        return gather_context(
            self.layout.root,
            self.fs,
            source_globs=self.config.source_globs,
            max_file_bytes=self.config.max_file_bytes,
        )

    def _check_shutdown(self) -> None:
        if self.shutdown.requested:
            raise _Interrupted()

    def _sleep(self, ms: int) -> bool:
        """Sleep *ms*; True when shutdown is pending afterwards."""
        log.info("Sleeping for %s", format_duration(ms))
        self._sleep_fn(ms)
        return self.shutdown.requested

    def _stop_for_max(self, iteration: int) -> bool:
        cap = self.config.max_iterations
        return cap is not None and iteration >= cap

    # ------------------------------------------------------------------ #
    # One iteration
    # ------------------------------------------------------------------ #
    def _run_iteration(self, iteration: int, record: IterationRecord) -> IterationOutcome:
        cfg = self.config
        layout = self.layout

        if cfg.run_hooks and not cfg.dry_run:
            output = self.git.run_hook(CHECKOUT_HOOK)
            if output:
                self.ilog.append(record, f"Script output: {output}")

        context = self._gather()
        review_path: Optional[Path] = None

        if cfg.review:
            review = self.ai.generate_review(context)
            if cfg.dry_run:
                self.ilog.append(record, f"Dry run: review not written ({len(review)} chars)")
                context = replace(context, review=FileSnapshot(layout.review_path, review))
            else:
                self.fs.write_file(layout.review_path, review)
                self.ilog.log_review(record, layout.review_path, len(review))
                review_path = layout.review_path
            self._check_shutdown()
            if not cfg.dry_run:
                context = self._gather()

        raw = self.ai.generate_edits(context)
        parsed = extract_edits(raw)
        problems: List[str] = []
        if isinstance(parsed, Unparseable):
            self.ilog.append(record, UNPARSEABLE_LINE)
            log.warning("%s | head=%r", UNPARSEABLE_LINE, parsed.snippet)
            problems.append("develop output unparseable")
        elif isinstance(parsed, NoEdits):
            self.ilog.append(record, f"Develop returned no edits ({parsed.reason})")

        accepted, rejected = filter_safe_edits(
            edits_or_empty(parsed), layout.root, protected=layout.protected_prefixes
        )
        for path in rejected:
            self.ilog.log_security(record, f"Rejected edit outside allowed paths: {path}")

        sources, ai_report = split_report_edit(accepted)
        if cfg.dry_run:
            for edit in sources:
                self.ilog.append(record, f"Dry run: would write {edit.relpath} ({len(edit.content)} chars)")
        else:
            written: List[SafeEdit] = []
            for edit in sources:
                try:
                    self.fs.write_file(edit.path, edit.content)
                except OSError as exc:
                    self.ilog.append(record, f"Write failed for {edit.relpath}: {exc}")
                    log.warning("Could not write %s: %s", edit.relpath, exc)
                    problems.append(f"write failed: {edit.relpath}")
                    continue
                written.append(edit)
            sources = written
        self.ilog.log_develop(record, sources)

        report = merge_report(
            build_report(iteration, sources, rejected, problems=problems, dry_run=cfg.dry_run),
            ai_report.content if ai_report else None,
        )
        self.fs.write_file(layout.report_path, render_report(report))

        commit_message: Optional[str] = None
        if sources and cfg.commit and not cfg.dry_run:
            commit_message = self.git.commit(
                [e.relpath for e in sources],
                on_output=lambda out: self.ilog.append(record, f"Script output: {out}"),
            )
            if commit_message:
                self.ilog.log_commit(record, commit_message)

        # dry‑run proposals leave the tree unchanged, so they never count as progress
        progressed = bool(sources) and not cfg.dry_run
        status = IterationStatus.COMPLETED if progressed else IterationStatus.NO_CHANGE
        if status is IterationStatus.NO_CHANGE:
            self.ilog.log_no_changes(record)
        # shutdown during develop: writes are kept, the record is marked interrupted
        if self.shutdown.requested:
            self.ilog.append(record, "Shutdown requested; stopping")
            status = IterationStatus.INTERRUPTED

        log.info(
            "Iteration %d: %d file(s) %s, %d rejected%s",
            iteration,
            len(sources),
            "proposed" if cfg.dry_run else "written",
            len(rejected),
            f", committed ({commit_message})" if commit_message else "",
        )
        return IterationOutcome(
            iteration=iteration,
            status=status,
            review_path=review_path,
            edits=tuple(sources),
            rejected=tuple(rejected),
            commit_message=commit_message,
            log_path=record.path,
        )

    def _attempt(self, iteration: int, record: IterationRecord) -> IterationOutcome:
        """
        Run one iteration, retrying transient AI failures in place.

        Retries share the iteration ordinal and its log record. Past
        MAX_TRANSIENT_RETRIES the last `AIError` propagates.
        """
        attempts = 0
        while True:
            try:
                return self._run_iteration(iteration, record)
            except AIError as exc:
                if exc.kind is not ErrorKind.TRANSIENT or attempts >= MAX_TRANSIENT_RETRIES:
                    raise
                attempts += 1
                delay = transient_delay_ms(attempts)
                self.ilog.log_error(record, str(exc))
                self.ilog.append(record, f"Transient error, retry {attempts}/{MAX_TRANSIENT_RETRIES}")
                log.warning("Transient error (retry %d/%d): %s", attempts, MAX_TRANSIENT_RETRIES, exc)
                self.ilog.log_sleep(record, delay)
                if self._sleep(delay):
                    raise _Interrupted() from exc

    # ------------------------------------------------------------------ #
    # Loop
    # ------------------------------------------------------------------ #
    def run(self) -> RunResult:
        """
        Run until stopped.

        Returns
        -------
        RunResult
            `stopped_reason` is one of "once", "max-iterations", "no-change",
            "rate-limited" or "shutdown".

        Raises
        ------
        FatalIterationError
            On a fatal error, or a transient one past the retry cap.
        """
        cfg = self.config
        outcomes: List[IterationOutcome] = []
        iteration = 0
        no_change_streak = 0
        interrupted = False
        stopped_reason = ""

        log.info(
            "Starting %s on %s (once=%s, dry_run=%s)",
            "patch loop" if cfg.review else "develop loop",
            self.layout.root,
            cfg.once,
            cfg.dry_run,
        )
        try:
            while True:
                if self.shutdown.requested:
                    interrupted, stopped_reason = True, "shutdown"
                    break
                if self._stop_for_max(iteration):
                    stopped_reason = "max-iterations"
                    break

                iteration += 1
                record = self.ilog.begin(iteration)

                try:
                    outcome = self._attempt(iteration, record)
                except _Interrupted:
                    self.ilog.append(record, "Shutdown requested; stopping")
                    self.ilog.finalize(record, IterationStatus.INTERRUPTED)
                    review_path = self.layout.review_path if cfg.review and not cfg.dry_run else None
                    outcomes.append(
                        IterationOutcome(
                            iteration=iteration,
                            status=IterationStatus.INTERRUPTED,
                            review_path=review_path,
                            log_path=record.path,
                        )
                    )
                    interrupted, stopped_reason = True, "shutdown"
                    break
                except Exception as exc:
                    kind = exc.kind if isinstance(exc, AIError) else ErrorKind.FATAL
                    self.ilog.log_error(record, str(exc))
                    failed = IterationOutcome(
                        iteration=iteration, status=IterationStatus.ERROR, log_path=record.path
                    )

                    if kind is ErrorKind.RATE_LIMITED:
                        self.ilog.append(record, "Rate limit reached")
                        log.warning("Rate limit reached: %s", exc)
                        if cfg.once:
                            self.ilog.finalize(record, IterationStatus.ERROR)
                            outcomes.append(failed)
                            stopped_reason = "rate-limited"
                            break
                        delay = self.backoff.advance()
                        self.ilog.log_sleep(record, delay)
                        self.ilog.finalize(record, IterationStatus.ERROR)
                        outcomes.append(failed)
                        if self._sleep(delay):
                            interrupted, stopped_reason = True, "shutdown"
                            break
                        continue

                    self.ilog.finalize(record, IterationStatus.ERROR)
                    outcomes.append(failed)
                    if kind is ErrorKind.TRANSIENT:
                        log.error("Giving up after %d transient retries: %s", MAX_TRANSIENT_RETRIES, exc)
                    raise FatalIterationError(str(exc), iteration=iteration, kind=kind) from exc

                outcomes.append(outcome)

                if outcome.status is IterationStatus.INTERRUPTED:
                    self.ilog.finalize(record, IterationStatus.INTERRUPTED)
                    interrupted, stopped_reason = True, "shutdown"
                    break

                if outcome.status is IterationStatus.COMPLETED:
                    no_change_streak = 0
                    self.backoff.reset()
                    self.ilog.finalize(record, IterationStatus.COMPLETED)
                    if cfg.once:
                        stopped_reason = "once"
                        break
                    continue

                no_change_streak += 1
                if cfg.once:
                    self.ilog.finalize(record, IterationStatus.NO_CHANGE)
                    stopped_reason = "once"
                    break
                if cfg.stop_on_no_change and no_change_streak >= cfg.no_change_limit:
                    self.ilog.finalize(record, IterationStatus.NO_CHANGE)
                    log.info("No changes for %d consecutive iteration(s); stopping.", no_change_streak)
                    stopped_reason = "no-change"
                    break
                if self._stop_for_max(iteration):
                    self.ilog.finalize(record, IterationStatus.NO_CHANGE)
                    stopped_reason = "max-iterations"
                    break

                delay = self.backoff.advance()
                self.ilog.log_sleep(record, delay)
                self.ilog.finalize(record, IterationStatus.NO_CHANGE)
                if self._sleep(delay):
                    interrupted, stopped_reason = True, "shutdown"
                    break
        finally:
            self.ilog.close()

        result = RunResult(
            working_dir_name=self.layout.name,
            iterations=iteration,
            outcomes=tuple(outcomes),
            interrupted=interrupted,
            stopped_reason=stopped_reason,
        )
        log.info(
            "Run finished for %s: %d iteration(s), stopped: %s",
            result.working_dir_name, result.iterations, stopped_reason or "n/a",
        )
        return result


# =============================================================================
# Functional facades
# =============================================================================
_COLLABORATOR_KEYS = ("fs", "git", "shutdown", "sleep", "iteration_logger")


def run(working_dir: Path, ai: AICapability, **options: Any) -> RunResult:
    """
    Build an `OrchestratorConfig` from *options* and run the patch loop.

    Collaborators (`fs`, `git`, `shutdown`, `sleep`, `iteration_logger`) may
    be passed alongside config fields.
    """
    collaborators = {k: options.pop(k) for k in _COLLABORATOR_KEYS if k in options}
    if "source_globs" in options and options["source_globs"] is not None:
        options["source_globs"] = tuple(options["source_globs"])
    config = OrchestratorConfig(working_dir=Path(working_dir), **options)
    return IterationOrchestrator(config, ai, **collaborators).run()


def develop(
    working_dir: Path,
    ai: AICapability,
    *,
    loop: bool = False,
    **options: Any,
) -> RunResult:
    """Develop only: no review, no commit. One pass unless *loop*."""
    options.setdefault("once", not loop)
    return run(working_dir, ai, review=False, commit=False, **options)


def changed_paths(result: RunResult) -> Sequence[str]:
    """All relative paths written (or proposed, in dry run) across *result*."""
    seen: List[str] = []
    for outcome in result.outcomes:
        for edit in outcome.edits:
            if edit.relpath not in seen:
                seen.append(edit.relpath)
    return seen


__all__ = [
    "OrchestratorConfig",
    "IterationOutcome",
    "RunResult",
    "FatalIterationError",
    "IterationOrchestrator",
    "run",
    "develop",
    "changed_paths",
]
