#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Command Line Interface
===============================================================================

Subcommands
-----------
• patch     – review → develop → commit loop (the overnight farmer)
• develop   – develop only (no review, no commit); one pass unless --loop
• version   – print package version

Global flags
------------
• --version / -v – print package version (same as the `version` subcommand)
• --verbose      – DEBUG on the console (file log is always DEBUG)

Exit codes
----------
0 clean completion · 1 fatal error · 2 usage error · 130 interrupted

Examples
--------
  # Loop until interrupted (Ctrl‑C once = finish current iteration)
  claude-farmer patch /path/to/project

  # Preview a single pass without writing or committing
  claude-farmer patch --dry-run --once

  # Single develop pass with the OpenAI backend
  claude-farmer develop --ai openai --model gpt-4o

Note: do not run two farmers against the same working directory.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from claude_farmer import get_logger, get_version
from claude_farmer.ai_client import AI_BACKENDS, DEFAULT_AI_TIMEOUT, create_ai
from claude_farmer.logger import set_console_level
from claude_farmer.orchestrator import FatalIterationError, RunResult, develop, run
from claude_farmer.shutdown import FORCED_EXIT_CODE, ShutdownToken

log = get_logger(__name__)

PROG = "claude-farmer"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────
def _resolve_working_dir(arg: str) -> Path:
    path = Path(arg).expanduser()
    if not path.is_dir():
        raise SystemExit(f"Working directory not found: {path}")
    return path.resolve()


def _error(msg: str) -> None:
    print(f"{PROG}: Error - {msg}", file=sys.stderr)


def _run_options(args: argparse.Namespace) -> dict:
    return {
        "dry_run": args.dry_run,
        "max_iterations": args.max_iterations,
        "stop_on_no_change": args.stop_on_no_change,
        "source_globs": tuple(args.source_glob) if args.source_glob else None,
        "run_hooks": not args.no_hooks,
    }


def _print_summary(result: RunResult, *, dry_run: bool) -> None:
    written = sum(len(o.edits) for o in result.outcomes)
    commits = sum(1 for o in result.outcomes if o.commit_message)
    suffix = " [interrupted]" if result.interrupted else ""
    print(
        f"{result.working_dir_name}: {result.iterations} iteration(s), "
        f"{written} file(s) {'proposed' if dry_run else 'written'}, {commits} commit(s){suffix}"
    )


def _execute(args: argparse.Namespace, *, develop_only: bool) -> int:
    working_dir = _resolve_working_dir(args.working_dir)
    ai = create_ai(
        args.ai,
        cwd=working_dir,
        model=args.model,
        timeout_s=args.timeout,
        ultrathink=args.ultrathink,
    )
    if args.dry_run:
        log.info("Dry run: no files will be written and nothing will be committed.")

    shutdown = ShutdownToken()
    restore = shutdown.install_signal_handlers()
    try:
        if develop_only:
            result = develop(working_dir, ai, loop=args.loop, shutdown=shutdown, **_run_options(args))
        else:
            result = run(working_dir, ai, once=args.once, shutdown=shutdown, **_run_options(args))
    except FatalIterationError as exc:
        log.debug("Fatal error in iteration %d (%s)", exc.iteration, exc.kind.value, exc_info=True)
        _error(str(exc))
        return 1
    finally:
        restore()

    _print_summary(result, dry_run=args.dry_run)
    return FORCED_EXIT_CODE if result.interrupted else 0


# ─────────────────────────────────────────────────────────────────────────────
# Subcommand handlers
# ─────────────────────────────────────────────────────────────────────────────
def cmd_patch(args: argparse.Namespace) -> int:
    """Run the review → develop → commit loop."""
    return _execute(args, develop_only=False)


def cmd_develop(args: argparse.Namespace) -> int:
    """Develop only; one pass unless --loop."""
    return _execute(args, develop_only=True)


def cmd_version(_args: argparse.Namespace) -> int:
    print(f"{PROG} v{get_version()}")
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Argument parser
# ─────────────────────────────────────────────────────────────────────────────
def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("working_dir", nargs="?", default=".", help="Project directory (default: current).")
    p.add_argument("--ultrathink", action="store_true", help="Prefix prompts with 'ultrathink: '.")
    p.add_argument("--dry-run", action="store_true", help="Show proposed changes without writing files or committing.")
    p.add_argument("--model", default=None, help="Model passed to the AI backend.")
    p.add_argument("--timeout", type=int, default=DEFAULT_AI_TIMEOUT, help=f"Per‑call AI timeout in seconds (default: {DEFAULT_AI_TIMEOUT}).")
    p.add_argument("--ai", choices=AI_BACKENDS, default="claude", help="AI backend (default: claude).")
    p.add_argument("--max-iterations", type=int, default=None, help="Stop after N iterations.")
    p.add_argument("--stop-on-no-change", action="store_true", help="Stop after consecutive iterations without edits.")
    p.add_argument("--source-glob", action="append", default=None, help="Glob of files offered to the AI (repeatable).")
    p.add_argument("--no-hooks", action="store_true", help="Do not run claude-farmer/scripts hooks.")


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog=PROG,
        description="Claude‑Farmer – unattended review/develop/commit loop driven by an AI coding tool",
        epilog="Running two farmers against the same working directory is not supported.",
    )
    p.add_argument("-v", "--version", action="store_true", help="Print package version and exit.")
    p.add_argument("--verbose", action="store_true", help="Debug output on the console.")

    sub = p.add_subparsers(dest="cmd", metavar="command")

    pp = sub.add_parser("patch", help="Review, develop and commit in a loop")
    _add_common(pp)
    pp.add_argument("--once", action="store_true", help="Run a single iteration and exit.")
    pp.set_defaults(func=cmd_patch)

    pd = sub.add_parser("develop", help="Develop only (no review, no commit)")
    _add_common(pd)
    pd.add_argument("--loop", action="store_true", help="Repeat with backoff instead of a single pass.")
    pd.set_defaults(func=cmd_develop)

    pv = sub.add_parser("version", help="Print package version")
    pv.set_defaults(func=cmd_version)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    try:
        parser = _parser()
        args = parser.parse_args(argv)

        if getattr(args, "version", False):
            return cmd_version(args)

        if args.verbose:
            set_console_level("DEBUG")

        if not hasattr(args, "func"):
            parser.print_help()
            return 2

        return int(args.func(args))
    except KeyboardInterrupt:
        log.info("Interrupted by user (Ctrl‑C).")
        return FORCED_EXIT_CODE
    except SystemExit as exc:
        if isinstance(exc.code, int):
            return exc.code
        if exc.code:
            _error(str(exc.code))
        return 1
    except Exception as exc:
        log.exception("Fatal error in CLI: %s", exc)
        _error(str(exc))
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
