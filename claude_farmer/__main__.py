#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Module Entry Point  (python -m claude_farmer)
===============================================================================

Canonical invocation:
    python -m claude_farmer [<cli args>]

What this does
--------------
* Fast `--version` / `-v` path without importing the orchestrator stack.
* Logs a concise runtime banner (version, Python, platform).
* Delegates everything else to `claude_farmer.cli:main`, so both
  `python -m claude_farmer` and the `claude-farmer` console script behave
  identically.
"""
from __future__ import annotations

import argparse
import platform
import sys
from importlib.metadata import PackageNotFoundError, version as _pkg_version


# ─────────────────────────────────────────────────────────────────────────────
# CLI pre‑parsing (global flags only)
# ─────────────────────────────────────────────────────────────────────────────
def _parse_cli(argv: list[str]) -> tuple[argparse.Namespace, list[str]]:
    """Extract `--version` and leave the rest for the real CLI."""
    parser = argparse.ArgumentParser(prog="python -m claude_farmer", add_help=False)
    parser.add_argument("-v", "--version", action="store_true")
    args, remainder = parser.parse_known_args(argv)
    return args, remainder


def _resolve_version() -> str:
    """Installed distribution version, falling back to the package constant."""
    try:
        return _pkg_version("claude-farmer")
    except PackageNotFoundError:
        from claude_farmer import __version__

        return __version__


def _print_banner(version: str) -> None:
    from claude_farmer import get_logger  # local import keeps --version fast

    get_logger(__name__).info(
        "Claude‑Farmer %s  |  Python %s  |  %s",
        version,
        platform.python_version(),
        platform.platform(),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Entry
# ─────────────────────────────────────────────────────────────────────────────
def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args, remaining = _parse_cli(argv)

    if args.version:
        print(f"claude-farmer v{_resolve_version()}")
        return 0

    _print_banner(_resolve_version())

    from claude_farmer.cli import main as cli_main

    return cli_main(remaining)


if __name__ == "__main__":
    sys.exit(main())
