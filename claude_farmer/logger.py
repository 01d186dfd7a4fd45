#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Process Logging Facility
===============================================================================

Purpose
-------
One **centralised**, **idempotent** logger configuration for the process.
Modules obtain loggers via:

    from claude_farmer import get_logger
    log = get_logger(__name__)

This is the *operator/process* log. The per‑iteration audit trail written
under `<working_dir>/claude-farmer/logs/` lives in `iteration_log.py` and is a
separate, durable record; its lines are only mirrored here at DEBUG.

Key features
------------
* Console output – INFO level by default (override via env or `--verbose`).
* Daily rotating file – DEBUG level, 7 days retention (both tunable).
* Idempotent – root handlers are configured **once**; child loggers propagate.
* Resilient – falls back to a temp dir if the log dir is unwritable.
* Environment overrides:
    CLAUDE_FARMER_LOG_DIR   – log directory (default: ./logs)
    CLAUDE_FARMER_LOG_LVL   – console level  (DEBUG / INFO / WARNING / … or numeric)
    CLAUDE_FARMER_LOG_ROT   – rotation schedule ("midnight", "H", "M", …)
    CLAUDE_FARMER_LOG_BACK  – number of backup files (default 7)
    CLAUDE_FARMER_LOG_UTC   – truthy → timestamps & rotation in UTC
    CLAUDE_FARMER_LOG_JSON  – truthy → emit JSON lines to console
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

# Only the root project logger owns handlers; children propagate.
_ROOT_LOGGER_NAME = "claude_farmer"

# ════════════════════════════════════════════════════════════════════════════
# Helpers
# ════════════════════════════════════════════════════════════════════════════
def is_truthy(val: str | None) -> bool:
    """Return True if *val* represents a truthy setting."""
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def parse_level(val: str | None, default: int = logging.INFO) -> int:
    """
    Parse a level value which may be a name ("INFO") or an integer ("20").
    Falls back to *default* on invalid input.
    """
    if val is None:
        return default
    s = val.strip()
    if not s:
        return default
    if s.isdigit():
        return int(s)
    level = logging.getLevelName(s.upper())
    return level if isinstance(level, int) else default


# ════════════════════════════════════════════════════════════════════════════
# Defaults & environment overrides
# ════════════════════════════════════════════════════════════════════════════
_LOG_DIR_ENV = os.getenv("CLAUDE_FARMER_LOG_DIR", "logs")

_CONSOLE_LEVEL_ENV = os.getenv("CLAUDE_FARMER_LOG_LVL", "INFO")
CONSOLE_LEVEL = parse_level(_CONSOLE_LEVEL_ENV, default=logging.INFO)

ROTATE_WHEN = os.getenv("CLAUDE_FARMER_LOG_ROT", "midnight")
BACKUP_COUNT = int(os.getenv("CLAUDE_FARMER_LOG_BACK", "7"))
USE_UTC = is_truthy(os.getenv("CLAUDE_FARMER_LOG_UTC"))
JSON_CONSOLE = is_truthy(os.getenv("CLAUDE_FARMER_LOG_JSON"))

# ════════════════════════════════════════════════════════════════════════════
# Formatters
# ════════════════════════════════════════════════════════════════════════════
FORMAT = "%(asctime)s | %(name)s | %(process)d | %(levelname)-8s | %(message)s"
DTFMT = "%Y-%m-%d %H:%M:%S"


class _JsonFormatter(logging.Formatter):
    """Minimal JSON formatter (useful for log scraping on unattended hosts)."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created))
            if USE_UTC
            else time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(record.created)),
            "name": record.name,
            "pid": record.process,
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _human_formatter() -> logging.Formatter:
    fmt = logging.Formatter(fmt=FORMAT, datefmt=DTFMT)
    if USE_UTC:
        fmt.converter = time.gmtime  # type: ignore[attr-defined]
    return fmt


# ════════════════════════════════════════════════════════════════════════════
# Directory & handler utilities
# ════════════════════════════════════════════════════════════════════════════
def _ensure_log_dir(preferred: Path) -> Optional[Path]:
    """
    Return a writable log directory.

    Preference order:
      1) $CLAUDE_FARMER_LOG_DIR (or ./logs)
      2) $TMPDIR/claude-farmer-logs

    Returns None when neither is writable (console‑only logging).
    """
    for candidate in (preferred, Path(tempfile.gettempdir()) / "claude-farmer-logs"):
        try:
            candidate = candidate.expanduser().resolve()
            candidate.mkdir(parents=True, exist_ok=True)
            marker = candidate / ".writable"
            marker.write_text("ok", encoding="utf-8")
            marker.unlink()
            return candidate
        except OSError:
            continue
    return None


def _make_file_handler(log_dir: Path) -> Optional[TimedRotatingFileHandler]:
    """
    Create the shared rotating file handler ('claude_farmer.log') in *log_dir*.

    Returns None if the file handler cannot be created (permissions, etc.).
    """
    try:
        fh = TimedRotatingFileHandler(
            filename=log_dir / "claude_farmer.log",
            when=ROTATE_WHEN,
            interval=1,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
            utc=USE_UTC,
        )
    except OSError:
        return None
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(_human_formatter())
    return fh


def _make_console_handler() -> logging.Handler:
    ch = logging.StreamHandler()
    ch.setLevel(CONSOLE_LEVEL)
    ch.setFormatter(_JsonFormatter() if JSON_CONSOLE else _human_formatter())
    return ch


# ════════════════════════════════════════════════════════════════════════════
# Public helpers
# ════════════════════════════════════════════════════════════════════════════
def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return a configured `logging.Logger`.

    Parameters
    ----------
    name : str | None
        • Explicit logger name, e.g. __name__ from caller.
        • *None* → root project logger "claude_farmer".

    Notes
    -----
    Handlers are attached **only to the root** "claude_farmer" logger. Child
    loggers are returned without handlers and **propagate** to the root.
    """
    root = logging.getLogger(_ROOT_LOGGER_NAME)

    if not root.handlers:
        root.setLevel(logging.DEBUG)

        log_dir = _ensure_log_dir(Path(_LOG_DIR_ENV))
        fh = _make_file_handler(log_dir) if log_dir is not None else None
        if fh is not None:
            root.addHandler(fh)

        root.addHandler(_make_console_handler())
        root.propagate = False

        root.debug(
            "Logger initialised | dir=%s | console=%s | rotate=%s | backups=%s | utc=%s | json-console=%s",
            log_dir or "<console-only>",
            logging.getLevelName(CONSOLE_LEVEL),
            ROTATE_WHEN,
            BACKUP_COUNT,
            USE_UTC,
            JSON_CONSOLE,
        )

    if name is None or name == _ROOT_LOGGER_NAME:
        return root

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = True
    return logger


def set_console_level(level: int | str) -> None:
    """
    Adjust the console handler level at runtime (CLI `--verbose` / `--quiet`).
    The rotating file handler always stays at DEBUG.
    """
    lvl = parse_level(level) if isinstance(level, str) else level
    for handler in get_logger().handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(lvl)


__all__ = ["get_logger", "set_console_level", "is_truthy", "parse_level"]
