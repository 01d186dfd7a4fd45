#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Backoff Policy
===============================================================================

Purpose
-------
Decide how long to wait between unproductive or failed iterations and how to
treat an error raised by the AI capability.

Error classes
-------------
* RATE_LIMITED – spending cap / usage limit reported by the AI tool.
                 Recoverable; sleep the current backoff, double it, retry
                 forever.
* TRANSIENT    – network, timeout, connection reset, HTTP 429/502/503.
                 Recoverable up to MAX_TRANSIENT_RETRIES, each retry waiting
                 TRANSIENT_BASE_DELAY_MS × attempt; then promoted to FATAL.
* FATAL        – everything else (bad credentials, malformed invocation, …).

Growth is plain doubling capped at MAX_SLEEP_MS; no jitter is applied.

Environment
-----------
CLAUDE_FARMER_MAX_SLEEP_MS    – backoff ceiling (default 2 h)
CLAUDE_FARMER_MAX_RETRIES     – transient retry cap (default 3)
CLAUDE_FARMER_RETRY_DELAY_MS  – base transient retry delay (default 30 s)
"""
from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Tuple

MIN_SLEEP_MS = 60 * 1000
MAX_SLEEP_MS = int(os.getenv("CLAUDE_FARMER_MAX_SLEEP_MS", str(2 * 60 * 60 * 1000)))
MAX_TRANSIENT_RETRIES = int(os.getenv("CLAUDE_FARMER_MAX_RETRIES", "3"))
TRANSIENT_BASE_DELAY_MS = int(os.getenv("CLAUDE_FARMER_RETRY_DELAY_MS", "30000"))

RATE_LIMIT_PHRASES: Tuple[str, ...] = (
    "spending cap reached",
    "you've hit your limit",
    "usage limit reached",
    "insufficient_quota",
)

TRANSIENT_PHRASES: Tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection error",
    "econnreset",
    "etimedout",
    "econnrefused",
    "socket hang up",
    "temporarily unavailable",
    "overloaded",
    "429",
    "502",
    "503",
)


class ErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify(message: str) -> ErrorKind:
    """Classify an error message; rate‑limit phrases win over transient ones."""
    text = (message or "").lower()
    if any(p in text for p in RATE_LIMIT_PHRASES):
        return ErrorKind.RATE_LIMITED
    if any(p in text for p in TRANSIENT_PHRASES):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def next_backoff(current_ms: int) -> int:
    """Double *current_ms*, capped at MAX_SLEEP_MS."""
    return min(current_ms * 2, MAX_SLEEP_MS)


def transient_delay_ms(attempt: int) -> int:
    """Delay before transient retry number *attempt* (1‑based)."""
    return TRANSIENT_BASE_DELAY_MS * max(1, attempt)


def format_duration(ms: int) -> str:
    """Human display: minutes from one minute upward, seconds below."""
    if ms >= 60000:
        return f"{round(ms / 60000)} minute(s)"
    return f"{round(ms / 1000)} second(s)"


@dataclass
class BackoffState:
    """
    Current sleep duration for one orchestrator run.

    Always within [MIN_SLEEP_MS, MAX_SLEEP_MS]. `advance()` hands out the
    duration to sleep now and doubles the stored value for next time.
    """

    current_ms: int = field(default=MIN_SLEEP_MS)

    def __post_init__(self) -> None:
        self.current_ms = max(MIN_SLEEP_MS, min(self.current_ms, MAX_SLEEP_MS))

    def reset(self) -> None:
        self.current_ms = MIN_SLEEP_MS

    def advance(self) -> int:
        duration = self.current_ms
        self.current_ms = next_backoff(self.current_ms)
        return duration


__all__ = [
    "MIN_SLEEP_MS",
    "MAX_SLEEP_MS",
    "MAX_TRANSIENT_RETRIES",
    "TRANSIENT_BASE_DELAY_MS",
    "ErrorKind",
    "classify",
    "next_backoff",
    "transient_delay_ms",
    "format_duration",
    "BackoffState",
]
