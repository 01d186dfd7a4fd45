#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Cooperative Shutdown Token
===============================================================================

Signals never touch orchestrator state directly. The handler only flips a
`threading.Event`; the orchestrator polls it at its suspension points (start
of iteration, after the review call, after every sleep) and winds down on its
own terms:

* 1st SIGINT/SIGTERM → request shutdown; the in‑flight iteration finishes its
  writes, its log record is finalized as *interrupted*, no new iteration starts.
* 2nd signal         → immediate process exit (code 130), no log finalization.

Backoff sleeps use `Event.wait`, so a pending shutdown wakes them early.
"""
from __future__ import annotations

import os
import signal
import threading
from typing import Callable, Optional

from claude_farmer import get_logger

log = get_logger(__name__)

FORCED_EXIT_CODE = 130


class ShutdownToken:
    """Cancellation flag shared by the CLI signal handlers and the orchestrator."""

    def __init__(self, force_exit: Callable[[int], None] = os._exit) -> None:
        self._event = threading.Event()
        self._force_exit = force_exit
        self.reason: Optional[str] = None

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def sleep(self, ms: int) -> bool:
        """
        Sleep for *ms* milliseconds unless shutdown is requested first.

        Returns True when woken by a shutdown request.
        """
        return self._event.wait(timeout=max(0, ms) / 1000.0)

    def _handle_signal(self, signum: int, _frame) -> None:
        name = signal.Signals(signum).name
        if self._event.is_set():
            log.warning("Second %s received; exiting immediately.", name)
            self._force_exit(FORCED_EXIT_CODE)
            return
        log.warning(
            "%s received; finishing the current iteration before exit (repeat to force).",
            name,
        )
        self.request(name)

    def install_signal_handlers(self) -> Callable[[], None]:
        """
        Route SIGINT/SIGTERM to this token. Must be called from the main thread.

        Returns a callable restoring the previous handlers.
        """
        previous = {}
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)

        def _restore() -> None:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        return _restore


__all__ = ["ShutdownToken", "FORCED_EXIT_CODE"]
