#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Logging Shim (compatibility module)
===============================================================================

Keeps script‑style imports working from a source checkout:

    from logger import get_logger

Everything is delegated to the packaged implementation in
`claude_farmer/logger.py`, so both access paths share the same handlers.
"""
from __future__ import annotations

import logging
from typing import Optional

from claude_farmer.logger import get_logger as _delegate_get_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the packaged logger for *name* (root project logger when None)."""
    return _delegate_get_logger(name)


__all__ = ["get_logger"]
