#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared fixtures.

The "claude_farmer" root logger does not propagate, so pytest's `caplog`
handler is attached to it directly for the tests that assert on log output.
"""
from __future__ import annotations

import logging

import pytest


@pytest.fixture()
def farmer_caplog(caplog):
    root = logging.getLogger("claude_farmer")
    root.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="claude_farmer")
    try:
        yield caplog
    finally:
        root.removeHandler(caplog.handler)
