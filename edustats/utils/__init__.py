# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared utilities: structured logging and datetime helpers."""

from edustats.utils.datetime import Clock, days_ago, ensure_utc, hours_ago, to_date, utc_now
from edustats.utils.logging import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    "Clock",
    "bind_context",
    "clear_context",
    "days_ago",
    "ensure_utc",
    "get_logger",
    "hours_ago",
    "setup_logging",
    "to_date",
    "utc_now",
]
