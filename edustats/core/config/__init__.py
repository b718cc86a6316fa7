# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration module for EduStats.

Example:
    >>> from edustats.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.statistics.active_student_days
    7
"""

from edustats.core.config.settings import (
    APISettings,
    DatabaseSettings,
    RedisSettings,
    SchedulerSettings,
    Settings,
    StatisticsSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "APISettings",
    "DatabaseSettings",
    "RedisSettings",
    "SchedulerSettings",
    "Settings",
    "StatisticsSettings",
    "clear_settings_cache",
    "get_settings",
]
