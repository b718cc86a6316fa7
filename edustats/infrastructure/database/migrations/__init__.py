# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Schema migrations for the statistics rollup tables."""

from edustats.infrastructure.database.migrations.runner import (
    MIGRATIONS,
    check_migrations_pending,
    get_migration_status,
    run_migrations,
)

__all__ = [
    "MIGRATIONS",
    "check_migrations_pending",
    "get_migration_status",
    "run_migrations",
]
