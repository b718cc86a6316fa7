# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    statistics: Statistics rollup queries and maintenance endpoints.
"""

from fastapi import APIRouter

from edustats.api.v1 import statistics

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(statistics.router, prefix="/statistics", tags=["Statistics"])

__all__ = ["router"]
