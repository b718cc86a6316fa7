# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests (SQLite through aiosqlite, no external services)
"""

import os
from collections.abc import Generator

import pytest

# Actors register on a StubBroker instead of Redis
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

from edustats.core.config import clear_settings_cache  # noqa: E402


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def test_environment() -> dict[str, str]:
    """Provide test environment variables.

    Returns:
        Dictionary of environment variables for testing.
    """
    return {
        "ENVIRONMENT": "development",
        "DEBUG": "true",
        "LOG_LEVEL": "DEBUG",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "DRAMATIQ_TEST_MODE": "true",
    }


@pytest.fixture
def fresh_settings() -> Generator[None, None, None]:
    """Clear the cached settings before and after a test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (uses a SQLite file database)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
