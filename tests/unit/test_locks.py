# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for per-key rollup locks."""

import asyncio
import threading

import pytest

from edustats.domains.statistics.locks import KeyedLock, get_rollup_locks


class TestKeyedLock:
    """Tests for KeyedLock."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        """Test critical sections on one key never interleave."""
        locks = KeyedLock()
        events: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("assignment", "a1"):
                events.append(f"{name}:enter")
                await asyncio.sleep(0.01)
                events.append(f"{name}:exit")

        await asyncio.gather(worker("first"), worker("second"))

        assert events == ["first:enter", "first:exit", "second:enter", "second:exit"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        """Test holders of different keys run concurrently."""
        locks = KeyedLock()
        inside = asyncio.Event()

        async def holder() -> None:
            async with locks.hold("student", "s1"):
                await inside.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        async with locks.hold("student", "s2"):
            assert locks.is_locked("student", "s1")
            assert locks.is_locked("student", "s2")
            inside.set()

        await task

    @pytest.mark.asyncio
    async def test_registry_is_emptied(self) -> None:
        """Test unused locks are dropped."""
        locks = KeyedLock()

        async with locks.hold("class", "c1"):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("class", "c1")

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        """Test the lock is released when the block raises."""
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("school", "2026-03-10"):
                raise RuntimeError("boom")

        assert len(locks) == 0


class TestGetRollupLocks:
    """Tests for get_rollup_locks."""

    def test_same_registry_within_a_thread(self) -> None:
        """Test repeated calls on one thread share the registry."""
        assert get_rollup_locks() is get_rollup_locks()

    def test_one_registry_per_thread(self) -> None:
        """Test worker threads get their own registry."""
        seen: list[KeyedLock] = []
        thread = threading.Thread(target=lambda: seen.append(get_rollup_locks()))
        thread.start()
        thread.join()

        assert seen[0] is not get_rollup_locks()
