# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest fixtures for statistics integration tests.

Each test gets a fresh SQLite file database with the full schema, a fixed
clock and helpers to seed users, classes, assignments and answers. Seeding
runs in its own sessions, the way the platform's other services write
these tables.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Iterable, Iterator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from edustats.core.config import StatisticsSettings
from edustats.domains.statistics import StatisticsReconciler, StatisticsService
from edustats.domains.statistics.locks import KeyedLock
from edustats.infrastructure.database.connection import create_sessionmaker
from edustats.infrastructure.database.models import (
    Assignment,
    Base,
    Class,
    ClassAssignment,
    Question,
    StudentAssignmentProgress,
    User,
    UserAssignment,
    UserClass,
    UserRole,
)


@dataclass
class FakeClock:
    """Settable clock passed to services instead of utc_now."""

    now: datetime

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    @contextmanager
    def at(self, when: datetime) -> Iterator[None]:
        """Run a block with the clock set to another instant."""
        saved = self.now
        self.now = when
        try:
            yield
        finally:
            self.now = saved


@dataclass
class SeededAssignment:
    """An assignment created by the seeder."""

    id: str
    question_ids: list[str] = field(default_factory=list)


class Seeder:
    """Writes organizational rows and answers on behalf of other services."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], clock: FakeClock) -> None:
        self.sessionmaker = sessionmaker
        self.clock = clock

    async def _add(self, *objects: object) -> None:
        async with self.sessionmaker() as session:
            session.add_all(objects)
            await session.commit()

    async def user(self, role: UserRole = UserRole.STUDENT) -> str:
        user_id = str(uuid4())
        await self._add(User(id=user_id, username=f"{role.value.lower()}-{user_id[:8]}", role=role))
        return user_id

    async def students(self, count: int) -> list[str]:
        return [await self.user(UserRole.STUDENT) for _ in range(count)]

    async def teacher(self) -> str:
        return await self.user(UserRole.TEACHER)

    async def classroom(self, member_ids: Iterable[str] = ()) -> str:
        class_id = str(uuid4())
        await self._add(
            Class(id=class_id, name=f"Class {class_id[:8]}"),
            *[UserClass(user_id=user_id, class_id=class_id) for user_id in member_ids],
        )
        return class_id

    async def enroll(self, class_id: str, user_id: str) -> None:
        await self._add(UserClass(user_id=user_id, class_id=class_id))

    async def assignment(
        self,
        questions: int = 1,
        class_ids: Iterable[str] = (),
        student_ids: Iterable[str] = (),
        teacher_id: str | None = None,
        is_active: bool = True,
        scheduled: bool = False,
        updated_at: datetime | None = None,
    ) -> SeededAssignment:
        assignment_id = str(uuid4())
        stamp = updated_at or self.clock()
        question_ids = [str(uuid4()) for _ in range(questions)]
        await self._add(
            Assignment(
                id=assignment_id,
                topic=f"Topic {assignment_id[:8]}",
                teacher_id=teacher_id,
                is_active=is_active,
                scheduled_publish_at=self.clock() + timedelta(days=3) if scheduled else None,
                created_at=stamp,
                updated_at=stamp,
            ),
        )
        await self._add(
            *[Question(id=qid, assignment_id=assignment_id) for qid in question_ids],
            *[ClassAssignment(class_id=cid, assignment_id=assignment_id) for cid in class_ids],
            *[UserAssignment(user_id=sid, assignment_id=assignment_id) for sid in student_ids],
        )
        return SeededAssignment(id=assignment_id, question_ids=question_ids)

    async def question(self, assignment: SeededAssignment) -> str:
        """Add a question to an existing assignment."""
        question_id = str(uuid4())
        await self._add(Question(id=question_id, assignment_id=assignment.id))
        assignment.question_ids.append(question_id)
        return question_id

    async def answer(
        self,
        student_id: str,
        assignment: SeededAssignment,
        question: int,
        correct: bool,
        complete: bool = True,
    ) -> bool:
        """Record an answer like the submission workflow does.

        Returns:
            True for a new submission, False when an existing answer was updated.
        """
        question_id = assignment.question_ids[question]
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(StudentAssignmentProgress).where(
                    StudentAssignmentProgress.student_id == student_id,
                    StudentAssignmentProgress.assignment_id == assignment.id,
                    StudentAssignmentProgress.question_id == question_id,
                )
            )
            row = result.scalar_one_or_none()
            is_new = row is None
            if row is None:
                row = StudentAssignmentProgress(
                    student_id=student_id,
                    assignment_id=assignment.id,
                    question_id=question_id,
                )
                session.add(row)
            row.is_complete = complete
            row.is_correct = correct
            await session.commit()
        return is_new


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def stats_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite file database with every table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'edustats.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def stats_sessionmaker(stats_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessionmaker configured like the application's."""
    return create_sessionmaker(stats_engine)


@pytest_asyncio.fixture(scope="function")
async def db(
    stats_sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the service under test."""
    async with stats_sessionmaker() as session:
        yield session


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-03-10 12:00 UTC."""
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def stats_settings() -> StatisticsSettings:
    """Default aggregation policy."""
    return StatisticsSettings()


@pytest.fixture
def locks() -> KeyedLock:
    """Lock registry private to the test's event loop."""
    return KeyedLock()


@pytest.fixture
def service(
    db: AsyncSession,
    stats_settings: StatisticsSettings,
    clock: FakeClock,
    locks: KeyedLock,
) -> StatisticsService:
    """Statistics service bound to the test session."""
    return StatisticsService(db, settings=stats_settings, clock=clock, locks=locks)


@pytest.fixture
def reconciler(
    db: AsyncSession,
    stats_settings: StatisticsSettings,
    clock: FakeClock,
    service: StatisticsService,
) -> StatisticsReconciler:
    """Reconciler sharing the service's session and locks."""
    return StatisticsReconciler(db, settings=stats_settings, clock=clock, service=service)


@pytest_asyncio.fixture(scope="function")
async def make_service(
    stats_sessionmaker: async_sessionmaker[AsyncSession],
    stats_settings: StatisticsSettings,
    clock: FakeClock,
    locks: KeyedLock,
) -> AsyncGenerator:
    """Factory of services on their own sessions, for concurrent callers."""
    sessions: list[AsyncSession] = []

    def _make() -> StatisticsService:
        session = stats_sessionmaker()
        sessions.append(session)
        return StatisticsService(session, settings=stats_settings, clock=clock, locks=locks)

    yield _make

    for session in sessions:
        await session.close()


@pytest.fixture
def seed(stats_sessionmaker: async_sessionmaker[AsyncSession], clock: FakeClock) -> Seeder:
    """Seeder for organizational rows and answers."""
    return Seeder(stats_sessionmaker, clock)
