"""Shared test fixtures for scan_scheduler tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from scan_scheduler import ScanQueueRepository, SchedulerSettings
from scan_scheduler.models import Base, Report
from scan_scheduler.mqtt import NoOpBroadcaster

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine


SECOND = 1_000_000_000


class FakeClock:
    """Nanosecond wall clock that only moves when told to."""

    def __init__(self, start_ns: int = 1 * SECOND):
        self.now_ns = start_ns

    def __call__(self) -> int:
        return self.now_ns

    def set_seconds(self, seconds: float) -> None:
        self.now_ns = int(seconds * SECOND)

    def advance(self, seconds: float) -> None:
        self.now_ns += int(seconds * SECOND)


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine with all tables created.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    """Create session factory bound to in-memory engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=in_memory_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broadcaster() -> NoOpBroadcaster:
    return NoOpBroadcaster()


@pytest.fixture
def repository(
    session_factory: sessionmaker[Session], broadcaster: NoOpBroadcaster, clock: FakeClock
) -> ScanQueueRepository:
    """Create ScanQueueRepository with a no-op broadcaster and a fake clock."""
    return ScanQueueRepository(session_factory, broadcaster=broadcaster, clock=clock)


@pytest.fixture
def settings() -> SchedulerSettings:
    return SchedulerSettings(
        use_scan_queue=True,
        max_active_scan_handlers=2,
        scan_handler_active_time=0,
        scan_handler_poll_interval=0,
    )


@pytest.fixture
def add_report(session_factory: sessionmaker[Session]):
    """Factory inserting report rows the way the report layer would."""

    def _add_report(report_id: int, task: int = 1, owner: int = 1) -> int:
        with session_factory() as session:
            session.add(
                Report(id=report_id, uuid=f"report-{report_id:04d}", task=task, owner=owner)
            )
            session.commit()
        return report_id

    return _add_report
