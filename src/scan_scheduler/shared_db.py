"""SQLAlchemy-backed scan queue shared by the daemon and scan handlers.

The dispatch loop and every scan handler process open their own sessions
against the same scan_queue table. The repository handles:
- FIFO ordering by queued time (seconds + nanoseconds, then insertion order)
- Atomic single-statement mutations, one transaction per call
- Denormalising queue rows with their report, task and owner
- MQTT broadcasting of queue events
"""

import logging
import time
from collections.abc import Callable, Iterator
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .config import Config
from .database import reset_engine_after_fork
from .models import Report, ScanQueueEntry
from .mqtt import Broadcaster, get_broadcaster, reset_broadcaster_after_fork
from .queue_translator import queue_row_to_record, split_timestamp
from .schemas import QueueEntryRecord, StartFrom

logger = logging.getLogger(__name__)


class ScanQueueRepository:
    """Durable FIFO of queued and running scans.

    Example:
        engine = create_db_engine(Config.SCAN_QUEUE_DATABASE_URL)
        repository = ScanQueueRepository(create_session_factory(engine))

        repository.enqueue(report=42, start_from=StartFrom.STOPPED_OR_BEGINNING)

        for entry in repository.iterate():
            print(entry.report, entry.handler_pid)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        """Initialize repository with session factory and broadcaster.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
            broadcaster: Event broadcaster; the global one from Config if None
            clock: Wall clock returning nanoseconds since the epoch
        """
        self.session_factory: sessionmaker[Session] = session_factory
        self.clock: Callable[[], int] = clock

        self._own_broadcaster: bool = broadcaster is None
        self.broadcaster: Broadcaster = broadcaster or self._default_broadcaster()

    @staticmethod
    def _default_broadcaster() -> Broadcaster:
        return get_broadcaster(
            broadcast_type=Config.BROADCAST_TYPE,
            broker=Config.MQTT_BROKER,
            port=Config.MQTT_PORT,
            topic=Config.MQTT_TOPIC,
        )

    def _broadcast(self, event_type: str, report: int, **data: Any) -> None:
        _ = self.broadcaster.publish_event(event_type, report, data)

    def _next_queued_time(self, session: Session) -> tuple[int, int]:
        """Current time, pushed past the newest entry if the clock lags behind it."""
        now = self.clock()
        latest = session.execute(
            select(ScanQueueEntry.queued_time_secs, ScanQueueEntry.queued_time_nano)
            .order_by(
                ScanQueueEntry.queued_time_secs.desc(),
                ScanQueueEntry.queued_time_nano.desc(),
            )
            .limit(1)
        ).first()
        if latest is not None:
            latest_ns = latest.queued_time_secs * 1_000_000_000 + latest.queued_time_nano
            if now <= latest_ns:
                now = latest_ns + 1
        return split_timestamp(now)

    def reset_after_fork(self) -> None:
        """Reset per-process resources after this process was forked.

        Must be called in a scan handler process before it touches the
        queue, since it shares no usable connections with its parent.
        """
        bind = self.session_factory.kw.get("bind")
        if bind is not None:
            reset_engine_after_fork(bind)
        if self._own_broadcaster:
            reset_broadcaster_after_fork()
            self.broadcaster = self._default_broadcaster()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def enqueue(self, report: int, start_from: StartFrom = StartFrom.BEGINNING) -> bool:
        """Add a scan to the back of the queue with no handler assigned.

        Args:
            report: Report row id of the scan
            start_from: Resume policy used when a handler starts the scan

        Returns:
            True if queued, False if the report is already queued
        """
        with self.session_factory() as session:
            secs, nano = self._next_queued_time(session)
            session.add(
                ScanQueueEntry(
                    report=report,
                    queued_time_secs=secs,
                    queued_time_nano=nano,
                    handler_pid=0,
                    start_from=int(start_from),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(f"Report {report} is already in the scan queue")
                return False

        self._broadcast("enqueued", report, start_from=int(start_from))
        return True

    def requeue_to_end(self, report: int) -> bool:
        """Move an entry to the back of the queue and clear its handler.

        Args:
            report: Report row id of the scan

        Returns:
            True if the entry was requeued, False if it is not queued
        """
        with self.session_factory() as session:
            secs, nano = self._next_queued_time(session)
            stmt = (
                update(ScanQueueEntry)
                .where(ScanQueueEntry.report == report)
                .values(queued_time_secs=secs, queued_time_nano=nano, handler_pid=0)
                .returning(ScanQueueEntry.report)
            )
            updated: int | None = session.execute(stmt).scalar_one_or_none()
            session.commit()

        if updated is None:
            return False
        self._broadcast("requeued", report)
        return True

    def set_handler_pid(self, report: int, pid: int) -> bool:
        """Record the PID of the handler process running an entry.

        Returns:
            True if the entry was updated, False if it is not queued
        """
        with self.session_factory() as session:
            stmt = (
                update(ScanQueueEntry)
                .where(ScanQueueEntry.report == report)
                .values(handler_pid=pid)
                .returning(ScanQueueEntry.report)
            )
            updated: int | None = session.execute(stmt).scalar_one_or_none()
            session.commit()

        if updated is None:
            return False
        self._broadcast("handler_started", report, handler_pid=pid)
        return True

    def remove(self, report: int) -> bool:
        """Delete an entry from the queue.

        Returns:
            True if the entry was deleted, False if it is not queued
        """
        with self.session_factory() as session:
            stmt = (
                delete(ScanQueueEntry)
                .where(ScanQueueEntry.report == report)
                .returning(ScanQueueEntry.report)
            )
            deleted: int | None = session.execute(stmt).scalar_one_or_none()
            session.commit()

        if deleted is None:
            return False
        self._broadcast("removed", report)
        return True

    def clear(self) -> int:
        """Delete all entries.

        Returns:
            Number of entries deleted
        """
        with self.session_factory() as session:
            result = session.execute(delete(ScanQueueEntry))
            session.commit()
            count: int = result.rowcount

        logger.info(f"Scan queue cleared ({count} entries)")
        self._broadcast("cleared", 0, count=count)
        return count

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def length(self) -> int:
        """Count all entries, waiting or running."""
        with self.session_factory() as session:
            return session.execute(
                select(func.count()).select_from(ScanQueueEntry)
            ).scalar_one()

    @staticmethod
    def _entries_query():
        return (
            select(
                ScanQueueEntry.report,
                ScanQueueEntry.handler_pid,
                ScanQueueEntry.start_from,
                ScanQueueEntry.queued_time_secs,
                ScanQueueEntry.queued_time_nano,
                Report.uuid.label("report_uuid"),
                Report.task,
                Report.owner,
            )
            .outerjoin(Report, Report.id == ScanQueueEntry.report)
        )

    def iterate(self) -> Iterator[QueueEntryRecord]:
        """Yield entries oldest first.

        The queue is read in one short session when iteration starts, so no
        read transaction stays open while the caller mutates entries. The
        iterator is one-shot and may be abandoned at any point.
        """
        stmt = self._entries_query().order_by(
            ScanQueueEntry.queued_time_secs,
            ScanQueueEntry.queued_time_nano,
            ScanQueueEntry.id,
        )
        with self.session_factory() as session:
            rows = session.execute(stmt).all()

        for row in rows:
            yield queue_row_to_record(row)

    def get_entry(self, report: int) -> QueueEntryRecord | None:
        """Get one entry by report id.

        Returns:
            QueueEntryRecord if queued, None otherwise
        """
        stmt = self._entries_query().where(ScanQueueEntry.report == report)
        with self.session_factory() as session:
            row = session.execute(stmt).one_or_none()

        if row is None:
            return None
        return queue_row_to_record(row)
