"""Queue entry model for scan scheduling."""

from typing_extensions import override

from sqlalchemy import BigInteger, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ScanQueueEntry(Base):
    """FIFO queue entry for one pending or running scan.

    Written by the dispatch loop (handler assignment, requeue) and by the
    scan handler process (requeue or removal when it ends).
    Ordering uses queued_time_secs, queued_time_nano, then id.
    """

    __tablename__ = "scan_queue"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        Index("scan_queue_by_queued_time", "queued_time_secs", "queued_time_nano"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    queued_time_secs: Mapped[int] = mapped_column(BigInteger, nullable=False)
    queued_time_nano: Mapped[int] = mapped_column(Integer, nullable=False)
    handler_pid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_from: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @override
    def __repr__(self):
        return (
            f"<ScanQueueEntry(report={self.report}, handler_pid={self.handler_pid},"
            f" queued={self.queued_time_secs}.{self.queued_time_nano:09d})>"
        )
