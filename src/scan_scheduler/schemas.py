"""
Pydantic schemas for scan queue records.
Shared between the dispatch loop and scan handler processes.
"""

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class StartFrom(IntEnum):
    """Where a queued scan resumes when its handler starts."""

    BEGINNING = 0
    STOPPED = 1
    STOPPED_OR_BEGINNING = 2


class QueueEntryRecord(BaseModel):
    """Snapshot of one queue row joined with its report."""

    model_config = ConfigDict(frozen=True)

    report: int = Field(..., description="Report row id, unique per entry")
    handler_pid: int = Field(0, ge=0, description="PID of the assigned handler, 0 if none")
    start_from: StartFrom = StartFrom.BEGINNING
    report_uuid: str | None = None
    task: int | None = None
    owner: int | None = None
    queued_time_secs: int = 0
    queued_time_nano: int = Field(0, ge=0, lt=1_000_000_000)

    @property
    def queued_at_ns(self) -> int:
        return self.queued_time_secs * 1_000_000_000 + self.queued_time_nano

    @property
    def has_handler(self) -> bool:
        return self.handler_pid != 0
