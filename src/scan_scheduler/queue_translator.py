"""Row conversion helpers between the scan queue tables and QueueEntryRecord."""

from sqlalchemy import Row

from .schemas import QueueEntryRecord, StartFrom


def split_timestamp(timestamp_ns: int) -> tuple[int, int]:
    """Split a nanosecond timestamp into (seconds, nanoseconds)."""
    return divmod(timestamp_ns, 1_000_000_000)


def queue_row_to_record(row: Row) -> QueueEntryRecord:
    """Convert a joined scan_queue/reports row to a QueueEntryRecord.

    The row must expose the columns selected by the repository's queue
    query: report, handler_pid, start_from, queued_time_secs,
    queued_time_nano, report_uuid, task and owner. Report columns are None
    when the report row is missing.

    Returns:
        Pydantic QueueEntryRecord
    """
    try:
        start_from = StartFrom(row.start_from)
    except ValueError:
        start_from = StartFrom.BEGINNING

    return QueueEntryRecord(
        report=row.report,
        handler_pid=row.handler_pid,
        start_from=start_from,
        report_uuid=row.report_uuid,
        task=row.task,
        owner=row.owner,
        queued_time_secs=row.queued_time_secs,
        queued_time_nano=row.queued_time_nano,
    )
