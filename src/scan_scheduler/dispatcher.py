"""Dispatch loop deciding which queued scans run now."""

import logging
import os
import signal
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from .config import SchedulerSettings
from .launcher import ProcessLauncher
from .liveness import ProcessProber, is_process_alive
from .schemas import QueueEntryRecord
from .shared_db import ScanQueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchSummary:
    """Counters for one dispatch tick."""

    active: int = 0
    launched: int = 0
    launch_failures: int = 0
    requeued_dead: int = 0
    errors: int = 0
    waiting: bool = False


class ScanQueueDispatcher:
    """Starts queued scans in FIFO order up to the handler ceiling.

    Meant to be called regularly by the host process. Each tick walks the
    queue oldest first, counts live handlers, requeues entries whose
    handler has died or could not be started, and launches handlers for
    idle entries. Once the ceiling is reached the tick stops, so no entry
    overtakes an older one that is still waiting.

    Example:
        dispatcher = ScanQueueDispatcher(
            repository,
            settings,
            launcher=ForkingLauncher(target),
        )
        summary = dispatcher.handle_scan_queue()
    """

    def __init__(
        self,
        repository: ScanQueueRepository,
        settings: SchedulerSettings,
        *,
        launcher: ProcessLauncher,
        prober: ProcessProber = is_process_alive,
    ):
        self.repository = repository
        self.settings = settings
        self.launcher = launcher
        self.prober = prober

    def handle_scan_queue(self) -> DispatchSummary:
        """Run one dispatch tick."""
        summary = DispatchSummary()
        if not self.settings.use_scan_queue:
            return summary

        try:
            entries = list(self.repository.iterate())
        except SQLAlchemyError as e:
            # Whole tick retried on the next call
            summary.errors += 1
            logger.warning(f"Could not read scan queue: {e}")
            return summary

        ceiling = self.settings.max_active_scan_handlers
        for entry in entries:
            if ceiling and summary.active >= ceiling:
                logger.debug("One or more scans are waiting")
                summary.waiting = True
                break

            try:
                if entry.has_handler:
                    self._check_handler(entry, summary)
                else:
                    self._start_handler(entry, summary)
            except SQLAlchemyError as e:
                # Retried on the next tick
                summary.errors += 1
                logger.warning(f"Scan queue update failed for report {entry.report}: {e}")

        return summary

    def _check_handler(self, entry: QueueEntryRecord, summary: DispatchSummary) -> None:
        if self.prober(entry.handler_pid):
            summary.active += 1
            logger.debug(f"{entry.handler_pid} still active")
            return

        logger.debug(f"{entry.handler_pid} no longer running")
        self.repository.requeue_to_end(entry.report)
        summary.requeued_dead += 1

    def _start_handler(self, entry: QueueEntryRecord, summary: DispatchSummary) -> None:
        pid = self.launcher(entry)
        if pid > 0:
            try:
                self.repository.set_handler_pid(entry.report, pid)
            except SQLAlchemyError:
                # An unrecorded handler would get a twin on the next tick
                self._signal(pid, signal.SIGTERM)
                raise
            summary.active += 1
            summary.launched += 1
            return

        logger.warning(f"Could not start handler for report {entry.report}, requeueing")
        summary.launch_failures += 1
        self.repository.requeue_to_end(entry.report)

    def cancel_scan(self, report: int, sig: int = signal.SIGTERM) -> bool:
        """Remove a scan from the queue and signal its handler if it is running.

        Args:
            report: Report row id of the scan
            sig: Signal sent to a live handler

        Returns:
            True if the scan was queued, False otherwise
        """
        entry = self.repository.get_entry(report)
        if entry is None:
            return False

        self.repository.remove(report)
        if entry.has_handler and self.prober(entry.handler_pid):
            self._signal(entry.handler_pid, sig)
        return True

    @staticmethod
    def _signal(pid: int, sig: int) -> None:
        try:
            os.kill(pid, sig)
            logger.info(f"Sent signal {sig} to handler {pid}")
        except ProcessLookupError:
            logger.debug(f"Handler {pid} exited before it could be signalled")
