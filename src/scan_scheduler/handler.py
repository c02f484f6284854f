"""Scan handler run inside a forked process for one queue entry."""

import logging
import random
import signal
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from .config import SchedulerSettings
from .schemas import QueueEntryRecord
from .shared_db import ScanQueueRepository

logger = logging.getLogger(__name__)


class ScanOutcome(str, Enum):
    """How a handler left its queue entry."""

    FINISHED = "finished"  # entry removed
    YIELDED = "yielded"  # entry requeued to the back
    FAILED = "failed"  # entry removed after an error
    STOPPED = "stopped"  # stop requested, entry left alone


class ScanRunner(ABC):
    """Base class for scan execution backends."""

    @abstractmethod
    def step(self, entry: QueueEntryRecord) -> bool:
        """
        Perform one unit of scan work.

        Args:
            entry: Queue entry being handled

        Returns:
            True while the scan is still active, False once it has finished
        """
        pass


class StubScanRunner(ScanRunner):
    """Placeholder runner that finishes at random.

    Each step continues with continue_probability, so a scan lasts a
    geometric number of steps. Stands in for polling a real scanner.
    """

    def __init__(self, continue_probability: float = 0.9, rng: random.Random | None = None):
        if not 0.0 <= continue_probability <= 1.0:
            raise ValueError("continue_probability must be between 0 and 1")
        self.continue_probability = continue_probability
        self.rng = rng or random.Random()

    def step(self, entry: QueueEntryRecord) -> bool:
        return self.rng.random() < self.continue_probability


# ============================================================================
# Per-process user context
# ============================================================================


@dataclass(frozen=True)
class UserContext:
    """Credentials a handler process acts with."""

    owner: int | None
    report: int
    task: int | None


current_user: UserContext | None = None


def establish_user_context(entry: QueueEntryRecord) -> UserContext:
    """Scope this process to the owner of the queue entry.

    Handler processes run exactly one scan, so a process-wide value is enough.
    """
    global current_user
    current_user = UserContext(owner=entry.owner, report=entry.report, task=entry.task)
    return current_user


# ============================================================================
# Handler
# ============================================================================


class ScanHandler:
    """Runs one scan within a time budget traded against queue pressure.

    The scan keeps running until it finishes, or until its active time has
    passed while more scans are queued than may run at once; it then
    yields by requeueing itself. Without pressure it carries on past its
    budget instead of paying for a process restart.
    """

    def __init__(
        self,
        repository: ScanQueueRepository,
        settings: SchedulerSettings,
        runner: ScanRunner | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.settings = settings
        self.runner = runner or StubScanRunner()
        self.clock = clock
        self.sleep = sleep
        self._stop_requested = False

    def request_stop(self) -> None:
        self._stop_requested = True

    def install_stop_handler(self) -> None:
        """Stop the scan loop on SIGTERM, e.g. after the scan was cancelled."""

        def _on_sigterm(signum, frame):
            logger.info(f"Received signal {signum}, stopping")
            self.request_stop()

        signal.signal(signal.SIGTERM, _on_sigterm)

    def handle_entry(self, entry: QueueEntryRecord) -> ScanOutcome:
        """Run the scan for entry and leave its queue row in a terminal state."""
        establish_user_context(entry)
        logger.debug(
            f"Handling scan {entry.report_uuid} ({entry.report}) for task {entry.task}"
        )

        deadline = self.clock() + self.settings.scan_handler_active_time
        while True:
            if self._stop_requested:
                logger.info(f"Scan {entry.report} stopped before completion")
                return ScanOutcome.STOPPED

            try:
                still_active = self.runner.step(entry)
            except Exception as e:
                logger.exception(f"Scan {entry.report} failed: {e}")
                self.repository.remove(entry.report)
                return ScanOutcome.FAILED

            if not still_active:
                break

            if self.clock() >= deadline and self._yield_to_waiting_scans(entry):
                return ScanOutcome.YIELDED

            self.sleep(self.settings.scan_handler_poll_interval)

        logger.debug(f"Scan {entry.report_uuid} ({entry.report}) for task {entry.task} ended")
        self.repository.remove(entry.report)
        return ScanOutcome.FINISHED

    def _yield_to_waiting_scans(self, entry: QueueEntryRecord) -> bool:
        """Requeue entry if more scans are queued than may run at once.

        A store error leaves the entry untouched and the scan keeps running;
        the pressure check is repeated after the next unit of work.
        """
        try:
            if not self.settings.under_pressure(self.repository.length()):
                return False
            self.repository.requeue_to_end(entry.report)
        except SQLAlchemyError as e:
            logger.warning(f"Could not check scan queue for report {entry.report}: {e}")
            return False

        logger.debug(
            f"Requeued scan {entry.report_uuid} ({entry.report}) for task {entry.task}"
        )
        return True


def run_scan_handler(
    repository: ScanQueueRepository,
    settings: SchedulerSettings,
    entry: QueueEntryRecord,
    runner: ScanRunner | None = None,
) -> ScanOutcome:
    """Entry point of a forked handler process."""
    handler = ScanHandler(repository, settings, runner)
    handler.install_stop_handler()
    return handler.handle_entry(entry)
