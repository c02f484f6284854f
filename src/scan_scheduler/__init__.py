"""Scan queue scheduler: durable FIFO, dispatch loop and scan handler processes."""

# Public API - Configuration and schemas
from .config import Config, SchedulerSettings
from .dispatcher import DispatchSummary, ScanQueueDispatcher
from .handler import ScanHandler, ScanOutcome, ScanRunner, StubScanRunner
from .launcher import LAUNCH_FAILED, ForkingLauncher, fork_scan_handler
from .liveness import is_process_alive
from .schemas import QueueEntryRecord, StartFrom

# Public API - Service implementations
from .shared_db import ScanQueueRepository

__all__ = [
    # Configuration
    "Config",
    "SchedulerSettings",
    # Services
    "ScanQueueRepository",
    "ScanQueueDispatcher",
    "DispatchSummary",
    "ScanHandler",
    "ScanOutcome",
    "ScanRunner",
    "StubScanRunner",
    "ForkingLauncher",
    "fork_scan_handler",
    "is_process_alive",
    "LAUNCH_FAILED",
    # Pydantic Models
    "QueueEntryRecord",
    "StartFrom",
]
