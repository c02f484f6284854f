"""Liveness checks for scan handler processes."""

import logging
import os
from typing import Protocol

logger = logging.getLogger(__name__)


class ProcessProber(Protocol):
    def __call__(self, pid: int) -> bool: ...


def is_process_alive(pid: int) -> bool:
    """Check whether a handler PID still refers to a running process.

    Sends signal 0, which performs the existence and permission checks
    without delivering anything. A PID we are not allowed to signal is not
    one of our handlers and counts as dead.

    PIDs are recycled by the OS, so a handler that died long ago may be
    reported alive if an unrelated process now has its PID. Zombies that
    have not been reaped yet also count as alive.

    Args:
        pid: Process id recorded for a queue entry

    Returns:
        True if the process exists and may be signalled
    """
    if pid <= 0:
        # Signal 0 to pid 0 or -1 would probe whole process groups
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.debug(f"Handler PID {pid} belongs to another user, treating as dead")
        return False
    return True
