"""Double-fork launcher for scan handler processes.

The daemon forks a short-lived intermediate process, which forks the
actual handler and reports the handler's PID back through a pipe before
exiting. The daemon only waits for the intermediate, so it never blocks
for the length of a scan, and the handler is reparented away from the
daemon so it never becomes the daemon's zombie.
"""

import logging
import os
import signal
import struct
from collections.abc import Callable
from typing import NoReturn, Protocol

from .schemas import QueueEntryRecord

logger = logging.getLogger(__name__)

LAUNCH_FAILED = -1

# pid_t in native byte order, no padding
_PID_FORMAT = "=i"
_PID_SIZE = struct.calcsize(_PID_FORMAT)

HandlerTarget = Callable[[QueueEntryRecord], None]


class ProcessLauncher(Protocol):
    def __call__(self, entry: QueueEntryRecord) -> int: ...


def fork_scan_handler(
    entry: QueueEntryRecord,
    target: HandlerTarget,
    *,
    after_fork: Callable[[], None] | None = None,
) -> int:
    """Start a detached handler process for a queue entry.

    Args:
        entry: Queue entry the handler will run
        target: Function run in the handler process with the entry
        after_fork: Run in the handler process before target, to reset
            per-process resources such as database connections

    Returns:
        PID of the handler process, or LAUNCH_FAILED if the pipe, either
        fork, the PID transfer or reaping the intermediate process failed
    """
    try:
        read_fd, write_fd = os.pipe()
    except OSError as e:
        logger.warning(f"Failed to create pipe: {e}")
        return LAUNCH_FAILED

    try:
        child_pid = os.fork()
    except OSError as e:
        os.close(read_fd)
        os.close(write_fd)
        logger.warning(f"fork failed: {e}")
        return LAUNCH_FAILED

    if child_pid == 0:
        _run_intermediate(read_fd, write_fd, entry, target, after_fork)

    os.close(write_fd)
    try:
        handler_pid = _read_pid(read_fd)
    finally:
        os.close(read_fd)

    # Reap the intermediate on every path so it never lingers as a zombie
    if not _reap(child_pid):
        return LAUNCH_FAILED

    if handler_pid is None or handler_pid <= 0:
        return LAUNCH_FAILED

    logger.debug(f"Started handler {handler_pid} for report {entry.report}")
    return handler_pid


class ForkingLauncher:
    """ProcessLauncher that double-forks a fixed handler target."""

    def __init__(self, target: HandlerTarget, after_fork: Callable[[], None] | None = None):
        self.target: HandlerTarget = target
        self.after_fork: Callable[[], None] | None = after_fork

    def __call__(self, entry: QueueEntryRecord) -> int:
        return fork_scan_handler(entry, self.target, after_fork=self.after_fork)


def _read_pid(read_fd: int) -> int | None:
    try:
        data = os.read(read_fd, _PID_SIZE)
    except OSError as e:
        logger.warning(f"Could not read handler PID from pipe: {e}")
        return None

    if len(data) != _PID_SIZE:
        logger.warning(
            f"Could not read handler PID from pipe: received {len(data)} bytes,"
            f" expected {_PID_SIZE}"
        )
        return None

    (pid,) = struct.unpack(_PID_FORMAT, data)
    logger.debug(f"Received handler PID {pid}")
    return pid


def _reap(child_pid: int) -> bool:
    # waitpid retries on EINTR by itself
    try:
        _, status = os.waitpid(child_pid, 0)
    except ChildProcessError:
        logger.warning(f"Failed to get exit status of intermediate process {child_pid}")
        return False
    except OSError as e:
        logger.warning(f"waitpid: {e}")
        return False

    if os.WIFEXITED(status) and os.WEXITSTATUS(status) != 0:
        logger.debug(
            f"Intermediate process {child_pid} exited with status {os.WEXITSTATUS(status)}"
        )
    return True


def _write_pid(write_fd: int, pid: int) -> bool:
    data = struct.pack(_PID_FORMAT, pid)
    try:
        sent = os.write(write_fd, data)
    except OSError as e:
        logger.warning(f"Failed to write PID to pipe: {e}")
        return False

    if sent < len(data):
        logger.warning(f"Failed to write PID to pipe ({sent} of {len(data)} bytes sent)")
        return False
    return True


def _run_intermediate(
    read_fd: int,
    write_fd: int,
    entry: QueueEntryRecord,
    target: HandlerTarget,
    after_fork: Callable[[], None] | None,
) -> NoReturn:
    status = 1
    try:
        os.close(read_fd)
        try:
            grandchild_pid = os.fork()
        except OSError as e:
            logger.warning(f"fork failed: {e}")
            grandchild_pid = -1

        if grandchild_pid == 0:
            _run_handler(write_fd, entry, target, after_fork)

        if grandchild_pid > 0 and _write_pid(write_fd, grandchild_pid):
            status = 0
        os.close(write_fd)
    finally:
        # Never run the parent's cleanup or atexit hooks from here
        os._exit(status)


def _run_handler(
    write_fd: int,
    entry: QueueEntryRecord,
    target: HandlerTarget,
    after_fork: Callable[[], None] | None,
) -> NoReturn:
    status = 1
    try:
        os.close(write_fd)

        # The daemon may ignore SIGCHLD; handlers need to wait for their own children
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)

        if after_fork is not None:
            after_fork()
        target(entry)
        status = 0
    except Exception:
        logger.exception(f"Handler for report {entry.report} failed")
    finally:
        os._exit(status)
