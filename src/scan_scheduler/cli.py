"""Command line entry point for the scan scheduler daemon and queue administration."""

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from functools import partial

from .config import Config, SchedulerSettings
from .database import create_db_engine, create_session_factory, init_db
from .dispatcher import ScanQueueDispatcher
from .handler import run_scan_handler
from .launcher import ForkingLauncher
from .mqtt import shutdown_broadcaster
from .schemas import StartFrom
from .shared_db import ScanQueueRepository

logger = logging.getLogger("scan-scheduler")


def build_dispatcher(
    database_url: str, settings: SchedulerSettings
) -> tuple[ScanQueueRepository, ScanQueueDispatcher]:
    """Wire repository, forking launcher and dispatcher for one database."""
    engine = create_db_engine(database_url)
    init_db(engine)
    repository = ScanQueueRepository(create_session_factory(engine))

    launcher = ForkingLauncher(
        target=partial(run_scan_handler, repository, settings),
        after_fork=repository.reset_after_fork,
    )
    return repository, ScanQueueDispatcher(repository, settings, launcher=launcher)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scan-scheduler", description="Scan queue scheduler")
    parser.add_argument(
        "--database-url",
        default=Config.SCAN_QUEUE_DATABASE_URL,
        help="SQLAlchemy URL of the scan queue database",
    )
    parser.add_argument("--log-level", default=Config.LOG_LEVEL)
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run the dispatch loop")
    run.add_argument("--once", action="store_true", help="Run a single dispatch tick")
    run.add_argument(
        "--use-scan-queue",
        action=argparse.BooleanOptionalAction,
        default=Config.USE_SCAN_QUEUE,
        help="Dispatch queued scans; without it the loop leaves the queue alone",
    )
    run.add_argument("--interval", type=float, default=Config.DISPATCH_INTERVAL)
    run.add_argument("--max-active", type=int, default=Config.MAX_ACTIVE_SCAN_HANDLERS)
    run.add_argument("--active-time", type=int, default=Config.SCAN_HANDLER_ACTIVE_TIME)

    enqueue = commands.add_parser("enqueue", help="Queue a scan")
    enqueue.add_argument("report", type=int)
    enqueue.add_argument(
        "--start-from",
        choices=[s.name.lower() for s in StartFrom],
        default=StartFrom.BEGINNING.name.lower(),
    )

    for name, help_text in (
        ("requeue", "Move a scan to the back of the queue"),
        ("remove", "Remove a scan from the queue"),
        ("cancel", "Remove a scan and stop its handler"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("report", type=int)

    commands.add_parser("list", help="List queued scans in dispatch order")
    commands.add_parser("length", help="Print the number of queued scans")
    commands.add_parser("clear", help="Remove all queued scans")
    return parser


def _run_loop(dispatcher: ScanQueueDispatcher, interval: float, once: bool) -> None:
    while True:
        summary = dispatcher.handle_scan_queue()
        logger.debug(f"Dispatch tick: {summary}")
        if once:
            return
        time.sleep(interval)


def main(argv: Sequence[str] | None = None) -> int:
    """Run a scheduler command.

    Returns:
        Process exit code
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level)

    settings = SchedulerSettings.from_config()
    if args.command == "run":
        settings.use_scan_queue = args.use_scan_queue
        settings.max_active_scan_handlers = args.max_active
        settings.scan_handler_active_time = args.active_time

    repository, dispatcher = build_dispatcher(args.database_url, settings)
    try:
        match args.command:
            case "run":
                if not settings.use_scan_queue:
                    logger.warning("Scan queue is disabled, no scans will be dispatched")
                logger.info(
                    f"Dispatching with at most {settings.max_active_scan_handlers or 'unlimited'}"
                    f" active handlers every {args.interval}s"
                )
                _run_loop(dispatcher, args.interval, args.once)
            case "enqueue":
                start_from = StartFrom[args.start_from.upper()]
                if not repository.enqueue(args.report, start_from):
                    print(f"Report {args.report} is already queued", file=sys.stderr)
                    return 1
            case "requeue" | "remove" | "cancel":
                action = {
                    "requeue": repository.requeue_to_end,
                    "remove": repository.remove,
                    "cancel": dispatcher.cancel_scan,
                }[args.command]
                if not action(args.report):
                    print(f"Report {args.report} is not queued", file=sys.stderr)
                    return 1
            case "list":
                for entry in repository.iterate():
                    print(
                        f"{entry.report}\t{entry.report_uuid or '-'}\t{entry.handler_pid}"
                        f"\t{entry.start_from.name.lower()}\t{entry.queued_time_secs}"
                        f".{entry.queued_time_nano:09d}"
                    )
            case "length":
                print(repository.length())
            case "clear":
                print(repository.clear())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        shutdown_broadcaster()

    return 0


if __name__ == "__main__":
    sys.exit(main())
