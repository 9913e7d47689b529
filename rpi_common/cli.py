"""Command line entry point running a single job instance."""

from __future__ import annotations

import argparse
import importlib

from rpi_common import runtime
from rpi_common.adapters.flock_lock_manager import FlockLockManager
from rpi_common.config.logging_config import get_logger
from rpi_common.config.settings import get_settings
from rpi_common.domain.exceptions import JobError
from rpi_common.domain.models import ExitStatus
from rpi_common.jobs.base import BaseJob
from rpi_common.use_cases.job_runner import JobRunner

logger = get_logger(__name__)


def load_job_class(job_path: str) -> type[BaseJob]:
    """Resolve ``package.module:ClassName`` to a job class.

    Raises:
        JobError: If the path is malformed, cannot be imported or does not
            name a ``BaseJob`` subclass
    """
    if ":" not in job_path:
        raise JobError(f"Job path must be 'module:ClassName', got: {job_path}")

    module_path, class_name = job_path.rsplit(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise JobError(f"Cannot import job module {module_path!r}: {exc}") from exc

    job_class = getattr(module, class_name, None)
    if not isinstance(job_class, type) or not issubclass(job_class, BaseJob):
        raise JobError(f"{job_path!r} does not name a BaseJob subclass")
    return job_class


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a single-instance job")
    parser.add_argument(
        "job",
        help="Job class to run, as 'package.module:ClassName'",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running the job at its own interval until SIGTERM/SIGINT",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured logging level",
    )
    parser.add_argument(
        "--blocking-lock",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Wait for a running instance instead of exiting with status 1",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    try:
        job_class = load_job_class(args.job)
    except JobError as exc:
        runtime.initialize_logging(
            settings, json_logs=args.json_logs, log_level=args.log_level
        )
        logger.error("job_load_failed", job=args.job, error=str(exc))
        return int(ExitStatus.JOB_FAILED)

    runtime.initialize_logging(
        settings,
        job_name=job_class.simple_name(),
        json_logs=args.json_logs,
        log_level=args.log_level,
    )

    blocking = settings.lock_blocking if args.blocking_lock is None else args.blocking_lock
    job = job_class()
    runner = JobRunner(
        job,
        lock_manager=FlockLockManager(settings.lock_dir, blocking=blocking),
        broker_config=settings.broker_config(),
    )

    if not args.loop:
        return int(runner.run())

    shutdown = runtime.LoopShutdown()
    shutdown.install()
    status = runtime.run_job_loop(
        controller=shutdown,
        interval_microseconds=job.execute_every_microseconds(),
        action=runner.run,
    )
    return int(status)


if __name__ == "__main__":
    raise SystemExit(main())
