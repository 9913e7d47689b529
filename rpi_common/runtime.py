"""Process-level helpers for the ``rpi-job`` entry point."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterable
from types import FrameType

from rpi_common.config.logging_config import get_logger, setup_logging
from rpi_common.config.settings import Settings
from rpi_common.domain.models import ExitStatus

logger = get_logger(__name__)

MICROSECONDS_PER_SECOND = 1_000_000
MIN_LOOP_INTERVAL_SECONDS = 0.1
STOP_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


class LoopShutdown:
    """Stop flag for ``--loop`` mode, raised by a termination signal."""

    def __init__(self) -> None:
        self._stopped = threading.Event()
        self.signal_name: str | None = None

    def is_set(self) -> bool:
        return self._stopped.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep until the next iteration is due or a stop was requested."""
        return self._stopped.wait(timeout)

    def request(self, signum: int, frame: FrameType | None = None) -> None:
        self.signal_name = signal.Signals(signum).name
        logger.info("job_loop_stop_requested", signal=self.signal_name)
        self._stopped.set()

    def install(self, signals: Iterable[signal.Signals] = STOP_SIGNALS) -> None:
        for signum in signals:
            signal.signal(signum, self.request)


def initialize_logging(
    settings: Settings,
    *,
    job_name: str | None = None,
    json_logs: bool = False,
    log_level: str | None = None,
) -> None:
    """Initialize structlog-based logging for a job process."""

    level = log_level or settings.log_level
    log_file = settings.log_file_for(job_name) if job_name else None
    setup_logging(
        log_level=level,
        json_logs=json_logs or settings.json_logs,
        log_file=log_file,
        retention_days=settings.log_retention_days,
    )
    logger.info(
        "logging_initialized",
        level=level,
        json_logs=json_logs or settings.json_logs,
        log_file=str(log_file) if log_file else None,
    )


def run_job_loop(
    *,
    controller: LoopShutdown,
    interval_microseconds: int,
    action: Callable[[], ExitStatus],
) -> ExitStatus:
    """Run ``action`` repeatedly until a stop is requested or the lock is taken.

    Every iteration is a full job run. Returns the status of the last one.
    """

    interval_seconds = max(
        MIN_LOOP_INTERVAL_SECONDS, interval_microseconds / MICROSECONDS_PER_SECOND
    )
    logger.info("job_loop_started", interval_seconds=interval_seconds)
    iteration = 0
    status = ExitStatus.OK
    while not controller.is_set():
        iteration += 1
        status = action()
        if status is ExitStatus.LOCK_CONTENTION:
            # Another instance owns the lock
            logger.warning("job_loop_lock_contention", iteration=iteration)
            break
        controller.wait(interval_seconds)

    logger.info(
        "job_loop_stopped",
        iterations=iteration,
        exit_status=int(status),
        signal=getattr(controller, "signal_name", None),
    )
    return status


__all__ = [
    "STOP_SIGNALS",
    "LoopShutdown",
    "initialize_logging",
    "run_job_loop",
]
