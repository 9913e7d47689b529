"""Single-shot job execution guarded by a host-local lock."""

from __future__ import annotations

from contextlib import ExitStack
from functools import partial

import structlog

from rpi_common.adapters.communications_factory import get_communications
from rpi_common.adapters.mqtt_communications import (
    TransportFactory,
    default_transport_factory,
)
from rpi_common.config.logging_config import bind_context, get_logger, unbind_context
from rpi_common.domain.exceptions import LockContentionError
from rpi_common.domain.models import (
    BrokerConfig,
    ErrorInfo,
    ExitStatus,
    LockToken,
    RunHandle,
    RunState,
)
from rpi_common.ports.communications import CommunicationsPort
from rpi_common.ports.job import JobContext, JobContract
from rpi_common.ports.lock_manager import LockManagerPort

logger = get_logger(__name__)


class JobRunner:
    """Drives one job through lock → set up → run → release.

    The runner owns the lock for the whole run; the job never sees it.
    Faults raised by ``run_job`` are logged and turned into
    ``ExitStatus.JOB_FAILED``. Faults raised by ``set_up`` propagate after
    the lock has been released.
    """

    def __init__(
        self,
        job: JobContract,
        *,
        lock_manager: LockManagerPort,
        broker_config: BrokerConfig | None = None,
        transport_factory: TransportFactory = default_transport_factory,
    ) -> None:
        self._job = job
        self._lock_manager = lock_manager
        self._broker_config = broker_config or BrokerConfig()
        self._transport_factory = transport_factory
        self._identity = job.job_identity()
        self._last_run: RunHandle | None = None

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def last_run(self) -> RunHandle | None:
        return self._last_run

    def communications_factory(
        self,
        transport_type: str,
        *,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> CommunicationsPort:
        """Open a channel of ``transport_type`` bound to this job and broker."""
        return get_communications(
            transport_type,
            logger=log or logger.bind(internal_name=self._identity),
            internal_name=self._identity,
            broker_config=self._broker_config,
            transport_factory=self._transport_factory,
        )

    def run(self) -> ExitStatus:
        handle = RunHandle()
        self._last_run = handle
        log = logger.bind(internal_name=self._identity, unique_identifier=handle.run_id)
        bind_context(unique_identifier=handle.run_id)
        try:
            token = self._acquire(handle, log)
            if token is None:
                return ExitStatus.LOCK_CONTENTION

            with ExitStack() as cleanup:
                # Callbacks run in reverse: release first, then the final log line
                cleanup.callback(self._log_terminating, handle, log)
                cleanup.callback(self._finish, handle, token)
                return self._execute(handle, log)
        finally:
            unbind_context("unique_identifier")

    # Internal helpers -------------------------------------------------

    def _acquire(
        self, handle: RunHandle, log: structlog.stdlib.BoundLogger
    ) -> LockToken | None:
        handle.transition(RunState.LOCK_PENDING)
        log.info("lock_acquire_requested")
        try:
            token = self._lock_manager.acquire(self._identity, run_id=handle.run_id)
        except LockContentionError:
            handle.transition(RunState.LOCK_FAILED)
            log.info(
                "lock_contention_exit",
                exit_status=int(ExitStatus.LOCK_CONTENTION),
            )
            return None

        handle.lock_acquired = True
        handle.transition(RunState.INITIALIZED)
        log.info(
            "program_initialized",
            start_date=handle.started_at.isoformat(),
            force_kill_after_seconds=self._job.force_kill_after_seconds(),
        )
        return token

    def _execute(
        self, handle: RunHandle, log: structlog.stdlib.BoundLogger
    ) -> ExitStatus:
        handle.transition(RunState.SETTING_UP)
        self._job.bind(
            JobContext(
                identity=self._identity,
                run=handle,
                logger=log,
                communications=partial(self.communications_factory, log=log),
            )
        )
        self._job.set_up()

        handle.transition(RunState.RUNNING)
        try:
            succeeded = self._job.run_job()
        except Exception as exc:  # noqa: BLE001
            log.exception(
                "job_run_failed",
                error=f"{type(exc).__name__}: {exc}",
            )
            return ExitStatus.JOB_FAILED

        errors: list[ErrorInfo] = list(self._job.retrieve_errors())
        if errors:
            log.error("job_reported_errors", errors=errors, error_count=len(errors))
            return ExitStatus.JOB_FAILED

        if not succeeded:
            log.warning("job_reported_failure")
            return ExitStatus.JOB_FAILED

        log.info("job_completed")
        return ExitStatus.OK

    def _finish(self, handle: RunHandle, token: LockToken) -> None:
        handle.transition(RunState.FINISHING)
        self._lock_manager.release(token)
        handle.transition(RunState.FINISHED)

    def _log_terminating(
        self, handle: RunHandle, log: structlog.stdlib.BoundLogger
    ) -> None:
        log.info(
            "program_terminating",
            state=handle.state.value,
            duration_seconds=round(handle.elapsed_seconds(), 3),
        )


__all__ = ["JobRunner"]
