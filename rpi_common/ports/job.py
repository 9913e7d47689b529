"""Port definition for user-supplied jobs."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Self, runtime_checkable

from rpi_common.domain.models import ErrorInfo, RunHandle

if TYPE_CHECKING:
    import structlog

    from rpi_common.ports.communications import CommunicationsFactory


@dataclass(frozen=True, slots=True)
class JobContext:
    """What the runner hands to a job before ``set_up`` is called."""

    identity: str
    run: RunHandle
    logger: structlog.stdlib.BoundLogger
    communications: CommunicationsFactory


@runtime_checkable
class JobContract(Protocol):
    """Contract every job run by ``JobRunner`` fulfils."""

    def job_identity(self) -> str:
        """Unique name of this job type, used as lock key and client id prefix."""

    def bind(self, context: JobContext) -> None:
        """Receive the runtime context of the current run."""

    def set_up(self) -> Self:
        """Will be executed once before running the actual job."""

    def run_job(self) -> bool:
        """Run the actual job. Returns True if the job was successful."""

    def retrieve_errors(self) -> Iterator[ErrorInfo]:
        """If ``run_job`` returned False, yield the errors that happened."""

    def force_kill_after_seconds(self) -> int:
        """Seconds after which an external supervisor should kill the job."""

    def execute_every_microseconds(self) -> int:
        """Interval between runs when the job is executed in a loop."""

    def get_unique_identifier(self) -> str:
        """Identifier of the current run, handy to correlate log lines."""


__all__ = ["JobContext", "JobContract"]
