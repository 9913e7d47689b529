"""Base class for jobs executed by ``JobRunner``."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any, ClassVar, Final, Self

import structlog

from rpi_common.config.logging_config import get_logger
from rpi_common.domain.exceptions import JobError
from rpi_common.domain.models import ErrorInfo
from rpi_common.ports.communications import CommunicationsPort
from rpi_common.ports.job import JobContext, JobContract

DEFAULT_FORCE_KILL_AFTER_SECONDS: Final[int] = 60
DEFAULT_EXECUTE_EVERY_MICROSECONDS: Final[int] = 60_000_000


class BaseJob(JobContract, ABC):
    """Convenience implementation of the job contract.

    Subclasses implement ``run_job`` and may override ``set_up`` and the
    timing hints. Errors collected with ``record_error`` are reported by
    ``retrieve_errors`` once the run finished.
    """

    #: Overrides the default identity (the fully-qualified class name)
    identifier: ClassVar[str | None] = None

    force_kill_seconds: ClassVar[int] = DEFAULT_FORCE_KILL_AFTER_SECONDS
    interval_microseconds: ClassVar[int] = DEFAULT_EXECUTE_EVERY_MICROSECONDS

    def __init__(self) -> None:
        self._context: JobContext | None = None
        self._errors: list[ErrorInfo] = []

    @classmethod
    def simple_name(cls) -> str:
        return cls.__name__

    def job_identity(self) -> str:
        if self.identifier:
            return self.identifier
        cls = type(self)
        return f"{cls.__module__}.{cls.__qualname__}"

    def bind(self, context: JobContext) -> None:
        self._context = context
        self._errors.clear()

    @property
    def context(self) -> JobContext:
        if self._context is None:
            raise JobError(f"{self.simple_name()} is not bound to a run yet")
        return self._context

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        if self._context is None:
            return get_logger(type(self).__module__)
        return self._context.logger

    def communications(self, transport_type: str = "MQTT") -> CommunicationsPort:
        """Open a communications channel for this run."""
        return self.context.communications(transport_type)

    def set_up(self) -> Self:
        return self

    @abstractmethod
    def run_job(self) -> bool:
        """Runs the actual job that needs to be executed."""

    def record_error(self, message: str, **details: Any) -> None:
        """Remember an error to be reported through ``retrieve_errors``."""
        self._errors.append({"message": message, **details} if details else message)

    def retrieve_errors(self) -> Iterator[ErrorInfo]:
        yield from self._errors

    def force_kill_after_seconds(self) -> int:
        return self.force_kill_seconds

    def execute_every_microseconds(self) -> int:
        return self.interval_microseconds

    def get_unique_identifier(self) -> str:
        return self.context.run.run_id


__all__ = [
    "DEFAULT_EXECUTE_EVERY_MICROSECONDS",
    "DEFAULT_FORCE_KILL_AFTER_SECONDS",
    "BaseJob",
]
