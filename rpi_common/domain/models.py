"""Domain models for rpi_common jobs.

Wire-facing values (messages, broker configuration) use Pydantic v2;
per-run bookkeeping uses plain dataclasses.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import Any, Final, TypeAlias
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from rpi_common.domain.exceptions import InvalidStateTransitionError

DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_KEEPALIVE_SECONDS: Final[int] = 60
DEFAULT_MQTT_TIMEOUT_SECONDS: Final[float] = 10.0

ErrorInfo: TypeAlias = Mapping[str, Any] | str


class ExitStatus(IntEnum):
    """Process exit codes produced by a job run."""

    OK = 0
    LOCK_CONTENTION = 1
    JOB_FAILED = 2


class QoSLevel(IntEnum):
    """MQTT delivery guarantee."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


class RunState(StrEnum):
    """Lifecycle states of a single job run."""

    CREATED = "created"
    LOCK_PENDING = "lock_pending"
    LOCK_FAILED = "lock_failed"
    INITIALIZED = "initialized"
    SETTING_UP = "setting_up"
    RUNNING = "running"
    FINISHING = "finishing"
    FINISHED = "finished"


class ConnectionState(StrEnum):
    """Connection lifecycle of a communications facade."""

    UNCONNECTED = "unconnected"
    CONNECTED = "connected"


_ALLOWED_TRANSITIONS: Final[dict[RunState, frozenset[RunState]]] = {
    RunState.CREATED: frozenset({RunState.LOCK_PENDING}),
    RunState.LOCK_PENDING: frozenset({RunState.LOCK_FAILED, RunState.INITIALIZED}),
    RunState.LOCK_FAILED: frozenset(),
    RunState.INITIALIZED: frozenset({RunState.SETTING_UP}),
    # A propagated fault jumps straight to cleanup
    RunState.SETTING_UP: frozenset({RunState.RUNNING, RunState.FINISHING}),
    RunState.RUNNING: frozenset({RunState.FINISHING}),
    RunState.FINISHING: frozenset({RunState.FINISHED}),
    RunState.FINISHED: frozenset(),
}


@dataclass(slots=True)
class RunHandle:
    """Per-invocation bookkeeping used to correlate log lines of one run."""

    run_id: str = field(default_factory=lambda: uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    lock_acquired: bool = False
    state: RunState = RunState.CREATED
    _monotonic_start: float = field(default_factory=time.monotonic, repr=False)

    def transition(self, target: RunState) -> None:
        """Move to ``target``, rejecting edges the lifecycle does not define."""

        if target not in _ALLOWED_TRANSITIONS[self.state]:
            msg = f"Cannot move run {self.run_id} from {self.state} to {target}"
            raise InvalidStateTransitionError(msg)
        self.state = target

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.state]

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._monotonic_start


@dataclass(slots=True)
class LockToken:
    """Proof of exclusive ownership of a job identity's execution slot."""

    identity: str
    run_id: str
    path: Path
    fd: int | None
    released: bool = False


class Message(BaseModel):
    """A single publish/subscribe message as sent to or received from the broker."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., min_length=1, description="Topic name")
    payload: bytes = Field(default=b"", description="Raw message body")
    retain: bool = Field(default=False, description="Broker keeps last value")
    qos: QoSLevel = Field(default=QoSLevel.AT_MOST_ONCE, description="QoS level")

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the payload, replacing undecodable bytes."""
        return self.payload.decode(encoding, errors="replace")


class BrokerConfig(BaseModel):
    """Explicit connection settings handed to a communications facade."""

    host: str | None = Field(default=None, description="Broker hostname")
    port: int = Field(default=DEFAULT_MQTT_PORT, description="Broker port")
    username: str | None = Field(default=None, description="Broker username")
    password: SecretStr | None = Field(default=None, description="Broker password")
    keepalive_seconds: int = Field(
        default=DEFAULT_MQTT_KEEPALIVE_SECONDS, description="MQTT keepalive"
    )
    timeout_seconds: float = Field(
        default=DEFAULT_MQTT_TIMEOUT_SECONDS,
        description="Upper bound for connect/publish/subscribe round trips",
    )

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            msg = "port must be between 1 and 65535"
            raise ValueError(msg)
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            msg = "timeout_seconds must be positive"
            raise ValueError(msg)
        return value

    @property
    def credentials(self) -> tuple[str, str] | None:
        """Username/password pair, only when both halves are configured."""
        if self.username and self.password is not None:
            return self.username, self.password.get_secret_value()
        return None


__all__ = [
    "BrokerConfig",
    "ConnectionState",
    "ErrorInfo",
    "ExitStatus",
    "LockToken",
    "Message",
    "QoSLevel",
    "RunHandle",
    "RunState",
]
