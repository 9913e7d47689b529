"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import structlog

from rpi_common.adapters.flock_lock_manager import FlockLockManager
from rpi_common.domain.exceptions import LockContentionError, TransportError
from rpi_common.domain.models import BrokerConfig, LockToken, Message, QoSLevel
from rpi_common.jobs.base import BaseJob


@pytest.fixture(autouse=True)
def _reset_structlog() -> Generator[None, None, None]:
    """Keep structlog configuration from leaking between tests."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@dataclass
class FakeTransport:
    """In-memory transport recording every call it receives."""

    inbound: list[Message] = field(default_factory=list)
    fail_publish: bool = False
    calls: list[tuple[str, Any]] = field(default_factory=list)
    published: list[Message] = field(default_factory=list)

    def connect(
        self,
        client_id: str,
        host: str,
        port: int,
        *,
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
    ) -> None:
        self.calls.append(
            (
                "connect",
                {
                    "client_id": client_id,
                    "host": host,
                    "port": port,
                    "username": username,
                    "password": password,
                    "keepalive": keepalive,
                },
            )
        )

    def publish(self, message: Message) -> None:
        self.calls.append(("publish", message))
        if self.fail_publish:
            raise TransportError("broker went away")
        self.published.append(message)

    def subscribe(self, topic_filter: str, qos: QoSLevel) -> None:
        self.calls.append(("subscribe", (topic_filter, qos)))

    def messages(self) -> Iterator[Message]:
        self.calls.append(("messages", None))
        yield from self.inbound
        raise TransportError("MQTT connection lost: disconnected")

    def disconnect(self) -> None:
        self.calls.append(("disconnect", None))

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class SpyLockManager:
    """Lock manager double counting acquisitions and releases."""

    def __init__(self, *, contended: bool = False) -> None:
        self.contended = contended
        self.acquired: list[LockToken] = []
        self.released: list[LockToken] = []

    def acquire(self, identity: str, *, run_id: str) -> LockToken:
        if self.contended:
            raise LockContentionError(identity)
        token = LockToken(identity=identity, run_id=run_id, path=Path("/dev/null"), fd=None)
        self.acquired.append(token)
        return token

    def release(self, token: LockToken) -> None:
        self.released.append(token)


class RecordingJob(BaseJob):
    """Configurable job used to drive the runner through its paths."""

    identifier = "tests.RecordingJob"

    def __init__(
        self,
        *,
        result: bool = True,
        run_error: Exception | None = None,
        setup_error: Exception | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        super().__init__()
        self.result = result
        self.run_error = run_error
        self.setup_error = setup_error
        self.planned_errors = errors or []
        self.events: list[str] = []

    def set_up(self) -> RecordingJob:
        self.events.append("set_up")
        if self.setup_error is not None:
            raise self.setup_error
        return self

    def run_job(self) -> bool:
        self.events.append("run_job")
        for error in self.planned_errors:
            if isinstance(error, str):
                self.record_error(error)
            else:
                self.record_error(**error)
        if self.run_error is not None:
            raise self.run_error
        return self.result


@pytest.fixture
def broker_config() -> BrokerConfig:
    return BrokerConfig(host="broker.test", port=1883)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def transport_factory(fake_transport: FakeTransport) -> Any:
    created: list[BrokerConfig] = []

    def _factory(config: BrokerConfig) -> FakeTransport:
        created.append(config)
        return fake_transport

    _factory.created = created  # type: ignore[attr-defined]
    return _factory


@pytest.fixture
def spy_lock_manager() -> SpyLockManager:
    return SpyLockManager()


@pytest.fixture
def lock_manager(tmp_path: Path) -> FlockLockManager:
    return FlockLockManager(tmp_path / "locks")


@pytest.fixture
def bound_logger() -> structlog.stdlib.BoundLogger:
    return structlog.get_logger("tests").bind(internal_name="tests.RecordingJob")


@pytest.fixture
def contended_lock_manager() -> SpyLockManager:
    return SpyLockManager(contended=True)


@pytest.fixture
def make_job() -> type[RecordingJob]:
    return RecordingJob
