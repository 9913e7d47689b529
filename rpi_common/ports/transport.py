"""Port definition for publish/subscribe transports."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from rpi_common.domain.models import Message, QoSLevel


@runtime_checkable
class TransportPort(Protocol):
    """Low-level broker connection used by a communications facade.

    All failures surface as ``TransportError``.
    """

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
        """Open the connection and wait for the broker to accept it."""

    def publish(self, message: Message) -> None:
        """Send ``message`` and return once the broker side accepted it."""

    def subscribe(self, topic_filter: str, qos: QoSLevel) -> None:
        """Register interest in ``topic_filter``."""

    def messages(self) -> Iterator[Message]:
        """Yield inbound messages in arrival order until the connection drops."""

    def disconnect(self) -> None:
        """Close the connection."""


__all__ = ["TransportPort"]
