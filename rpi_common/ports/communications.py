"""Port definition for external communications.

Common interface for every outbound channel a job may use. Only MQTT is
implemented for now.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final, Protocol, runtime_checkable

from rpi_common.domain.models import Message, QoSLevel


class _StopSubscription:
    """Sentinel type returned by a handler to leave the receive loop."""

    def __repr__(self) -> str:
        return "STOP_SUBSCRIPTION"


STOP_SUBSCRIPTION: Final[_StopSubscription] = _StopSubscription()

MessageHandler = Callable[[Message], Any]


@runtime_checkable
class CommunicationsPort(Protocol):
    """Interface exposed to jobs for publishing and subscribing."""

    def check_prerequisites(self) -> CommunicationsPort:
        """Validate configuration before the channel is used.

        Raises:
            ConfigurationError: Required settings are missing.
        """

    def publish(self, topic: str, payload: bytes | str) -> bool:
        """Publish ``payload`` on ``topic``. Returns True once sent."""

    def subscribe_to_topic(
        self,
        topic_filter: str,
        handler: MessageHandler,
        qos: QoSLevel = QoSLevel.AT_MOST_ONCE,
    ) -> int:
        """Call ``handler`` for every message matching ``topic_filter``.

        Blocks until the handler returns ``STOP_SUBSCRIPTION`` or the
        transport disconnects (``TransportError``). Returns the number of
        handled messages.
        """

    def disconnect(self) -> None:
        """Drop the underlying connection, if any."""


CommunicationsFactory = Callable[[str], CommunicationsPort]


__all__ = [
    "STOP_SUBSCRIPTION",
    "CommunicationsFactory",
    "CommunicationsPort",
    "MessageHandler",
]
