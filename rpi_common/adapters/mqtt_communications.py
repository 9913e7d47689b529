"""MQTT communications facade applying the house delivery rules."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Any

import structlog

from rpi_common.adapters.paho_transport import PahoMqttTransport
from rpi_common.domain.exceptions import ConfigurationError, TransportError
from rpi_common.domain.models import BrokerConfig, ConnectionState, QoSLevel
from rpi_common.domain.topic_policy import build_message
from rpi_common.ports.communications import (
    STOP_SUBSCRIPTION,
    CommunicationsPort,
    MessageHandler,
)
from rpi_common.ports.transport import TransportPort

TransportFactory = Callable[[BrokerConfig], TransportPort]


def default_transport_factory(config: BrokerConfig) -> TransportPort:
    return PahoMqttTransport(timeout_seconds=config.timeout_seconds)


class MqttCommunications(CommunicationsPort):
    """Publish/subscribe over one lazily opened MQTT connection.

    The connection is owned by this instance and never shared.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        internal_name: str,
        config: BrokerConfig,
        *,
        transport_factory: TransportFactory = default_transport_factory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the facade and validate its configuration.

        Args:
            logger: Logger bound to the owning job
            internal_name: Job identity, used as client id prefix
            config: Broker connection settings
            transport_factory: Builds the transport on first use
            clock: Source of the time-based client id suffix

        Raises:
            ConfigurationError: If the broker host or credentials are invalid
        """
        self._logger = logger
        self._internal_name = internal_name
        self._config = config
        self._transport_factory = transport_factory
        self._clock = clock
        self._state = ConnectionState.UNCONNECTED
        self._transport: TransportPort | None = None
        self._host = ""

        self.check_prerequisites()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def check_prerequisites(self) -> MqttCommunications:
        host = (self._config.host or "").strip()
        if not host:
            raise ConfigurationError(
                "A MQTT host (setting 'mqtt_host', env MQTT_HOST) must be provided"
            )

        has_username = bool(self._config.username)
        has_password = self._config.password is not None
        if has_username != has_password:
            raise ConfigurationError(
                "MQTT credentials need both MQTT_USERNAME and MQTT_PASSWORD"
            )

        self._host = host
        return self

    def build_client_id(self) -> str:
        """Client id unique per connection attempt."""
        return f"{self._internal_name}-{int(self._clock())}-{secrets.token_hex(3)}"

    def connect_if_needed(self) -> TransportPort:
        if self._state is ConnectionState.CONNECTED and self._transport is not None:
            return self._transport

        client_id = self.build_client_id()
        self._logger = self._logger.bind(client_id=client_id)

        transport = self._transport_factory(self._config)
        credentials = self._config.credentials
        transport.connect(
            client_id,
            self._host,
            self._config.port,
            username=credentials[0] if credentials else None,
            password=credentials[1] if credentials else None,
            keepalive=self._config.keepalive_seconds,
        )

        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self._logger.info(
            "mqtt_connection_established", host=self._host, port=self._config.port
        )
        return transport

    def publish(self, topic: str, payload: bytes | str) -> bool:
        transport = self.connect_if_needed()
        message = build_message(topic, payload)
        try:
            transport.publish(message)
        except TransportError as exc:
            self._drop_connection(exc)
            raise
        self._logger.debug(
            "mqtt_message_published",
            topic=message.topic,
            retain=message.retain,
            qos=int(message.qos),
            payload_bytes=len(message.payload),
        )
        return True

    def subscribe_to_topic(
        self,
        topic_filter: str,
        handler: MessageHandler,
        qos: QoSLevel = QoSLevel.AT_MOST_ONCE,
    ) -> int:
        transport = self.connect_if_needed()
        handled = 0
        try:
            transport.subscribe(topic_filter, qos)
            self._logger.info("mqtt_subscription_started", topic_filter=topic_filter)
            for message in transport.messages():
                handled += 1
                result: Any = handler(message)
                if result is STOP_SUBSCRIPTION:
                    break
        except TransportError as exc:
            self._drop_connection(exc, handled=handled)
            raise

        self._logger.info(
            "mqtt_subscription_stopped", topic_filter=topic_filter, handled=handled
        )
        return handled

    def disconnect(self) -> None:
        transport, self._transport = self._transport, None
        self._state = ConnectionState.UNCONNECTED
        if transport is not None:
            transport.disconnect()

    def _drop_connection(self, error: TransportError, **details: Any) -> None:
        """Forget a transport that failed so the next call reconnects."""
        transport, self._transport = self._transport, None
        self._state = ConnectionState.UNCONNECTED
        self._logger.warning("mqtt_connection_reset", error=str(error), **details)
        if transport is None:
            return
        try:
            transport.disconnect()
        except TransportError as close_error:
            self._logger.debug("mqtt_close_after_failure_failed", error=str(close_error))


__all__ = ["MqttCommunications", "TransportFactory", "default_transport_factory"]
