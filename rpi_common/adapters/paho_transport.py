"""MQTT transport adapter built on paho-mqtt.

The client is driven from the calling thread via ``Client.loop()``; no
background network thread is started, so every call blocks until the broker
answered or the operation timed out.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterator
from typing import Any, Final

from paho.mqtt import client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from rpi_common.config.logging_config import get_logger
from rpi_common.domain.exceptions import TransportError
from rpi_common.domain.models import (
    DEFAULT_MQTT_TIMEOUT_SECONDS,
    Message,
    QoSLevel,
)
from rpi_common.ports.transport import TransportPort

logger = get_logger(__name__)

DEFAULT_LOOP_INTERVAL_SECONDS: Final[float] = 1.0

ClientFactory = Callable[[str], mqtt.Client]


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
    )


class PahoMqttTransport(TransportPort):
    """Single-threaded paho-mqtt connection."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_MQTT_TIMEOUT_SECONDS,
        loop_interval_seconds: float = DEFAULT_LOOP_INTERVAL_SECONDS,
        client_factory: ClientFactory | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout_seconds = timeout_seconds
        self._loop_interval = max(loop_interval_seconds, 0.01)
        self._client_factory = client_factory or _default_client_factory
        self._client: mqtt.Client | None = None
        self._connect_result: Any = None
        self._suback_results: dict[int, list[Any]] = {}
        self._inbox: deque[Message] = deque()
        self._disconnect_reason: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._disconnect_reason is None

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
        client = self._client_factory(client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        if username is not None:
            client.username_pw_set(username, password)

        self._client = client
        self._connect_result = None
        self._disconnect_reason = None

        logger.debug("mqtt_connecting", client_id=client_id, host=host, port=port)
        try:
            rc = client.connect(host, port, keepalive)
        except OSError as exc:
            self._client = None
            raise TransportError(
                f"Could not connect to MQTT broker {host}:{port}: {exc}"
            ) from exc

        try:
            self._raise_for_rc(rc, "connect")
            self._pump(lambda: self._connect_result is not None, "CONNACK")
            if getattr(self._connect_result, "is_failure", False):
                raise TransportError(
                    f"MQTT broker refused connection: {self._connect_result}"
                )
        except TransportError as exc:
            # The socket may already be open; close it before giving up
            self._client = None
            client.disconnect()
            logger.warning(
                "mqtt_connect_failed", client_id=client_id, host=host, error=str(exc)
            )
            raise

        logger.info("mqtt_connected", client_id=client_id, host=host, port=port)

    def publish(self, message: Message) -> None:
        client = self._require_client()
        info = client.publish(
            message.topic,
            message.payload,
            qos=int(message.qos),
            retain=message.retain,
        )
        self._raise_for_rc(info.rc, f"publish to {message.topic}")
        self._pump(info.is_published, f"publish confirmation on {message.topic}")

    def subscribe(self, topic_filter: str, qos: QoSLevel) -> None:
        client = self._require_client()
        rc, mid = client.subscribe(topic_filter, qos=int(qos))
        self._raise_for_rc(rc, f"subscribe to {topic_filter}")
        self._pump(lambda: mid in self._suback_results, f"SUBACK for {topic_filter}")

        reason_codes = self._suback_results.pop(mid)
        if any(getattr(code, "is_failure", False) for code in reason_codes):
            raise TransportError(f"MQTT broker rejected subscription to {topic_filter}")
        logger.info("mqtt_subscribed", topic_filter=topic_filter, qos=int(qos))

    def messages(self) -> Iterator[Message]:
        client = self._require_client()
        while True:
            while self._inbox:
                yield self._inbox.popleft()
            if self._disconnect_reason is not None:
                raise TransportError(f"MQTT connection lost: {self._disconnect_reason}")
            rc = client.loop(timeout=self._loop_interval)
            if rc != mqtt.MQTT_ERR_SUCCESS and not self._inbox:
                raise TransportError(f"MQTT connection lost: {mqtt.error_string(rc)}")

    def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        rc = client.disconnect()
        self._inbox.clear()
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise TransportError(f"MQTT disconnect failed: {mqtt.error_string(rc)}")
        logger.debug("mqtt_disconnected")

    # Internal helpers -------------------------------------------------

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise TransportError("MQTT transport is not connected")
        return self._client

    def _raise_for_rc(self, rc: int, action: str) -> None:
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT {action} failed: {mqtt.error_string(rc)}")

    def _pump(self, done: Callable[[], bool], waiting_for: str) -> None:
        client = self._require_client()
        deadline = time.monotonic() + self._timeout_seconds
        while not done():
            if self._disconnect_reason is not None:
                raise TransportError(
                    f"MQTT connection lost while waiting for {waiting_for}: "
                    f"{self._disconnect_reason}"
                )
            if time.monotonic() > deadline:
                raise TransportError(f"Timed out waiting for {waiting_for}")
            rc = client.loop(timeout=self._loop_interval)
            self._raise_for_rc(rc, f"network loop while waiting for {waiting_for}")

    # paho callbacks (callback API version 2) --------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        self._connect_result = reason_code

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        self._disconnect_reason = str(reason_code)
        logger.warning("mqtt_connection_dropped", reason=self._disconnect_reason)

    def _on_subscribe(
        self,
        client: mqtt.Client,
        userdata: Any,
        mid: int,
        reason_code_list: list[Any],
        properties: Any,
    ) -> None:
        self._suback_results[mid] = list(reason_code_list)

    def _on_message(
        self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage
    ) -> None:
        self._inbox.append(
            Message(
                topic=message.topic,
                payload=bytes(message.payload),
                retain=bool(message.retain),
                qos=QoSLevel(message.qos),
            )
        )


__all__ = ["PahoMqttTransport"]
