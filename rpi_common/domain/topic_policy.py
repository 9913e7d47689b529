"""House rules deriving delivery attributes from a topic name."""

from __future__ import annotations

from typing import Final

from rpi_common.domain.models import Message, QoSLevel

SENSOR_TOPIC_PREFIX: Final[str] = "sensors/"
COMMANDS_MARKER: Final[str] = "commands"


def is_sensor_topic(topic: str) -> bool:
    return topic.startswith(SENSOR_TOPIC_PREFIX)


def is_command_topic(topic: str) -> bool:
    return COMMANDS_MARKER in topic


def build_message(topic: str, payload: bytes | str) -> Message:
    """Build the message to publish on ``topic`` with the house delivery rules.

    Last values of sensor data are retained by the broker. Commands are
    retained and sent with the highest QoS level. A topic matching both
    rules gets both effects.
    """

    body = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    retain = False
    qos = QoSLevel.AT_MOST_ONCE

    if is_sensor_topic(topic):
        retain = True

    if is_command_topic(topic):
        qos = QoSLevel.EXACTLY_ONCE
        retain = True

    return Message(topic=topic, payload=body, retain=retain, qos=qos)


__all__ = [
    "COMMANDS_MARKER",
    "SENSOR_TOPIC_PREFIX",
    "build_message",
    "is_command_topic",
    "is_sensor_topic",
]
