"""
Communications factory.

Provides a factory function to instantiate the communications channel
requested by a job. For now only MQTT is supported.
"""

import structlog

from rpi_common.adapters.mqtt_communications import (
    MqttCommunications,
    TransportFactory,
    default_transport_factory,
)
from rpi_common.domain.exceptions import UnsupportedTransportError
from rpi_common.domain.models import BrokerConfig
from rpi_common.ports.communications import CommunicationsPort


def get_communications(
    transport_type: str,
    *,
    logger: structlog.stdlib.BoundLogger,
    internal_name: str,
    broker_config: BrokerConfig,
    transport_factory: TransportFactory = default_transport_factory,
) -> CommunicationsPort:
    """Get a new communications channel of the given type.

    Every call builds an independent instance with its own connection.

    Args:
        transport_type: Channel name, case-insensitive ("mqtt")
        logger: Logger bound to the requesting job
        internal_name: Job identity of the requester
        broker_config: Broker connection settings
        transport_factory: Builds the low-level transport on first use

    Returns:
        CommunicationsPort: Ready-to-use facade

    Raises:
        UnsupportedTransportError: If transport_type is not supported
        ConfigurationError: If the broker configuration is incomplete

    Example:
        >>> channel = get_communications(
        ...     "MQTT",
        ...     logger=logger,
        ...     internal_name="jobs.Heartbeat",
        ...     broker_config=BrokerConfig(host="broker.local"),
        ... )
        >>> channel.publish("sensors/livingroom/temperature", "21.5")
    """
    if transport_type.upper() == "MQTT":
        return MqttCommunications(
            logger,
            internal_name,
            broker_config,
            transport_factory=transport_factory,
        )

    # Other communication types will some day follow...
    raise UnsupportedTransportError(transport_type)


__all__ = ["get_communications"]
