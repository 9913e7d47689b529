"""Job package exports."""

from rpi_common.jobs.base import BaseJob
from rpi_common.jobs.heartbeat import HeartbeatJob

__all__ = [
    "BaseJob",
    "HeartbeatJob",
]
