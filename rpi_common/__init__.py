"""Single-instance scheduled jobs with structured logging and MQTT messaging."""

from rpi_common.domain.models import ExitStatus, Message, QoSLevel
from rpi_common.jobs.base import BaseJob
from rpi_common.ports.communications import STOP_SUBSCRIPTION
from rpi_common.use_cases.job_runner import JobRunner

__all__ = [
    "STOP_SUBSCRIPTION",
    "BaseJob",
    "ExitStatus",
    "JobRunner",
    "Message",
    "QoSLevel",
]
