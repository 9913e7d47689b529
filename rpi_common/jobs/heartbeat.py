"""Example job publishing a liveness heartbeat for the host."""

from __future__ import annotations

import json
import socket
from datetime import UTC, datetime

from rpi_common.domain.exceptions import TransportError
from rpi_common.jobs.base import BaseJob


class HeartbeatJob(BaseJob):
    """Publish ``{"host", "run", "at"}`` to ``status/<host>/heartbeat``."""

    force_kill_seconds = 30
    interval_microseconds = 60_000_000

    def __init__(self) -> None:
        super().__init__()
        self._hostname = ""

    @property
    def topic(self) -> str:
        return f"status/{self._hostname}/heartbeat"

    def set_up(self) -> HeartbeatJob:
        self._hostname = socket.gethostname()
        return self

    def build_payload(self) -> str:
        return json.dumps(
            {
                "host": self._hostname,
                "job": self.job_identity(),
                "run": self.get_unique_identifier(),
                "at": datetime.now(tz=UTC).isoformat(),
            }
        )

    def run_job(self) -> bool:
        channel = self.communications("MQTT")
        try:
            channel.publish(self.topic, self.build_payload())
        except TransportError as exc:
            self.record_error("heartbeat_publish_failed", topic=self.topic, error=str(exc))
            return False
        finally:
            channel.disconnect()

        self.logger.info("heartbeat_published", topic=self.topic)
        return True


__all__ = ["HeartbeatJob"]
