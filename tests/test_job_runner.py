from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from structlog.testing import capture_logs

from rpi_common.adapters.flock_lock_manager import FlockLockManager
from rpi_common.adapters.mqtt_communications import MqttCommunications
from rpi_common.domain.exceptions import (
    ConfigurationError,
    JobError,
    UnsupportedTransportError,
)
from rpi_common.domain.models import BrokerConfig, ExitStatus, RunState
from rpi_common.use_cases.job_runner import JobRunner


def _events(logs: list[dict[str, Any]]) -> list[str]:
    return [entry["event"] for entry in logs]


def test_successful_run_follows_lifecycle(make_job, spy_lock_manager) -> None:
    job = make_job()
    runner = JobRunner(job, lock_manager=spy_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.OK
    assert job.events == ["set_up", "run_job"]
    assert len(spy_lock_manager.acquired) == 1
    assert spy_lock_manager.released == spy_lock_manager.acquired
    assert runner.last_run is not None
    assert runner.last_run.state is RunState.FINISHED
    assert runner.last_run.lock_acquired is True

    events = _events(logs)
    assert events.index("program_initialized") < events.index("job_completed")
    assert events[-1] == "program_terminating"
    run_id = runner.last_run.run_id
    terminating = logs[-1]
    assert terminating["internal_name"] == "tests.RecordingJob"
    assert terminating["unique_identifier"] == run_id


def test_lock_is_acquired_with_job_identity(make_job, spy_lock_manager) -> None:
    runner = JobRunner(make_job(), lock_manager=spy_lock_manager)

    runner.run()

    token = spy_lock_manager.acquired[0]
    assert token.identity == "tests.RecordingJob"
    assert token.run_id == runner.last_run.run_id


def test_lock_contention_exits_without_running_job(
    make_job, contended_lock_manager
) -> None:
    job = make_job()
    runner = JobRunner(job, lock_manager=contended_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.LOCK_CONTENTION
    assert int(status) == 1
    assert job.events == []
    assert contended_lock_manager.released == []
    assert runner.last_run.state is RunState.LOCK_FAILED
    assert runner.last_run.lock_acquired is False
    events = _events(logs)
    assert "lock_contention_exit" in events
    assert "program_terminating" not in events
    assert "program_initialized" not in events


def test_run_fault_is_logged_and_lock_released_once(make_job, spy_lock_manager) -> None:
    job = make_job(run_error=RuntimeError("sensor unreachable"))
    runner = JobRunner(job, lock_manager=spy_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.JOB_FAILED
    assert len(spy_lock_manager.released) == 1
    failure = next(entry for entry in logs if entry["event"] == "job_run_failed")
    assert failure["log_level"] == "error"
    assert failure["error"] == "RuntimeError: sensor unreachable"
    assert failure["unique_identifier"] == runner.last_run.run_id
    assert _events(logs)[-1] == "program_terminating"


def test_setup_fault_propagates_after_release(make_job, spy_lock_manager) -> None:
    job = make_job(setup_error=ValueError("bad config"))
    runner = JobRunner(job, lock_manager=spy_lock_manager)

    with capture_logs() as logs, pytest.raises(ValueError, match="bad config"):
        runner.run()

    assert job.events == ["set_up"]
    assert len(spy_lock_manager.released) == 1
    assert runner.last_run.state is RunState.FINISHED
    assert _events(logs)[-1] == "program_terminating"


def test_reported_errors_fail_the_run(make_job, spy_lock_manager) -> None:
    job = make_job(
        errors=["disk almost full", {"message": "publish failed", "topic": "sensors/x"}]
    )
    runner = JobRunner(job, lock_manager=spy_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.JOB_FAILED
    reported = next(entry for entry in logs if entry["event"] == "job_reported_errors")
    assert reported["log_level"] == "error"
    assert reported["errors"] == [
        "disk almost full",
        {"message": "publish failed", "topic": "sensors/x"},
    ]
    assert len(spy_lock_manager.released) == 1


def test_false_result_without_errors_fails_the_run(make_job, spy_lock_manager) -> None:
    runner = JobRunner(make_job(result=False), lock_manager=spy_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.JOB_FAILED
    assert "job_reported_failure" in _events(logs)


def test_each_run_gets_a_new_run_id(make_job, spy_lock_manager) -> None:
    runner = JobRunner(make_job(), lock_manager=spy_lock_manager)

    runner.run()
    first = runner.last_run
    runner.run()
    second = runner.last_run

    assert first.run_id != second.run_id
    assert len(spy_lock_manager.released) == 2


def test_job_receives_context_before_set_up(make_job, spy_lock_manager) -> None:
    job = make_job()
    runner = JobRunner(job, lock_manager=spy_lock_manager)

    runner.run()

    assert job.context.identity == "tests.RecordingJob"
    assert job.get_unique_identifier() == runner.last_run.run_id


def test_communications_factory_builds_mqtt_facade(
    make_job, spy_lock_manager, broker_config, transport_factory
) -> None:
    runner = JobRunner(
        make_job(),
        lock_manager=spy_lock_manager,
        broker_config=broker_config,
        transport_factory=transport_factory,
    )

    channel = runner.communications_factory("mqtt")
    other = runner.communications_factory("MQTT")

    assert isinstance(channel, MqttCommunications)
    assert channel is not other
    # Lazily connected: nothing created yet
    assert transport_factory.created == []


def test_communications_factory_rejects_unknown_type(make_job, spy_lock_manager) -> None:
    runner = JobRunner(
        make_job(),
        lock_manager=spy_lock_manager,
        broker_config=BrokerConfig(host="broker.test"),
    )

    with pytest.raises(UnsupportedTransportError, match="telegram"):
        runner.communications_factory("telegram")


def test_missing_broker_host_surfaces_as_job_failure(make_job, spy_lock_manager) -> None:
    class PublishingJob(make_job):
        def run_job(self) -> bool:
            self.communications("MQTT").publish("sensors/temp", b"1")
            return True

    runner = JobRunner(PublishingJob(), lock_manager=spy_lock_manager)

    with capture_logs() as logs:
        status = runner.run()

    assert status is ExitStatus.JOB_FAILED
    failure = next(entry for entry in logs if entry["event"] == "job_run_failed")
    assert failure["error"].startswith(ConfigurationError.__name__)


def test_job_publishes_through_context(
    make_job, spy_lock_manager, broker_config, transport_factory, fake_transport
) -> None:
    class PublishingJob(make_job):
        def run_job(self) -> bool:
            self.communications().publish("devices/commands/restart", "now")
            return True

    runner = JobRunner(
        PublishingJob(),
        lock_manager=spy_lock_manager,
        broker_config=broker_config,
        transport_factory=transport_factory,
    )

    assert runner.run() is ExitStatus.OK
    assert fake_transport.published[0].retain is True
    assert int(fake_transport.published[0].qos) == 2


def test_unbound_job_has_no_context(make_job) -> None:
    with pytest.raises(JobError):
        make_job().get_unique_identifier()


def test_runs_with_real_file_lock(make_job, tmp_path: Path) -> None:
    manager = FlockLockManager(tmp_path)
    runner = JobRunner(make_job(), lock_manager=manager)

    assert runner.run() is ExitStatus.OK
    # Released: a fresh acquisition succeeds
    token = manager.acquire("tests.RecordingJob", run_id="after")
    manager.release(token)


def test_held_file_lock_blocks_second_runner(make_job, tmp_path: Path) -> None:
    manager = FlockLockManager(tmp_path)
    held = manager.acquire("tests.RecordingJob", run_id="other-process")

    job = make_job()
    status = JobRunner(job, lock_manager=manager).run()

    manager.release(held)
    assert status is ExitStatus.LOCK_CONTENTION
    assert job.events == []
