from __future__ import annotations

import pytest

from rpi_common.domain.exceptions import InvalidStateTransitionError
from rpi_common.domain.models import RunHandle, RunState

_HAPPY_PATH = [
    RunState.LOCK_PENDING,
    RunState.INITIALIZED,
    RunState.SETTING_UP,
    RunState.RUNNING,
    RunState.FINISHING,
    RunState.FINISHED,
]


def test_happy_path_reaches_finished() -> None:
    handle = RunHandle()

    for state in _HAPPY_PATH:
        handle.transition(state)

    assert handle.state is RunState.FINISHED
    assert handle.is_terminal


def test_lock_failure_is_terminal() -> None:
    handle = RunHandle()
    handle.transition(RunState.LOCK_PENDING)
    handle.transition(RunState.LOCK_FAILED)

    assert handle.is_terminal
    with pytest.raises(InvalidStateTransitionError):
        handle.transition(RunState.INITIALIZED)


def test_setup_fault_may_skip_running() -> None:
    handle = RunHandle()
    for state in _HAPPY_PATH[:3]:
        handle.transition(state)

    handle.transition(RunState.FINISHING)

    assert handle.state is RunState.FINISHING


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (RunState.CREATED, RunState.RUNNING),
        (RunState.LOCK_PENDING, RunState.SETTING_UP),
        (RunState.INITIALIZED, RunState.FINISHING),
        (RunState.FINISHED, RunState.CREATED),
    ],
)
def test_undefined_edges_are_rejected(start: RunState, target: RunState) -> None:
    handle = RunHandle(state=start)

    with pytest.raises(InvalidStateTransitionError, match=handle.run_id):
        handle.transition(target)
    assert handle.state is start


def test_run_ids_are_unique_and_start_is_utc() -> None:
    first, second = RunHandle(), RunHandle()

    assert first.run_id != second.run_id
    assert first.started_at.tzinfo is not None
    assert first.elapsed_seconds() >= 0.0
