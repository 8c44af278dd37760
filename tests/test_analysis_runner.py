"""Background analysis runner tests."""

import threading

import pytest

from services.api_gateway.infrastructure.analysis_runner import AnalysisRunner


def test_job_runs_to_completion() -> None:
    runner = AnalysisRunner()
    calls: list[str] = []

    runner.schedule("batch-1", lambda context: calls.append("ran"))
    state = runner.wait("batch-1", timeout=5)

    assert calls == ["ran"]
    assert state is not None
    assert state.state == "completed"
    assert state.started_at is not None
    assert state.settled_at is not None
    assert runner.is_active("batch-1") is False


def test_failed_job_records_error() -> None:
    runner = AnalysisRunner()

    def job(context) -> None:
        raise RuntimeError("store down")

    runner.schedule("batch-1", job)
    state = runner.wait("batch-1", timeout=5)

    assert state is not None
    assert state.state == "failed"
    assert state.error == "RuntimeError: store down"


def test_second_schedule_for_active_key_is_rejected() -> None:
    runner = AnalysisRunner()
    release = threading.Event()
    runner.schedule("batch-1", lambda context: release.wait(5))

    with pytest.raises(ValueError):
        runner.schedule("batch-1", lambda context: None)

    release.set()
    runner.wait("batch-1", timeout=5)
    runner.schedule("batch-1", lambda context: None)
    assert runner.wait("batch-1", timeout=5).state == "completed"


def test_cancel_interrupts_waiting_job() -> None:
    runner = AnalysisRunner()
    runner.schedule("batch-1", lambda context: context.wait(30))

    runner.cancel("batch-1")
    state = runner.wait("batch-1", timeout=5)

    assert state is not None
    assert state.state == "cancelled"
    assert runner.cancel("unknown") is None


def test_settled_states_are_capped() -> None:
    runner = AnalysisRunner(max_settled_states=2)

    for key in ("batch-1", "batch-2", "batch-3"):
        runner.schedule(key, lambda context: None)
        runner.wait(key, timeout=5)

    assert runner.get_state("batch-1") is None
    assert runner.get_state("batch-2").state == "completed"
    assert runner.get_state("batch-3").state == "completed"


def test_settled_task_can_be_waited_and_cancelled_again() -> None:
    runner = AnalysisRunner()
    runner.schedule("batch-1", lambda context: None)
    runner.wait("batch-1", timeout=5)

    assert runner.wait("batch-1", timeout=0).state == "completed"
    assert runner.cancel("batch-1").state == "completed"
