"""Background task registry running batch analysis jobs."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable

from libs.core.application.contracts import TaskContext
from libs.core.application.errors import TaskCancelled

logger = logging.getLogger(__name__)

ACTIVE_TASK_STATES = ("scheduled", "running")
MAX_SETTLED_STATES = 1000


@dataclass
class AnalysisTaskState:
    """Lifecycle snapshot of one keyed background task."""

    key: str
    state: str
    scheduled_at: str
    started_at: str | None = None
    settled_at: str | None = None
    error: str | None = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_TASK_STATES


class _RunningTask:
    def __init__(self, key: str) -> None:
        self.key = key
        self.cancel_event = threading.Event()
        self.done_event = threading.Event()


class _TaskContext:
    def __init__(self, task: _RunningTask) -> None:
        self._task = task

    def wait(self, seconds: float) -> None:
        if self._task.cancel_event.wait(timeout=max(seconds, 0.0)):
            raise TaskCancelled(f"Task {self._task.key} cancelled")


class _Registry:
    def __init__(self, max_settled: int = MAX_SETTLED_STATES) -> None:
        self._lock = threading.Lock()
        self._max_settled = max_settled
        self._states: dict[str, AnalysisTaskState] = {}
        self._tasks: dict[str, _RunningTask] = {}

    def get(self, key: str) -> AnalysisTaskState | None:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            return AnalysisTaskState(**asdict(state))

    def register(self, key: str) -> _RunningTask:
        with self._lock:
            existing = self._states.get(key)
            if existing is not None and existing.active:
                raise ValueError("Analysis already running for batch")
            task = _RunningTask(key)
            self._states.pop(key, None)
            self._states[key] = AnalysisTaskState(
                key=key,
                state="scheduled",
                scheduled_at=_utc_now_iso(),
            )
            self._tasks[key] = task
            return task

    def mark(self, task: _RunningTask, state: str, error: str | None = None) -> None:
        with self._lock:
            if self._tasks.get(task.key) is not task:
                return
            current = self._states[task.key]
            current.state = state
            if state == "running":
                current.started_at = _utc_now_iso()
                return
            current.settled_at = _utc_now_iso()
            current.error = error
            del self._tasks[task.key]
            self._prune_settled()

    def _prune_settled(self) -> None:
        settled = [key for key, item in self._states.items() if not item.active]
        for key in settled[: max(0, len(settled) - self._max_settled)]:
            del self._states[key]

    def task(self, key: str) -> _RunningTask | None:
        with self._lock:
            return self._tasks.get(key)

    def clear(self) -> list[_RunningTask]:
        with self._lock:
            tasks = list(self._tasks.values())
            self._states.clear()
            self._tasks.clear()
            return tasks


class AnalysisRunner:
    """Runs one daemon thread per key with scheduled -> running -> settled states."""

    def __init__(self, max_settled_states: int = MAX_SETTLED_STATES) -> None:
        self._registry = _Registry(max_settled=max_settled_states)

    def schedule(self, key: str, job: Callable[[TaskContext], None]) -> None:
        task = self._registry.register(key)
        thread = threading.Thread(
            target=self._run,
            args=(task, job),
            name=f"analysis-{key[:8]}",
            daemon=True,
        )
        thread.start()

    def is_active(self, key: str) -> bool:
        state = self._registry.get(key)
        return state is not None and state.active

    def get_state(self, key: str) -> AnalysisTaskState | None:
        return self._registry.get(key)

    def cancel(self, key: str) -> AnalysisTaskState | None:
        task = self._registry.task(key)
        if task is not None and self.is_active(key):
            task.cancel_event.set()
        return self._registry.get(key)

    def wait(self, key: str, timeout: float | None = None) -> AnalysisTaskState | None:
        task = self._registry.task(key)
        if task is not None:
            task.done_event.wait(timeout=timeout)
        return self._registry.get(key)

    def shutdown(self) -> None:
        for task in self._registry.clear():
            task.cancel_event.set()

    def _run(self, task: _RunningTask, job: Callable[[TaskContext], None]) -> None:
        self._registry.mark(task, "running")
        try:
            job(_TaskContext(task))
        except TaskCancelled as error:
            self._registry.mark(task, "cancelled", error=str(error))
        except Exception as error:
            logger.error(f"Analysis task {task.key} failed: {error}")
            self._registry.mark(task, "failed", error=f"{type(error).__name__}: {error}")
        else:
            self._registry.mark(task, "completed")
        finally:
            task.done_event.set()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
