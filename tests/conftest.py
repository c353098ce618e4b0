"""Shared fixtures for barrierci tests."""

import threading
import time

import pytest

from barrierci.model import CommandStep, Outcome, StepResult
from barrierci.policy import classify
from barrierci.triggers import MemoryTriggerQueue, TriggerDispatcher
from barrierci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(debug=False)
    set_console(console)
    return console


@pytest.fixture
def trigger_queue():
    return MemoryTriggerQueue()


@pytest.fixture
def dispatcher(trigger_queue):
    d = TriggerDispatcher(trigger_queue)
    yield d
    d.close(wait=True)


class ScriptedExecutor:
    """
    Stands in for Executor. Behaviour is looked up by step label:
    behaviours[label] = (exit_code, seconds) or "timeout".
    Records which worker ran which step and when.
    """

    def __init__(self, behaviours=None, default=(0, 0.0)):
        self.behaviours = behaviours or {}
        self.default = default
        self.calls = []
        self._lock = threading.Lock()
        self._running = 0
        self.max_concurrent = 0

    def run(self, step: CommandStep, worker, deadline, context=None, index=0) -> StepResult:
        started = time.monotonic()
        with self._lock:
            self._running += 1
            self.max_concurrent = max(self.max_concurrent, self._running)
        try:
            behaviour = self.behaviours.get(step.label, self.default)
            if behaviour == "timeout":
                time.sleep(0.01)
                outcome, code = Outcome.TIMED_OUT, None
            else:
                code, seconds = behaviour
                time.sleep(seconds)
                outcome = classify(code, step.soft_fail)
        finally:
            with self._lock:
                self._running -= 1
        result = StepResult(
            index=index, label=step.label, kind=step.kind, outcome=outcome,
            exit_code=code, worker_id=worker.id,
            started_at=started, finished_at=time.monotonic(),
        )
        with self._lock:
            self.calls.append(result)
        return result

    @property
    def ran(self):
        return sorted(r.label for r in self.calls)


@pytest.fixture
def scripted():
    return ScriptedExecutor
