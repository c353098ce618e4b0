# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional

from . import settings
from .model import CommandStep, ExecutionContext, Outcome, StepResult, WorkerDescriptor
from .policy import classify


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the shell and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()


class Executor:
    """
    Runs one command step as an opaque shell subprocess.

    The worker is the execution target: its id and tags are exported to the
    command's environment. Everything the command does is its own business;
    the executor only observes the exit status (or the deadline).
    """

    def __init__(self, cwd: str | Path = ".", output_limit: int | None = None):
        self.cwd = Path(cwd)
        self.output_limit = settings.OUTPUT_LIMIT if output_limit is None else output_limit

    def _env(
        self,
        step: CommandStep,
        worker: WorkerDescriptor,
        context: Optional[ExecutionContext],
    ) -> dict[str, str]:
        env = os.environ.copy()
        if context is not None:
            env.update(context.env())
        env.update({
            "BARRIERCI_AGENT_ID": worker.id,
            "BARRIERCI_AGENT_TAGS": str(worker.tags),
            "BARRIERCI_STEP_LABEL": step.label,
            "BARRIERCI_ARTIFACT_PATHS": ";".join(step.artifact_paths),
        })
        env.update(step.env or {})
        return env

    def _tail(self, text: str | None) -> str:
        if not text:
            return ""
        return text[-self.output_limit:] if self.output_limit else ""

    def run(
        self,
        step: CommandStep,
        worker: WorkerDescriptor,
        deadline: Optional[float],
        context: Optional[ExecutionContext] = None,
        index: int = 0,
    ) -> StepResult:
        """
        Run `step.command` on `worker`, killing it after `deadline` seconds.

        Returns a StepResult; never raises for command failures.
        """
        started = time.monotonic()

        def result(outcome: Outcome, **kw) -> StepResult:
            return StepResult(
                index=index,
                label=step.label,
                kind=step.kind,
                outcome=outcome,
                worker_id=worker.id,
                started_at=started,
                finished_at=time.monotonic(),
                **kw,
            )

        cwd = self.cwd.resolve()
        if not cwd.exists():
            return result(Outcome.HARD_FAILED, reason=f"cwd not found: {cwd}")

        try:
            proc = subprocess.Popen(
                step.command,
                shell=True,
                cwd=str(cwd),
                env=self._env(step, worker, context),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",         # arbitrary bytes must not fail the step
                start_new_session=True,   # own process group, so a timeout kills children too
            )
        except OSError as e:
            return result(Outcome.HARD_FAILED, reason=f"could not start command: {e}")

        try:
            output, _ = proc.communicate(timeout=deadline)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            output, _ = proc.communicate()
            return result(
                Outcome.TIMED_OUT,
                exit_code=proc.returncode,
                reason=f"exceeded timeout of {deadline:g}s",
                output_tail=self._tail(output),
            )

        outcome = classify(proc.returncode, step.soft_fail)
        reason = None
        if outcome is not Outcome.SUCCESS:
            reason = f"command exited with {proc.returncode}"
        return result(
            outcome,
            exit_code=proc.returncode,
            reason=reason,
            output_tail=self._tail(output),
        )
