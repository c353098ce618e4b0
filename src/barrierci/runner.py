# runner.py
from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path
from typing import Iterable, Optional

from .errors import ConfigurationError
from .executor import Executor
from .model import ExecutionContext, PipelineReport, PipelineSpec, WorkerDescriptor
from .pool import WorkerPool
from .scheduler import Scheduler
from .triggers import MemoryTriggerQueue, TriggerDispatcher, TriggerQueue
from .ui.console import Console, get_console
from .git_facts.git import current_branch, head_sha


def resolve_context(
    branch: Optional[str] = None,
    commit: Optional[str] = None,
    cwd: str | Path = ".",
) -> ExecutionContext:
    """
    Build the execution context.

    Precedence: explicit arguments, then BARRIERCI_BRANCH / BARRIERCI_COMMIT,
    then the git checkout in `cwd`.
    """
    branch = branch or os.environ.get("BARRIERCI_BRANCH")
    commit = commit or os.environ.get("BARRIERCI_COMMIT")

    if branch is None or commit is None:
        try:
            if branch is None:
                branch = current_branch(cwd=str(cwd))
            if commit is None:
                commit = head_sha(cwd=str(cwd))
        except (subprocess.CalledProcessError, FileNotFoundError):
            # not a git checkout; fall through to the checks below
            pass

    if not branch:
        raise ConfigurationError("could not determine branch; pass --branch or set BARRIERCI_BRANCH")
    return ExecutionContext(branch=branch, commit=commit or "HEAD")


def run_pipeline(
    spec: PipelineSpec,
    context: ExecutionContext,
    workers: Iterable[WorkerDescriptor],
    *,
    cwd: str | Path = ".",
    trigger_queue: Optional[TriggerQueue] = None,
    console: Optional[Console] = None,
) -> PipelineReport:
    """
    Run a parsed pipeline end to end and return the report.

    Trigger enqueues still in flight are drained before returning.
    """
    console = console or get_console()
    pool = WorkerPool(workers)
    executor = Executor(cwd=cwd)

    with TriggerDispatcher(trigger_queue or MemoryTriggerQueue(), console=console) as dispatcher:
        scheduler = Scheduler(pool, executor, dispatcher, console=console)
        report = scheduler.run(spec, context)

    console.print_results([r.to_dict() for r in report.results], report.status.value)
    return report


def write_report(report: PipelineReport, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    return out
