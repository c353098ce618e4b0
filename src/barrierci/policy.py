# policy.py
from __future__ import annotations

from typing import Iterable

from .model import Outcome, PipelineStatus, SoftFail, StepResult

BLOCKING = frozenset({Outcome.HARD_FAILED, Outcome.TIMED_OUT})


def classify(exit_code: int, soft_fail: SoftFail) -> Outcome:
    """Map a finished command's exit code to an outcome. Timeouts never come through here."""
    if exit_code == 0:
        return Outcome.SUCCESS
    if soft_fail.tolerates(exit_code):
        return Outcome.SOFT_FAILED
    return Outcome.HARD_FAILED


def is_blocking(outcome: Outcome) -> bool:
    """Only hard failures and timeouts stop later segments."""
    return outcome in BLOCKING


def pipeline_status(results: Iterable[StepResult]) -> PipelineStatus:
    if any(is_blocking(r.outcome) for r in results):
        return PipelineStatus.FAILED
    return PipelineStatus.SUCCESS


def trigger_allowed(status: PipelineStatus) -> bool:
    return status is not PipelineStatus.FAILED
