# scheduler.py
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

from . import settings
from .executor import Executor
from .model import (
    NO_ELIGIBLE_WORKER,
    CommandStep,
    ExecutionContext,
    Node,
    Outcome,
    PipelineReport,
    PipelineStatus,
    PipelineSpec,
    StepResult,
    TriggerStep,
    WorkerDescriptor,
    node_label,
)
from .plan import Segment, eligible, partition_segments
from .policy import pipeline_status, trigger_allowed
from .pool import WorkerPool
from .triggers import TriggerDispatcher
from .ui.console import Console, get_console

InFlight = Dict[Future, Tuple[int, CommandStep, WorkerDescriptor]]


def _skipped(idx: int, node: Node, reason: str) -> StepResult:
    return StepResult(index=idx, label=node_label(node), kind=node.kind, outcome=Outcome.SKIPPED, reason=reason)


class Scheduler:
    """
    Drives a pipeline to completion, one barrier-delimited segment at a time.

    - Every eligible command step in a segment runs concurrently, each on its
      own worker. Steps queue when no matching worker is idle.
    - A segment settles when all of its steps are terminal. Only then does the
      next segment start.
    - A hard failure never cancels siblings. Once the segment settles, later
      segments are skipped (unless the barrier says continue_on_failure).
    - Triggers are resolved after their segment settles and fire only while
      the run has no hard failure.
    """

    def __init__(
        self,
        pool: WorkerPool,
        executor: Executor,
        dispatcher: TriggerDispatcher,
        console: Optional[Console] = None,
    ):
        self.pool = pool
        self.executor = executor
        self.dispatcher = dispatcher
        self.console = console

    @property
    def _out(self) -> Console:
        return self.console or get_console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, spec: PipelineSpec, context: ExecutionContext) -> PipelineReport:
        results: Dict[int, StepResult] = {}
        blocked_by: Optional[int] = None

        for seg in partition_segments(spec):
            if not seg.indices:
                continue
            self._out.print_segment(seg.number, [node_label(spec.nodes[i]) for i in seg.indices])

            if blocked_by is not None:
                for idx in seg.indices:
                    results[idx] = _skipped(idx, spec.nodes[idx], f"segment {blocked_by} failed")
                    self._out.print_step_skipped(results[idx].label, results[idx].reason)
                continue

            results.update(self._run_segment(spec, seg, context, results))

            if pipeline_status(results.values()) is PipelineStatus.FAILED:
                barrier = seg.closed_by
                if barrier is None or not barrier.continue_on_failure:
                    blocked_by = seg.number

        ordered = [results[i] for i in sorted(results)]
        return PipelineReport(context=context, status=pipeline_status(ordered), results=ordered)

    # ------------------------------------------------------------------
    # Segment execution
    # ------------------------------------------------------------------

    def _run_segment(
        self,
        spec: PipelineSpec,
        seg: Segment,
        context: ExecutionContext,
        prior: Dict[int, StepResult],
    ) -> Dict[int, StepResult]:
        out: Dict[int, StepResult] = {}
        commands: List[Tuple[int, CommandStep]] = []
        triggers: List[Tuple[int, TriggerStep]] = []

        for idx in seg.indices:
            node = spec.nodes[idx]
            if not eligible(node, context):
                out[idx] = _skipped(idx, node, f"branch {context.branch!r} not in {node.branch_filter}")
                self._out.print_step_skipped(out[idx].label, out[idx].reason)
            elif isinstance(node, CommandStep):
                commands.append((idx, node))
            elif isinstance(node, TriggerStep):
                triggers.append((idx, node))
            else:
                raise TypeError(f"unexpected node in segment: {node!r}")

        if commands:
            out.update(self._run_commands(commands, context))

        # triggers see everything up to and including this segment
        status = pipeline_status(list(prior.values()) + list(out.values()))
        for idx, trig in triggers:
            if trigger_allowed(status):
                self.dispatcher.dispatch(trig, context)
                out[idx] = StepResult(
                    index=idx, label=trig.display_label, kind=trig.kind,
                    outcome=Outcome.FIRED, reason=f"-> {trig.pipeline}",
                )
                self._out.print_trigger_fired(trig.display_label, trig.pipeline)
            else:
                out[idx] = _skipped(idx, trig, "pipeline failed")
                self._out.print_step_skipped(trig.display_label, "pipeline failed")

        return out

    def _run_commands(
        self,
        commands: List[Tuple[int, CommandStep]],
        context: ExecutionContext,
    ) -> Dict[int, StepResult]:
        out: Dict[int, StepResult] = {}
        pending = list(commands)           # document order
        in_flight: InFlight = {}

        with ThreadPoolExecutor(max_workers=len(commands)) as tp:
            while pending or in_flight:
                # dispatch everything that can get a worker right now
                waiting: List[Tuple[int, CommandStep]] = []
                for idx, step in pending:
                    if not self.pool.has_match(step):
                        out[idx] = self._no_worker(idx, step)
                        continue
                    worker = self.pool.try_acquire(step)
                    if worker is None:
                        waiting.append((idx, step))
                        continue
                    self._out.print_step_start(step.label, worker.id)
                    fut = tp.submit(self.executor.run, step, worker, step.timeout, context, idx)
                    in_flight[fut] = (idx, step, worker)
                pending = waiting

                if not in_flight:
                    if pending:
                        # matching workers exist but are held outside this run
                        self.pool.wait_for_release(timeout=settings.POLL_SECONDS)
                    continue

                # wait for one completion, then loop to dispatch queued steps
                fut = next(as_completed(list(in_flight.keys())))
                idx, step, worker = in_flight.pop(fut)
                self.pool.release(worker)
                out[idx] = self._collect(fut, idx, step, worker)

        return out

    def _collect(self, fut: Future, idx: int, step: CommandStep, worker: WorkerDescriptor) -> StepResult:
        try:
            result = fut.result()
        except Exception as e:
            self._out.print_exception(e)
            result = StepResult(
                index=idx, label=step.label, kind=step.kind, outcome=Outcome.HARD_FAILED,
                reason=f"executor error: {e}", worker_id=worker.id,
            )
        self._out.print_step_finished(
            result.label,
            result.outcome.value,
            exit_code=result.exit_code,
            duration=result.duration,
            reason=result.reason,
            output=result.output_tail,
        )
        return result

    def _no_worker(self, idx: int, step: CommandStep) -> StepResult:
        reason = f"{NO_ELIGIBLE_WORKER}: no agent matches {step.agent_tags or '(any)'}"
        self._out.print_step_finished(step.label, Outcome.HARD_FAILED.value, reason=reason)
        return StepResult(index=idx, label=step.label, kind=step.kind, outcome=Outcome.HARD_FAILED, reason=reason)
