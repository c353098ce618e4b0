# plan.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .model import CommandStep, ExecutionContext, Node, PipelineSpec, TriggerStep, WaitBarrier, node_label
from .predicate import branch_matches


@dataclass(frozen=True)
class Segment:
    """
    The nodes between two wait barriers.

    indices: positions of the segment's nodes in the pipeline (document order)
    closed_by: the barrier that ends the segment, None for the last one
    """
    number: int
    indices: Tuple[int, ...]
    closed_by: Optional[WaitBarrier] = None

    def __len__(self) -> int:
        return len(self.indices)


def partition_segments(spec: PipelineSpec) -> List[Segment]:
    """
    Split the node list at every wait barrier.

    Consecutive barriers produce empty segments; they are kept so segment
    numbers line up with barrier positions.
    """
    segments: List[Segment] = []
    current: List[int] = []

    for idx, node in enumerate(spec.nodes):
        if isinstance(node, WaitBarrier):
            segments.append(Segment(len(segments) + 1, tuple(current), closed_by=node))
            current = []
        else:
            current.append(idx)

    segments.append(Segment(len(segments) + 1, tuple(current)))
    return segments


def eligible(node: Node, context: ExecutionContext) -> bool:
    """Does this node apply to the run's branch?"""
    if isinstance(node, (CommandStep, TriggerStep)):
        return branch_matches(node.branch_filter, context.branch)
    return True


@dataclass(frozen=True)
class PlannedNode:
    index: int
    segment: int
    label: str
    kind: str
    runs: bool
    reason: str


def build_plan(spec: PipelineSpec, context: ExecutionContext) -> List[PlannedNode]:
    """
    Static view of what a run on `context` would do, before anything executes.

    Only branch filters are considered; failures at run time can still skip
    nodes that are planned to run.
    """
    planned: List[PlannedNode] = []
    for seg in partition_segments(spec):
        for idx in seg.indices:
            node = spec.nodes[idx]
            branch_filter = node.branch_filter
            if eligible(node, context):
                reason = f"branches: {branch_filter}" if branch_filter else "all branches"
                runs = True
            else:
                reason = f"branch {context.branch!r} not in {branch_filter}"
                runs = False
            planned.append(PlannedNode(idx, seg.number, node_label(node), node.kind, runs, reason))
    return planned
