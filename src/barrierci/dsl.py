# dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Union

from .errors import ConfigurationError
from .loader import timeout_seconds
from .model import AgentTags, CommandStep, Node, PipelineSpec, SoftFail, TriggerStep, WaitBarrier
from .predicate import parse_branch_filter


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def command(
    label: str,
    cmd: Union[str, List[str]],
    *,
    timeout: Optional[float] = None,        # minutes; None = configured default, 0 = none
    agents: Union[Iterable[str], Mapping[str, str], None] = None,
    branches: Optional[str] = None,
    soft_fail: Union[bool, Iterable[int]] = False,
    artifact_paths: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    key: Optional[str] = None,
) -> CommandStep:
    """Create a command step."""
    if isinstance(cmd, list):
        cmd = "\n".join(cmd)
    if not cmd.strip():
        raise ConfigurationError(f"command({label!r}) must have a command")

    if agents is None:
        tags = AgentTags()
    elif isinstance(agents, Mapping):
        tags = AgentTags(dict(agents))
    else:
        tags = AgentTags.parse(agents)

    if soft_fail is True:
        sf = SoftFail.any()
    elif soft_fail is False:
        sf = SoftFail.none()
    else:
        sf = SoftFail.codes(*soft_fail)

    return CommandStep(
        label=label,
        command=cmd,
        timeout=timeout_seconds(timeout),
        agent_tags=tags,
        branch_filter=parse_branch_filter(branches),
        soft_fail=sf,
        artifact_paths=tuple(artifact_paths or ()),
        env=env or {},
        key=key,
    )


def wait(*, continue_on_failure: bool = False) -> WaitBarrier:
    return WaitBarrier(continue_on_failure=continue_on_failure)


def trigger(
    pipeline_name: str,
    *,
    label: Optional[str] = None,
    branches: Optional[str] = None,
    build: Optional[Dict[str, object]] = None,
    key: Optional[str] = None,
) -> TriggerStep:
    return TriggerStep(
        pipeline=pipeline_name,
        label=label,
        branch_filter=parse_branch_filter(branches),
        build=build or {},
        key=key,
    )


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def steps(*nodes: Node) -> PipelineSpec:
    """
    steps(command(...), command(...), wait(), trigger(...))

    Nested lists are flattened so matrices built with list comprehensions can
    be passed straight in.
    """
    flat: List[Node] = []
    for n in nodes:
        if isinstance(n, (list, tuple)):
            flat.extend(n)
        else:
            flat.append(n)
    for n in flat:
        if not isinstance(n, (CommandStep, WaitBarrier, TriggerStep)):
            raise TypeError(f"steps() expects nodes, got {type(n).__name__}")
    return PipelineSpec(tuple(flat))
