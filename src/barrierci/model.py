# model.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError
from .predicate import BranchFilter


# ---------------------------------------------------------------------
# Agent tags
# ---------------------------------------------------------------------

class AgentTags(Mapping[str, str]):
    """Immutable key=value capability tags (on workers) or constraints (on steps)."""

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Mapping[str, str]] = None):
        self._items: Tuple[Tuple[str, str], ...] = tuple(sorted((items or {}).items()))

    @classmethod
    def parse(cls, specs: Iterable[str]) -> "AgentTags":
        """Build tags from ["distro=amazonlinux", "queue=default"]."""
        tags: Dict[str, str] = {}
        for spec in specs:
            if not isinstance(spec, str) or "=" not in spec:
                raise ConfigurationError("agent tag must look like key=value", {"tag": repr(spec)})
            key, value = spec.split("=", 1)
            key, value = key.strip(), value.strip()
            if not key:
                raise ConfigurationError("agent tag has an empty key", {"tag": spec})
            if key in tags:
                raise ConfigurationError("duplicate agent tag key", {"key": key})
            tags[key] = value
        return cls(tags)

    def __getitem__(self, key: str) -> str:
        for k, v in self._items:
            if k == key:
                return v
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return hash(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AgentTags):
            return self._items == other._items
        return super().__eq__(other)

    def __repr__(self) -> str:
        return f"AgentTags({dict(self._items)!r})"

    def __str__(self) -> str:
        return ",".join(f"{k}={v}" for k, v in self._items)


# ---------------------------------------------------------------------
# Read-only payloads (step env, trigger build attributes)
# ---------------------------------------------------------------------

def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return FrozenMap(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, FrozenMap):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class FrozenMap(Mapping[str, Any]):
    """
    Insertion-ordered mapping that cannot be changed after construction.

    Nested mappings and lists are frozen too (lists become tuples), so the
    whole value is hashable. to_dict() gives back plain dicts and lists.
    """

    __slots__ = ("_data",)

    def __init__(self, items: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = {k: _freeze(v) for k, v in (items or {}).items()}

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        return hash(frozenset(self._data.items()))

    def __repr__(self) -> str:
        return f"FrozenMap({self.to_dict()!r})"

    def to_dict(self) -> Dict[str, Any]:
        return _thaw(self)


# ---------------------------------------------------------------------
# Soft fail
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class SoftFail:
    """Exit codes that are tolerated. any_exit=True tolerates every non-zero exit."""
    exit_codes: FrozenSet[int] = frozenset()
    any_exit: bool = False

    @classmethod
    def none(cls) -> "SoftFail":
        return cls()

    @classmethod
    def any(cls) -> "SoftFail":
        return cls(any_exit=True)

    @classmethod
    def codes(cls, *codes: int) -> "SoftFail":
        return cls(exit_codes=frozenset(codes))

    def tolerates(self, exit_code: int) -> bool:
        if exit_code == 0:
            return False
        return self.any_exit or exit_code in self.exit_codes

    def __bool__(self) -> bool:
        return self.any_exit or bool(self.exit_codes)


# ---------------------------------------------------------------------
# Pipeline nodes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CommandStep:
    """A shell command run on one worker."""
    label: str
    command: str
    timeout: Optional[float] = None          # seconds, None = no deadline
    agent_tags: AgentTags = field(default_factory=AgentTags)
    branch_filter: Optional[BranchFilter] = None
    soft_fail: SoftFail = field(default_factory=SoftFail)
    artifact_paths: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=FrozenMap)
    key: Optional[str] = None

    kind = "command"

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", FrozenMap(self.env))
        object.__setattr__(self, "artifact_paths", tuple(self.artifact_paths))


@dataclass(frozen=True)
class WaitBarrier:
    """Nothing after this node starts until everything before it has finished."""
    continue_on_failure: bool = False

    kind = "wait"


@dataclass(frozen=True)
class TriggerStep:
    """Asks an external orchestrator to start another pipeline."""
    pipeline: str
    label: Optional[str] = None
    branch_filter: Optional[BranchFilter] = None
    build: Mapping[str, Any] = field(default_factory=FrozenMap)
    key: Optional[str] = None

    kind = "trigger"

    def __post_init__(self) -> None:
        build = FrozenMap(self.build)
        # forwarded as JSON with the trigger request
        try:
            json.dumps(build.to_dict())
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"trigger {self.pipeline!r}: build attributes must be JSON values",
                {"error": str(e)},
            ) from e
        object.__setattr__(self, "build", build)

    @property
    def display_label(self) -> str:
        return self.label or f"trigger {self.pipeline}"


Node = Union[CommandStep, WaitBarrier, TriggerStep]


@dataclass(frozen=True)
class PipelineSpec:
    """Ordered, immutable list of nodes. Order defines segment membership."""
    nodes: Tuple[Node, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    @property
    def command_steps(self) -> list[CommandStep]:
        return [n for n in self.nodes if isinstance(n, CommandStep)]

    @property
    def triggers(self) -> list[TriggerStep]:
        return [n for n in self.nodes if isinstance(n, TriggerStep)]


def node_label(node: Node) -> str:
    if isinstance(node, CommandStep):
        return node.label
    if isinstance(node, TriggerStep):
        return node.display_label
    return "wait"


# ---------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ExecutionContext:
    """Fixed for one pipeline run."""
    branch: str
    commit: str = "HEAD"

    def env(self) -> Dict[str, str]:
        return {
            "BARRIERCI": "true",
            "BARRIERCI_BRANCH": self.branch,
            "BARRIERCI_COMMIT": self.commit,
        }


@dataclass(frozen=True)
class WorkerDescriptor:
    id: str
    tags: AgentTags = field(default_factory=AgentTags)


class Outcome(str, Enum):
    SUCCESS = "success"
    SOFT_FAILED = "soft_failed"
    HARD_FAILED = "hard_failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"
    FIRED = "fired"


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


NO_ELIGIBLE_WORKER = "NoEligibleWorker"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one node. Created once, never mutated."""
    index: int
    label: str
    kind: str
    outcome: Outcome
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    worker_id: Optional[str] = None
    started_at: Optional[float] = None      # time.monotonic()
    finished_at: Optional[float] = None
    output_tail: str = ""

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "label": self.label,
            "kind": self.kind,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "worker": self.worker_id,
            "duration": self.duration,
        }


@dataclass
class PipelineReport:
    context: ExecutionContext
    status: PipelineStatus
    results: list[StepResult] = field(default_factory=list)

    @property
    def fired_triggers(self) -> list[StepResult]:
        return [r for r in self.results if r.outcome is Outcome.FIRED]

    def outcome_of(self, label: str) -> Outcome:
        for r in self.results:
            if r.label == label:
                return r.outcome
        raise KeyError(label)

    def to_dict(self) -> dict:
        return {
            "branch": self.context.branch,
            "commit": self.context.commit,
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
        }
