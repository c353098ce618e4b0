# loader.py
# Pipeline definitions: YAML files (buildkite-style step lists) or Python
# files built with barrierci.dsl. Everything is validated here, before any
# step runs.
from __future__ import annotations

import runpy
from collections.abc import Hashable
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from . import settings
from .errors import ConfigurationError
from .model import AgentTags, CommandStep, Node, PipelineSpec, SoftFail, TriggerStep, WaitBarrier
from .predicate import parse_branch_filter

Scalar = Union[str, int, float, bool]


# -------------------- Schemas --------------------

class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SoftFailRule(_Schema):
    exit_status: Union[StrictInt, Literal["*"]]


class CommandStepSchema(_Schema):
    command: Optional[Union[str, List[str]]] = None
    commands: Optional[Union[str, List[str]]] = None
    label: Optional[str] = None
    key: Optional[str] = None
    timeout: Optional[StrictInt] = Field(default=None, ge=0)
    timeout_in_minutes: Optional[StrictInt] = Field(default=None, ge=0)
    agents: Optional[Union[List[str], Dict[str, Scalar]]] = None
    branches: Optional[str] = None
    soft_fail: Optional[Union[StrictBool, List[SoftFailRule]]] = None
    artifact_paths: Optional[Union[str, List[str]]] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)


class TriggerStepSchema(_Schema):
    trigger: str = Field(min_length=1)
    label: Optional[str] = None
    key: Optional[str] = None
    branches: Optional[str] = None
    build: Dict[str, Any] = Field(default_factory=dict)


class WaitSchema(_Schema):
    wait: Optional[str] = None
    continue_on_failure: StrictBool = False


class PipelineSchema(_Schema):
    env: Dict[str, Scalar] = Field(default_factory=dict)
    steps: List[Any]


# -------------------- Conversion --------------------

def _validate(schema: type[BaseModel], data: Any, where: str) -> Any:
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError(f"invalid {where}", {"errors": "; ".join(problems)}) from e


def _text(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _command_text(raw: Union[str, List[str]]) -> str:
    if isinstance(raw, list):
        return "\n".join(raw)
    return raw


def _agent_tags(raw: Union[List[str], Dict[str, Scalar], None]) -> AgentTags:
    if raw is None:
        return AgentTags()
    if isinstance(raw, dict):
        return AgentTags({k: _text(v) for k, v in raw.items()})
    return AgentTags.parse(raw)


def _soft_fail(raw: Union[bool, List[SoftFailRule], None]) -> SoftFail:
    if raw is None or raw is False:
        return SoftFail.none()
    if raw is True:
        return SoftFail.any()
    codes = set()
    for rule in raw:
        if rule.exit_status == "*":
            return SoftFail.any()
        codes.add(rule.exit_status)
    return SoftFail(exit_codes=frozenset(codes))


def timeout_seconds(minutes: Optional[float]) -> Optional[float]:
    """Minutes -> seconds. None means the configured default, 0 means no deadline."""
    if minutes is None:
        minutes = settings.DEFAULT_TIMEOUT_MINUTES
    if not minutes:
        return None
    return float(minutes * 60)


def _artifact_paths(raw: Union[str, List[str], None]) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return tuple(p.strip() for p in raw.split(";") if p.strip())
    return tuple(raw)


def _command_step(data: dict, where: str, pipeline_env: Dict[str, str]) -> CommandStep:
    s: CommandStepSchema = _validate(CommandStepSchema, data, where)

    if s.command is not None and s.commands is not None:
        raise ConfigurationError(f"{where}: use either 'command' or 'commands', not both")
    raw = s.command if s.command is not None else s.commands
    command = _command_text(raw or "")
    if not command.strip():
        raise ConfigurationError(f"{where}: missing required field 'command'")

    if s.timeout is not None and s.timeout_in_minutes is not None:
        raise ConfigurationError(f"{where}: use either 'timeout' or 'timeout_in_minutes', not both")
    minutes = s.timeout if s.timeout is not None else s.timeout_in_minutes

    label = s.label or next(line.strip() for line in command.splitlines() if line.strip())

    env = dict(pipeline_env)
    env.update({k: _text(v) for k, v in s.env.items()})

    try:
        return CommandStep(
            label=label,
            command=command,
            timeout=timeout_seconds(minutes),
            agent_tags=_agent_tags(s.agents),
            branch_filter=parse_branch_filter(s.branches),
            soft_fail=_soft_fail(s.soft_fail),
            artifact_paths=_artifact_paths(s.artifact_paths),
            env=env,
            key=s.key,
        )
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}: {e.message}", e.details) from e


def _trigger_step(data: dict, where: str) -> TriggerStep:
    s: TriggerStepSchema = _validate(TriggerStepSchema, data, where)
    try:
        return TriggerStep(
            pipeline=s.trigger,
            label=s.label,
            branch_filter=parse_branch_filter(s.branches),
            build=s.build,
            key=s.key,
        )
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}: {e.message}", e.details) from e


def parse_node(entry: Any, index: int = 0, pipeline_env: Optional[Dict[str, str]] = None) -> Node:
    """Turn one entry of the steps list into a node."""
    where = f"step {index + 1}"

    if isinstance(entry, str):
        if entry.strip() == "wait":
            return WaitBarrier()
        raise ConfigurationError(f"{where}: unknown step {entry!r}")

    if not isinstance(entry, dict):
        raise ConfigurationError(f"{where}: step must be a mapping or 'wait'", {"got": type(entry).__name__})

    if "wait" in entry:
        w: WaitSchema = _validate(WaitSchema, entry, where)
        return WaitBarrier(continue_on_failure=w.continue_on_failure)
    if "trigger" in entry:
        return _trigger_step(entry, where)
    if "command" in entry or "commands" in entry:
        return _command_step(entry, where, pipeline_env or {})

    raise ConfigurationError(
        f"{where}: missing required field 'command' (or 'trigger' / 'wait')",
        {"keys": sorted(entry)},
    )


def parse_pipeline(data: Any) -> PipelineSpec:
    """
    Build a PipelineSpec from already-decoded YAML/JSON data.

    Accepts {"steps": [...], "env": {...}} or a bare list of steps.
    """
    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict):
        raise ConfigurationError("pipeline must be a mapping with 'steps' or a list of steps")

    p: PipelineSchema = _validate(PipelineSchema, data, "pipeline")
    pipeline_env = {k: _text(v) for k, v in p.env.items()}
    return PipelineSpec(tuple(parse_node(e, i, pipeline_env) for i, e in enumerate(p.steps)))


# -------------------- YAML --------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate keys instead of keeping the last one."""


def _construct_unique_mapping(loader: _UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False) -> dict:
    seen = set()
    for key_node, _ in node.value:
        if key_node.tag == "tag:yaml.org,2002:merge":
            continue
        key = loader.construct_object(key_node, deep=deep)
        if not isinstance(key, Hashable):
            continue  # construct_mapping reports it
        if key in seen:
            raise ConfigurationError(
                f"duplicate key {key!r} in pipeline",
                {"line": key_node.start_mark.line + 1},
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping)


def loads(text: str) -> PipelineSpec:
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ConfigurationError("pipeline is not valid YAML", {"error": str(e)}) from e
    if data is None:
        raise ConfigurationError("pipeline is empty")
    return parse_pipeline(data)


def _load_python(path: Path) -> PipelineSpec:
    """
    Load a pipeline from a python file.

    The file must define either:
      - pipeline() -> PipelineSpec
      - PIPELINE = PipelineSpec(...)
    """
    globals_dict = runpy.run_path(str(path), run_name=f"barrierci_pipeline_{path.stem}")

    spec = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        spec = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        spec = globals_dict["PIPELINE"]

    if not isinstance(spec, PipelineSpec):
        raise ConfigurationError(
            "python pipeline must define pipeline() -> PipelineSpec or PIPELINE = PipelineSpec(...)",
            {"file": str(path)},
        )
    return spec


def load_pipeline(path: str | Path) -> PipelineSpec:
    """Load a pipeline from a .yml/.yaml or .py file."""
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")

    if p.suffix == ".py":
        return _load_python(p)
    if p.suffix in (".yml", ".yaml"):
        return loads(p.read_text(encoding="utf-8"))
    raise ConfigurationError(f"Pipeline must be a .yml, .yaml or .py file, got: {p.name}")
