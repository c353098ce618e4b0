from .dsl import command, wait, trigger, steps
from .errors import BarrierCIError, ConfigurationError
from .loader import load_pipeline, loads
from .model import (
    AgentTags,
    CommandStep,
    ExecutionContext,
    Outcome,
    PipelineReport,
    PipelineSpec,
    PipelineStatus,
    SoftFail,
    StepResult,
    TriggerStep,
    WaitBarrier,
    WorkerDescriptor,
)
from .runner import run_pipeline

__all__ = [
    "command", "wait", "trigger", "steps",
    "BarrierCIError", "ConfigurationError",
    "load_pipeline", "loads",
    "AgentTags", "CommandStep", "ExecutionContext", "Outcome", "PipelineReport", "PipelineSpec",
    "PipelineStatus", "SoftFail", "StepResult", "TriggerStep", "WaitBarrier", "WorkerDescriptor",
    "run_pipeline",
]
