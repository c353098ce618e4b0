# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class BarrierCIError(Exception):
    """Base class for every error raised by barrierci."""


@dataclass
class ConfigurationError(BarrierCIError):
    """
    The pipeline definition (or the worker pool) is malformed.

    Raised while parsing, before any step runs. Carries enough context for
    clean CLI output without a traceback.
    """
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [self.message]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class TriggerDispatchError(BarrierCIError):
    """Raised by a trigger queue when a request cannot be enqueued."""
