# triggers.py
# Downstream pipeline requests. The engine only enqueues; it never waits on
# the downstream pipeline or reads anything back.
from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import redis

from . import settings
from .errors import TriggerDispatchError
from .model import ExecutionContext, TriggerStep
from .ui.console import Console, get_console


@dataclass(frozen=True)
class TriggerRequest:
    pipeline: str
    branch: str
    commit: str
    source_label: str
    build: Dict[str, Any] = field(default_factory=dict)
    requested_at: str = ""

    @classmethod
    def for_step(cls, trigger: TriggerStep, context: ExecutionContext) -> "TriggerRequest":
        return cls(
            pipeline=trigger.pipeline,
            branch=context.branch,
            commit=context.commit,
            source_label=trigger.display_label,
            build=trigger.build.to_dict(),
            requested_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "branch": self.branch,
            "commit": self.commit,
            "source_label": self.source_label,
            "build": self.build,
            "requested_at": self.requested_at,
        }


class TriggerQueue(Protocol):
    def enqueue(self, request: TriggerRequest) -> None: ...


class RedisTriggerQueue:
    """Pushes requests onto a Redis list (FIFO: push right, consumers pop left)."""

    def __init__(
        self,
        url: Optional[str] = None,
        queue_name: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.queue_name = queue_name or settings.TRIGGER_QUEUE
        if client is None:
            url = url or settings.REDIS_URL
            if not url:
                raise TriggerDispatchError("no Redis URL configured for trigger queue")
            client = redis.from_url(url, decode_responses=True)
        self.r = client

    def enqueue(self, request: TriggerRequest) -> None:
        try:
            self.r.rpush(self.queue_name, json.dumps(request.to_dict()))
        except redis.RedisError as e:
            raise TriggerDispatchError(f"could not enqueue trigger for {request.pipeline}: {e}") from e


class MemoryTriggerQueue:
    """Keeps requests in a list. Used for local runs without Redis and in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.requests: List[TriggerRequest] = []

    def enqueue(self, request: TriggerRequest) -> None:
        with self._lock:
            self.requests.append(request)

    @property
    def pipelines(self) -> List[str]:
        with self._lock:
            return [r.pipeline for r in self.requests]


class TriggerDispatcher:
    """
    Fire-and-forget dispatch of trigger steps.

    dispatch() returns as soon as the enqueue has been handed to a background
    thread. Enqueue failures are reported on the console and never reach the
    scheduler.
    """

    def __init__(
        self,
        queue: TriggerQueue,
        console: Optional[Console] = None,
        max_workers: int = 4,
    ):
        self.queue = queue
        self.console = console
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trigger")

    def _enqueue(self, request: TriggerRequest) -> None:
        console = self.console or get_console()
        try:
            self.queue.enqueue(request)
            console.print_debug(f"trigger enqueued: {request.pipeline} ({request.branch}@{request.commit})")
        except TriggerDispatchError as e:
            console.print_error("Trigger dispatch failed", str(e))
        except Exception as e:
            console.print_error("Trigger dispatch failed", f"{request.pipeline}: {e}")

    def dispatch(self, trigger: TriggerStep, context: ExecutionContext) -> TriggerRequest:
        request = TriggerRequest.for_step(trigger, context)
        self._pool.submit(self._enqueue, request)
        return request

    def close(self, wait: bool = True) -> None:
        """Stop accepting work; with wait=True, let queued enqueues finish."""
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "TriggerDispatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close(wait=True)
