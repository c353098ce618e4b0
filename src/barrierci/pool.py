# pool.py
from __future__ import annotations

import itertools
import threading
from typing import Dict, Iterable, List, Optional, Set

from .errors import ConfigurationError
from .model import AgentTags, CommandStep, WorkerDescriptor

ANY_VALUE = "*"

_auto_ids = itertools.count(1)


def tags_satisfied(constraints: AgentTags, tags: AgentTags) -> bool:
    """Every constraint key must be present on the worker with an equal value ("*" = any value)."""
    for key, wanted in constraints.items():
        if key not in tags:
            return False
        if wanted != ANY_VALUE and tags[key] != wanted:
            return False
    return True


def parse_worker(spec: str) -> WorkerDescriptor:
    """
    Build a worker from a CLI spec.

      "build-1:distro=amazonlinux,queue=default"  -> id build-1
      "distro=amazonlinux"                        -> generated id
      "build-1"                                   -> untagged worker
    """
    spec = spec.strip()
    if not spec:
        raise ConfigurationError("empty agent spec")

    worker_id: Optional[str] = None
    tag_part = spec
    if ":" in spec:
        worker_id, tag_part = spec.split(":", 1)
    elif "=" not in spec:
        worker_id, tag_part = spec, ""

    tag_specs = [t for t in tag_part.replace(",", " ").split() if t]
    tags = AgentTags.parse(tag_specs)
    return WorkerDescriptor(id=worker_id or f"agent-{next(_auto_ids)}", tags=tags)


class WorkerPool:
    """
    The set of workers a run can use.

    Allocation is guarded by a single lock so two concurrently dispatched
    steps can never hold the same worker.
    """

    def __init__(self, workers: Iterable[WorkerDescriptor] = ()):
        self._lock = threading.Lock()
        self._released = threading.Condition(self._lock)
        self._workers: Dict[str, WorkerDescriptor] = {}
        self._busy: Set[str] = set()
        self._retired: Set[str] = set()
        for w in workers:
            self.add_worker(w)

    # ---- membership ----

    def add_worker(self, worker: WorkerDescriptor) -> None:
        with self._lock:
            if worker.id in self._workers:
                raise ConfigurationError("duplicate worker id", {"worker": worker.id})
            self._workers[worker.id] = worker
            self._retired.discard(worker.id)
            self._released.notify_all()

    def remove_worker(self, worker_id: str) -> None:
        """Shrink the pool. A busy worker finishes its step and is dropped on release."""
        with self._lock:
            if worker_id not in self._workers:
                return
            if worker_id in self._busy:
                self._retired.add(worker_id)
            else:
                del self._workers[worker_id]
            self._released.notify_all()

    @property
    def workers(self) -> List[WorkerDescriptor]:
        with self._lock:
            return [w for wid, w in self._workers.items() if wid not in self._retired]

    def __len__(self) -> int:
        return len(self.workers)

    # ---- matching ----

    def match_workers(self, step: CommandStep) -> Set[WorkerDescriptor]:
        """All workers (busy or idle) whose tags satisfy the step's constraints."""
        with self._lock:
            return {
                w for wid, w in self._workers.items()
                if wid not in self._retired and tags_satisfied(step.agent_tags, w.tags)
            }

    def has_match(self, step: CommandStep) -> bool:
        return bool(self.match_workers(step))

    # ---- allocation ----

    def try_acquire(self, step: CommandStep) -> Optional[WorkerDescriptor]:
        """Claim the first idle matching worker, in pool order. None if all are busy."""
        with self._lock:
            for wid, w in self._workers.items():
                if wid in self._busy or wid in self._retired:
                    continue
                if tags_satisfied(step.agent_tags, w.tags):
                    self._busy.add(wid)
                    return w
            return None

    def release(self, worker: WorkerDescriptor) -> None:
        with self._lock:
            self._busy.discard(worker.id)
            if worker.id in self._retired:
                self._retired.discard(worker.id)
                self._workers.pop(worker.id, None)
            self._released.notify_all()

    def wait_for_release(self, timeout: Optional[float] = None) -> bool:
        """Block until some worker is released or the pool changes."""
        with self._released:
            return self._released.wait(timeout)

    def busy_count(self) -> int:
        with self._lock:
            return len(self._busy)
