"""Level-synchronous batch scheduling over a validated plan."""
from __future__ import annotations

import hashlib
import json
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from ..errors import DeadlockDetected
from ..models.workflow import ExecutionPlan, WorkflowDefinition
from .inputs import referenced_steps


class BatchFrontier:
    """Tracks pending and completed steps and yields ready batches.

    A step is ready once every dependency is completed. Steps move from
    ``pending`` to ``completed`` exactly once and never go back.
    """

    def __init__(self, plan: ExecutionPlan, max_concurrent_steps: Optional[int] = None) -> None:
        if max_concurrent_steps is not None and max_concurrent_steps < 1:
            raise ValueError("max_concurrent_steps must be positive")
        self.plan = plan
        self.max_concurrent_steps = max_concurrent_steps
        self.pending: Set[str] = set(plan.step_ids)
        self.completed: Set[str] = set()
        self._chunks: Deque[List[str]] = deque()

    def has_pending(self) -> bool:
        return bool(self.pending) or bool(self._chunks)

    def next_batch(self) -> List[str]:
        """Return the next batch of ready step ids, sorted by id."""
        if self._chunks:
            return self._chunks.popleft()

        ready = sorted(
            step_id
            for step_id in self.pending
            if self.plan.dependencies_of(step_id) <= self.completed
        )
        if not ready:
            if self.pending:
                raise DeadlockDetected(self.pending)
            return []

        self.pending.difference_update(ready)
        size = self.max_concurrent_steps
        if size is None or len(ready) <= size:
            return ready
        for index in range(0, len(ready), size):
            self._chunks.append(ready[index : index + size])
        return self._chunks.popleft()

    def mark_completed(self, step_id: str) -> None:
        if step_id in self.completed:
            raise ValueError(f"Step '{step_id}' already completed")
        self.pending.discard(step_id)
        self.completed.add(step_id)


class ExecutionPlanCache:
    """Simple LRU cache for execution plans."""

    def __init__(self, capacity: int = 128) -> None:
        self.capacity = capacity
        self._cache: Dict[str, ExecutionPlan] = {}
        self._order: Deque[str] = deque()

    def get(self, key: str) -> Optional[ExecutionPlan]:
        plan = self._cache.get(key)
        if plan is not None:
            self._order.remove(key)
            self._order.append(key)
        return plan

    def put(self, key: str, plan: ExecutionPlan) -> None:
        if key in self._cache:
            self._order.remove(key)
        elif len(self._cache) >= self.capacity:
            oldest = self._order.popleft()
            self._cache.pop(oldest, None)
        self._cache[key] = plan
        self._order.append(key)

    def clear(self) -> None:
        self._cache.clear()
        self._order.clear()

    def __len__(self) -> int:
        return len(self._cache)


def plan_cache_key(definition: WorkflowDefinition) -> str:
    """Fingerprint of the graph shape of a definition, independent of step order."""
    shape = sorted(
        (step.id, sorted(step.depends_on), sorted(referenced_steps(step)))
        for step in definition.steps
    )
    digest = hashlib.sha256(json.dumps(shape).encode("utf-8")).hexdigest()
    return f"{definition.id}:{definition.version}:{digest[:16]}"
