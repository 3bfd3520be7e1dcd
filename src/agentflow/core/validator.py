"""DAG validation and execution plan construction."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from ..errors import (
    CycleDetected,
    DuplicateStepId,
    StepLimitExceeded,
    UndeclaredInput,
    UnknownDependency,
)
from ..models.workflow import ExecutionPlan, WorkflowDefinition
from .inputs import referenced_steps

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 1000


class DagValidator:
    """Validates a workflow definition and derives its execution plan.

    Validation is pure: the definition is never modified and the same
    definition always yields an equal plan, whatever the order of its steps.
    """

    def __init__(self, max_steps: Optional[int] = DEFAULT_MAX_STEPS):
        self.max_steps = max_steps

    def validate(self, definition: WorkflowDefinition) -> ExecutionPlan:
        if self.max_steps is not None and len(definition.steps) > self.max_steps:
            raise StepLimitExceeded(len(definition.steps), self.max_steps)

        dependencies: Dict[str, Set[str]] = {}
        for step in definition.steps:
            if step.id in dependencies:
                raise DuplicateStepId(step.id)
            dependencies[step.id] = set(step.depends_on)

        for step in sorted(definition.steps, key=lambda s: s.id):
            for dep in sorted(step.depends_on):
                if dep not in dependencies:
                    raise UnknownDependency(step.id, dep)

        self._ensure_acyclic(dependencies)

        for step in sorted(definition.steps, key=lambda s: s.id):
            for ref in sorted(referenced_steps(step)):
                if ref not in dependencies:
                    raise UnknownDependency(step.id, ref)
                if ref not in dependencies[step.id]:
                    raise UndeclaredInput(step.id, ref)

        dependents: Dict[str, Set[str]] = defaultdict(set)
        for step_id, deps in dependencies.items():
            for dep in deps:
                dependents[dep].add(step_id)

        plan = ExecutionPlan(
            workflow_id=definition.id,
            entry_points=frozenset(sid for sid, deps in dependencies.items() if not deps),
            dependencies={sid: frozenset(deps) for sid, deps in dependencies.items()},
            dependents={sid: frozenset(dependents.get(sid, ())) for sid in dependencies},
            levels=self._levels(dependencies),
        )
        logger.debug(
            "Validated workflow %s: %d steps, %d levels",
            definition.id,
            len(dependencies),
            len(plan.levels),
        )
        return plan

    def _ensure_acyclic(self, dependencies: Dict[str, Set[str]]) -> None:
        # iterative DFS; chains may be as long as max_steps
        visited: Dict[str, str] = {}
        exhausted = object()

        for root in sorted(dependencies):
            if root in visited:
                continue
            visited[root] = "temp"
            path: List[str] = [root]
            frames = [iter(sorted(dependencies[root]))]
            while frames:
                dep = next(frames[-1], exhausted)
                if dep is exhausted:
                    visited[path.pop()] = "perm"
                    frames.pop()
                    continue
                state = visited.get(dep)
                if state == "temp":
                    start = path.index(dep)
                    raise CycleDetected(path[start:] + [dep])
                if state is None:
                    visited[dep] = "temp"
                    path.append(dep)
                    frames.append(iter(sorted(dependencies[dep])))

    def _levels(self, dependencies: Dict[str, Set[str]]) -> Tuple[FrozenSet[str], ...]:
        remaining = {sid: set(deps) for sid, deps in dependencies.items()}
        done: Set[str] = set()
        levels: List[FrozenSet[str]] = []
        while remaining:
            level = frozenset(sid for sid, deps in remaining.items() if deps <= done)
            levels.append(level)
            done |= level
            for sid in level:
                del remaining[sid]
        return tuple(levels)


def validate(definition: WorkflowDefinition) -> ExecutionPlan:
    return DagValidator().validate(definition)
