"""Workflow execution models."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from .workflow import WorkflowDefinition


class ExecutionStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step. Written once, never modified."""

    step_id: str
    status: StepStatus
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    @classmethod
    def success(
        cls,
        step_id: str,
        output: Any,
        started_at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "StepResult":
        return cls(
            step_id=step_id,
            status=StepStatus.SUCCEEDED,
            output=output,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            metadata=metadata or {},
        )

    @classmethod
    def failure(
        cls,
        step_id: str,
        error: Dict[str, Any],
        started_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "StepResult":
        return cls(
            step_id=step_id,
            status=StepStatus.FAILED,
            error=error,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            metadata=metadata or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.duration,
            "metadata": self.metadata,
        }


@dataclass
class WorkflowExecution:
    """A single run of a workflow definition."""

    definition: WorkflowDefinition
    input: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid4().hex)
    status: ExecutionStatus = ExecutionStatus.PENDING
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    current_steps: Set[str] = field(default_factory=set)
    batches: List[List[str]] = field(default_factory=list)
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def workflow_id(self) -> str:
        return self.definition.id

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def start(self) -> None:
        if self.status != ExecutionStatus.PENDING:
            raise RuntimeError(f"Cannot start execution in state {self.status.value}")
        self.status = ExecutionStatus.RUNNING
        self.started_at = datetime.utcnow()

    def succeed(self, output: Dict[str, Any]) -> None:
        self._finish(ExecutionStatus.SUCCEEDED)
        self.output = output

    def fail(self, error: Dict[str, Any], output: Optional[Dict[str, Any]] = None) -> None:
        self._finish(ExecutionStatus.FAILED)
        self.error = error
        self.output = output

    def _finish(self, status: ExecutionStatus) -> None:
        if self.is_terminal():
            raise RuntimeError(f"Execution {self.id} already finished as {self.status.value}")
        self.status = status
        self.current_steps.clear()
        self.finished_at = datetime.utcnow()

    def is_terminal(self) -> bool:
        return self.status in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED)

    def record_step_result(self, result: StepResult) -> None:
        if result.step_id in self.step_results:
            raise RuntimeError(f"Result for step '{result.step_id}' already recorded")
        self.step_results[result.step_id] = result
        self.current_steps.discard(result.step_id)

    def failed_steps(self) -> List[str]:
        return sorted(sid for sid, res in self.step_results.items() if not res.succeeded)

    def snapshot(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "execution_id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "current_steps": sorted(self.current_steps),
            "step_results": {sid: res.to_dict() for sid, res in self.step_results.items()},
            "batches": [list(batch) for batch in self.batches],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.duration,
        }
        if self.is_terminal():
            payload["output"] = self.output
            payload["error"] = self.error
        return payload
