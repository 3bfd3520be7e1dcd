"""Exception hierarchy for the orchestration engine."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class AgentflowError(Exception):
    """Base class for every engine error."""

    kind = "Error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class WorkflowDefinitionError(AgentflowError):
    """Raised when a workflow document is structurally invalid."""

    kind = "InvalidDefinition"


class InvalidWorkflowInput(WorkflowDefinitionError):
    """Raised when a run's input does not satisfy the declared parameters."""

    kind = "InvalidInput"

    def __init__(self, workflow_id: str, errors: List[str]):
        self.errors = errors
        super().__init__(
            f"Invalid input for workflow {workflow_id}: {errors}",
            {"workflow_id": workflow_id, "validation_errors": errors},
        )


class ExecutionNotFound(AgentflowError):
    kind = "ExecutionNotFound"

    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}", {"execution_id": execution_id})


# DAG errors


class DagError(AgentflowError):
    """Raised by the validator; aborts submission before any record exists."""

    kind = "DagError"


class CycleDetected(DagError):
    kind = "CycleDetected"

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Cycle detected: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle},
        )


class UnknownDependency(DagError):
    kind = "UnknownDependency"

    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(
            f"Step '{step_id}' depends on unknown step '{dependency}'",
            {"step_id": step_id, "dependency": dependency},
        )


class DuplicateStepId(DagError):
    kind = "DuplicateStepId"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Duplicate step id: {step_id}", {"step_id": step_id})


class UndeclaredInput(DagError):
    kind = "UndeclaredInput"

    def __init__(self, step_id: str, reference: str):
        self.step_id = step_id
        self.reference = reference
        super().__init__(
            f"Step '{step_id}' reads output of '{reference}' without depending on it",
            {"step_id": step_id, "reference": reference},
        )


class StepLimitExceeded(DagError):
    kind = "StepLimitExceeded"

    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Workflow has {count} steps, limit is {limit}",
            {"count": count, "limit": limit},
        )


# Workflow errors


class WorkflowError(AgentflowError):
    kind = "WorkflowError"


class DeadlockDetected(WorkflowError):
    kind = "DeadlockDetected"

    def __init__(self, pending: Sequence[str]):
        self.pending = sorted(pending)
        super().__init__(
            f"No executable step while {len(self.pending)} remain pending: {self.pending}",
            {"pending": self.pending},
        )


class WorkflowTimeout(WorkflowError):
    kind = "WorkflowTimeout"

    def __init__(self, timeout: float, running: Sequence[str] = ()):
        super().__init__(
            f"Workflow timed out after {timeout}s",
            {"timeout_seconds": timeout, "running_steps": sorted(running)},
        )


class WorkflowCancelled(WorkflowError):
    kind = "WorkflowCancelled"

    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} was cancelled", {"execution_id": execution_id})


class StepExecutionFailed(WorkflowError):
    kind = "StepExecutionFailed"

    def __init__(self, failures: Dict[str, Dict[str, Any]]):
        self.failures = failures
        steps: List[str] = sorted(failures)
        reasons = "; ".join(f"{sid}: {failures[sid].get('message')}" for sid in steps)
        super().__init__(
            f"Required step(s) failed: {reasons}",
            {"failed_steps": steps, "errors": failures},
        )


# Step errors


class StepError(AgentflowError):
    kind = "StepError"


class UnsupportedStepKind(StepError):
    kind = "UnsupportedStepKind"

    def __init__(self, step_id: str, step_kind: str):
        super().__init__(
            f"Step '{step_id}' has unsupported kind '{step_kind}'",
            {"step_id": step_id, "step_kind": step_kind},
        )


class StepTimeout(StepError):
    kind = "Timeout"

    def __init__(self, step_id: str, timeout: float):
        super().__init__(
            f"Step '{step_id}' timed out after {timeout}s",
            {"step_id": step_id, "timeout_seconds": timeout},
        )


class StepCancelled(StepError):
    kind = "Cancelled"

    def __init__(self, step_id: str, reason: str):
        super().__init__(f"Step '{step_id}' cancelled: {reason}", {"step_id": step_id, "reason": reason})


# Agent errors


class AgentError(AgentflowError):
    kind = "AgentError"


class AgentNotFound(AgentError):
    kind = "AgentNotFound"

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}", {"agent_id": agent_id})


class AgentDisabled(AgentError):
    kind = "AgentDisabled"

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is disabled", {"agent_id": agent_id})


class ToolNotFound(AgentError):
    kind = "ToolNotFound"

    def __init__(self, tool_name: str, agent_id: Optional[str] = None):
        details: Dict[str, Any] = {"tool": tool_name}
        if agent_id:
            details["agent_id"] = agent_id
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}", details)


class ToolExecutionFailed(AgentError):
    kind = "ToolExecutionFailed"

    def __init__(self, tool_name: str, cause: Exception):
        self.cause = cause
        super().__init__(
            f"Tool {tool_name} failed: {cause}",
            {"tool": tool_name, "cause": str(cause), "cause_type": type(cause).__name__},
        )


class AgentCancelled(AgentError):
    kind = "Cancelled"

    def __init__(self, agent_id: str, iterations: int):
        super().__init__(
            f"Agent {agent_id} was cancelled after {iterations} iteration(s)",
            {"agent_id": agent_id, "iterations": iterations},
        )


class IterationExceeded(AgentError):
    kind = "IterationExceeded"

    def __init__(self, agent_id: str, max_iterations: int, last_response: Optional[str] = None):
        super().__init__(
            f"Agent {agent_id} exhausted {max_iterations} iterations without a final answer",
            {
                "agent_id": agent_id,
                "max_iterations": max_iterations,
                "last_response": last_response,
            },
        )


class ModelInvocationFailed(AgentError):
    kind = "ModelInvocationFailed"

    def __init__(self, agent_id: str, cause: Exception):
        self.cause = cause
        super().__init__(
            f"Model call failed for agent {agent_id}: {cause}",
            {"agent_id": agent_id, "cause": str(cause), "cause_type": type(cause).__name__},
        )


# Tool errors (raised by the registry and tool implementations)


class ToolError(AgentflowError):
    kind = "ToolError"


class ToolValidationError(ToolError):
    kind = "ToolValidationError"

    def __init__(self, tool_name: str, errors: List[str]):
        super().__init__(
            f"Invalid arguments for tool {tool_name}: {errors}",
            {"tool": tool_name, "validation_errors": errors},
        )


class ToolInvocationError(ToolError):
    kind = "ToolInvocationError"

    def __init__(self, tool_name: str, message: str, cause: Optional[Exception] = None):
        details: Dict[str, Any] = {"tool": tool_name}
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__
        super().__init__(message, details)


class RegistryFrozen(ToolError):
    kind = "RegistryFrozen"

    def __init__(self, tool_name: str):
        super().__init__(
            f"Cannot register {tool_name}: registry is frozen",
            {"tool": tool_name},
        )


def error_to_dict(error: BaseException) -> Dict[str, Any]:
    """Normalise any exception into the error shape stored on results."""
    if isinstance(error, AgentflowError):
        return error.to_dict()
    return {
        "type": type(error).__name__,
        "kind": "UnexpectedError",
        "message": str(error) or type(error).__name__,
        "details": {},
    }
