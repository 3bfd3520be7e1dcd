"""Workflow, execution and agent models"""

from .agent import (
    AgentDefinition, AgentDefinitionStatus, AgentExecution, AgentIteration,
    AgentStatus, ToolCallRequest, ToolCallResult, DEFAULT_MAX_ITERATIONS
)
from .workflow import (
    AgentStepConfig, BackoffStrategy, ExecutionPlan, FailurePolicy, ParameterType, RetryPolicy,
    Step, StepConfig, StepKind, ToolCallStepConfig, UnsupportedStepConfig, WorkflowDefinition,
    WorkflowParameter
)
from .execution import ExecutionStatus, StepResult, StepStatus, WorkflowExecution

__all__ = [
    "AgentDefinition",
    "AgentDefinitionStatus",
    "AgentExecution",
    "AgentIteration",
    "AgentStatus",
    "ToolCallRequest",
    "ToolCallResult",
    "DEFAULT_MAX_ITERATIONS",
    "AgentStepConfig",
    "BackoffStrategy",
    "ExecutionPlan",
    "FailurePolicy",
    "ParameterType",
    "RetryPolicy",
    "Step",
    "StepConfig",
    "StepKind",
    "ToolCallStepConfig",
    "UnsupportedStepConfig",
    "WorkflowDefinition",
    "WorkflowParameter",
    "ExecutionStatus",
    "StepResult",
    "StepStatus",
    "WorkflowExecution",
]
