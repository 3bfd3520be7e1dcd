"""Core orchestration: parsing, validation, scheduling and execution"""

from .executor import WorkflowExecutor
from .inputs import resolve_inputs
from .parser import WorkflowParser
from .scheduler import BatchFrontier, ExecutionPlanCache
from .step_executor import AgentStepHandler, StepExecutor, StepHandler, ToolCallStepHandler
from .validator import DagValidator, validate

__all__ = [
    "WorkflowExecutor",
    "resolve_inputs",
    "WorkflowParser",
    "BatchFrontier",
    "ExecutionPlanCache",
    "AgentStepHandler",
    "StepExecutor",
    "StepHandler",
    "ToolCallStepHandler",
    "DagValidator",
    "validate",
]
