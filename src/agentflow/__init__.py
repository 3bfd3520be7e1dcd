"""
agentflow - DAG workflow engine for tool-using agents
"""

from .agents import AgentCatalog, LanguageModel, OpenAIChatModel, ReasoningLoop, ScriptedLanguageModel
from .config import EngineSettings, configure_logging
from .core import DagValidator, StepExecutor, WorkflowExecutor, WorkflowParser, validate
from .errors import AgentflowError, error_to_dict
from .models import (
    AgentDefinition, ExecutionPlan, ExecutionStatus, Step, StepResult, WorkflowDefinition,
    WorkflowExecution
)
from .sinks import (
    CompositeRecordSink, ExecutionRecordSink, InMemoryRecordSink, LoggingRecordSink,
    SQLiteRecordSink
)
from .tools import ToolDefinition, ToolRegistry, register_builtin_tools

__version__ = "1.0.0"

__all__ = [
    "AgentCatalog",
    "LanguageModel",
    "OpenAIChatModel",
    "ReasoningLoop",
    "ScriptedLanguageModel",
    "EngineSettings",
    "configure_logging",
    "DagValidator",
    "StepExecutor",
    "WorkflowExecutor",
    "WorkflowParser",
    "validate",
    "AgentflowError",
    "error_to_dict",
    "AgentDefinition",
    "ExecutionPlan",
    "ExecutionStatus",
    "Step",
    "StepResult",
    "WorkflowDefinition",
    "WorkflowExecution",
    "CompositeRecordSink",
    "ExecutionRecordSink",
    "InMemoryRecordSink",
    "LoggingRecordSink",
    "SQLiteRecordSink",
    "ToolDefinition",
    "ToolRegistry",
    "register_builtin_tools",
]
