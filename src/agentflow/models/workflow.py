"""Workflow definition models."""
from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from .agent import AgentDefinition


class StepKind(str, enum.Enum):
    """Step kinds the engine knows how to execute."""

    AGENT = "agent"
    TOOL_CALL = "tool_call"

    @classmethod
    def resolve(cls, raw: str) -> Optional["StepKind"]:
        return _KIND_ALIASES.get(raw.strip().lower())


_KIND_ALIASES = {
    "agent": StepKind.AGENT,
    "agent_task": StepKind.AGENT,
    "tool_call": StepKind.TOOL_CALL,
    "tool-call": StepKind.TOOL_CALL,
    "tool": StepKind.TOOL_CALL,
}


class FailurePolicy(str, enum.Enum):
    """What to do with in-flight siblings when a required step fails."""

    DRAIN = "drain"
    FAIL_FAST = "fail_fast"


class BackoffStrategy(str, enum.Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


RETRY_ANY_ERROR = "any_error"


@dataclass
class RetryPolicy:
    """How often a failed step is attempted again before its result is recorded.

    ``retry_on`` lists error kinds (``Timeout``, ``ToolExecutionFailed``),
    exception type names (``ConnectError``) or ``any_error``.
    """

    max_attempts: int = 3
    interval: float = 1.0
    backoff: BackoffStrategy = BackoffStrategy.FIXED
    backoff_factor: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    retry_on: List[str] = field(default_factory=lambda: [RETRY_ANY_ERROR])

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if self.backoff == BackoffStrategy.LINEAR:
            delay = self.interval * attempt
        elif self.backoff == BackoffStrategy.EXPONENTIAL:
            delay = self.interval * (self.backoff_factor ** (attempt - 1))
        else:
            delay = self.interval
        delay = min(delay, self.max_delay)
        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * 0.1)
        return delay

    def should_retry(self, error: Optional[Dict[str, Any]]) -> bool:
        if not error:
            return False
        if RETRY_ANY_ERROR in self.retry_on:
            return True
        details = error.get("details") or {}
        names = {error.get("kind"), error.get("type"), details.get("cause_type")}
        return any(condition in names for condition in self.retry_on)


@dataclass
class AgentStepConfig:
    """Run an agent, referenced by id or defined inline."""

    agent_id: Optional[str] = None
    agent: Optional[AgentDefinition] = None
    task: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallStepConfig:
    """Invoke a registered tool directly."""

    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnsupportedStepConfig:
    """Placeholder for kinds the engine cannot run; fails at execution time."""

    kind: str
    raw: Dict[str, Any] = field(default_factory=dict)


StepConfig = Union[AgentStepConfig, ToolCallStepConfig, UnsupportedStepConfig]


@dataclass
class Step:
    """A single unit of work in a workflow."""

    id: str
    kind: str
    config: StepConfig
    depends_on: List[str] = field(default_factory=list)
    inputs: Dict[str, Any] = field(default_factory=dict)
    optional: bool = False
    timeout: Optional[float] = None
    retry: Optional[RetryPolicy] = None
    name: Optional[str] = None
    description: Optional[str] = None


class ParameterType(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    FILE = "file"


_SIZE_KEYWORDS = {
    ParameterType.STRING: ("minLength", "maxLength"),
    ParameterType.FILE: ("minLength", "maxLength"),
    ParameterType.ARRAY: ("minItems", "maxItems"),
    ParameterType.OBJECT: ("minProperties", "maxProperties"),
}


@dataclass
class WorkflowParameter:
    """A declared workflow input.

    ``minimum``/``maximum`` bound the value of numbers and the length of
    strings, arrays and objects. File parameters are passed as path strings.
    """

    name: str
    type: ParameterType = ParameterType.STRING
    description: str = ""
    required: bool = False
    default: Any = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    pattern: Optional[str] = None
    enum_values: Optional[Sequence[Any]] = None

    def to_schema(self) -> Dict[str, Any]:
        json_type = "string" if self.type == ParameterType.FILE else self.type.value
        schema: Dict[str, Any] = {"type": json_type}
        if self.description:
            schema["description"] = self.description
        low, high = _SIZE_KEYWORDS.get(self.type, ("minimum", "maximum"))
        if self.minimum is not None:
            schema[low] = self.minimum if low == "minimum" else int(self.minimum)
        if self.maximum is not None:
            schema[high] = self.maximum if high == "maximum" else int(self.maximum)
        if self.pattern is not None:
            schema["pattern"] = self.pattern
        if self.enum_values is not None:
            schema["enum"] = list(self.enum_values)
        return schema


@dataclass
class WorkflowDefinition:
    """Workflow definition as parsed from YAML/JSON."""

    id: str
    name: str
    steps: List[Step]
    version: str = "1.0.0"
    description: Optional[str] = None
    timeout: Optional[float] = None
    failure_policy: Optional[FailurePolicy] = None
    max_concurrent_steps: Optional[int] = None
    parameters: List[WorkflowParameter] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def input_schema(self) -> Optional[Dict[str, Any]]:
        """JSON Schema for the run input, or None when no parameters are declared."""
        if not self.parameters:
            return None
        return {
            "type": "object",
            "properties": {param.name: param.to_schema() for param in self.parameters},
            "required": [param.name for param in self.parameters if param.required],
        }

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_map(self) -> Dict[str, Step]:
        return {step.id: step for step in self.steps}


@dataclass(frozen=True)
class ExecutionPlan:
    """Validated view of a workflow's dependency graph."""

    workflow_id: str
    entry_points: FrozenSet[str]
    dependencies: Mapping[str, FrozenSet[str]]
    dependents: Mapping[str, FrozenSet[str]]
    levels: Tuple[FrozenSet[str], ...]

    @property
    def step_ids(self) -> FrozenSet[str]:
        return frozenset(self.dependencies)

    def dependencies_of(self, step_id: str) -> FrozenSet[str]:
        return self.dependencies.get(step_id, frozenset())

    def dependents_of(self, step_id: str) -> FrozenSet[str]:
        return self.dependents.get(step_id, frozenset())
