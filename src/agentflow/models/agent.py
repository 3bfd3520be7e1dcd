"""Agent definition and execution models."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class AgentDefinitionStatus(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class AgentStatus(str, enum.Enum):
    """Lifecycle of a single agent execution."""

    INITIALIZED = "initialized"
    REASONING = "reasoning"
    COMPLETED = "completed"
    ITERATION_EXCEEDED = "iteration_exceeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AgentDefinition:
    """Configuration of a reasoning agent."""

    id: str
    name: str = ""
    tools: List[str] = field(default_factory=list)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    prompt_template: Optional[str] = None
    max_iterations: Optional[int] = None
    model: Optional[str] = None
    temperature: float = 0.0
    status: AgentDefinitionStatus = AgentDefinitionStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Agent definition requires an id")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if not self.name:
            self.name = self.id

    @property
    def enabled(self) -> bool:
        return self.status == AgentDefinitionStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDefinition":
        return cls(
            id=data.get("id") or data.get("agent_id", ""),
            name=data.get("name", ""),
            tools=_tool_names(data.get("tools", [])),
            system_prompt=data.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
            prompt_template=data.get("prompt_template"),
            max_iterations=_optional_int(data.get("max_iterations")),
            model=data.get("model"),
            temperature=_float(data.get("temperature", 0.0)),
            status=AgentDefinitionStatus(data.get("status", "active")),
            metadata=data.get("metadata", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tools": list(self.tools),
            "system_prompt": self.system_prompt,
            "prompt_template": self.prompt_template,
            "max_iterations": self.max_iterations,
            "model": self.model,
            "temperature": self.temperature,
            "status": self.status.value,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ToolCallRequest:
    tool: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallResult:
    tool: str
    arguments: Dict[str, Any]
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AgentIteration:
    """One model call and, optionally, the tool call it requested."""

    index: int
    prompt: str
    response: str
    tool_call: Optional[ToolCallRequest] = None
    tool_result: Optional[ToolCallResult] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "response": self.response,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_call is not None:
            payload["tool_call"] = {
                "tool": self.tool_call.tool,
                "arguments": self.tool_call.arguments,
            }
        if self.tool_result is not None:
            payload["tool_result"] = {
                "output": self.tool_result.output,
                "error": self.tool_result.error,
                "duration_ms": self.tool_result.duration_ms,
            }
        return payload


@dataclass
class AgentExecution:
    """A single run of the reasoning loop for one agent."""

    agent_id: str
    input: Dict[str, Any]
    id: str = field(default_factory=lambda: uuid4().hex)
    status: AgentStatus = AgentStatus.INITIALIZED
    iterations: List[AgentIteration] = field(default_factory=list)
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def iteration_count(self) -> int:
        return len(self.iterations)

    @property
    def last_response(self) -> Optional[str]:
        if not self.iterations:
            return None
        return self.iterations[-1].response

    def is_terminal(self) -> bool:
        return self.status in (
            AgentStatus.COMPLETED,
            AgentStatus.ITERATION_EXCEEDED,
            AgentStatus.FAILED,
            AgentStatus.CANCELLED,
        )

    def begin(self) -> None:
        self.status = AgentStatus.REASONING
        self.started_at = datetime.utcnow()

    def append(self, iteration: AgentIteration) -> None:
        if self.is_terminal():
            raise RuntimeError(f"Agent execution {self.id} is already finalized")
        self.iterations.append(iteration)

    def complete(self, output: Any) -> None:
        self.status = AgentStatus.COMPLETED
        self.output = output
        self.finished_at = datetime.utcnow()

    def fail(self, error: Dict[str, Any], status: AgentStatus = AgentStatus.FAILED) -> None:
        self.status = status
        self.error = error
        self.finished_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "status": self.status.value,
            "iterations": [it.to_dict() for it in self.iterations],
            "output": self.output,
            "error": self.error,
        }


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def _tool_names(value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(name, str) for name in value):
        raise ValueError(f"tools must be a list of tool names, got {value!r}")
    return list(value)


def _float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"expected a number, got {value!r}")
    return float(value)
