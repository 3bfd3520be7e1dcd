"""
Shared pytest fixtures
"""
import pytest

from agentflow.agents import AgentCatalog, ScriptedLanguageModel
from agentflow.config import EngineSettings
from agentflow.core import WorkflowExecutor, WorkflowParser
from agentflow.models import AgentDefinition
from agentflow.sinks import InMemoryRecordSink
from agentflow.tools import ToolDefinition, ToolRegistry
from agentflow.tools.builtin import BuiltinTools


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    calc_def, calc_handler = BuiltinTools.create_calculator_tool()
    registry.register(calc_def, calc_handler)

    @registry.tool(
        "echo",
        description="Return the arguments unchanged",
        parameters_schema={"type": "object"},
    )
    def echo(arguments):
        return dict(arguments)

    async def fail(arguments):
        raise RuntimeError(arguments.get("reason", "boom"))

    registry.register(ToolDefinition(name="fail", description="Always fails"), fail)
    return registry


@pytest.fixture
def model() -> ScriptedLanguageModel:
    return ScriptedLanguageModel()


@pytest.fixture
def catalog() -> AgentCatalog:
    return AgentCatalog([
        AgentDefinition(id="math", tools=["calculator"], max_iterations=3),
        AgentDefinition(id="writer", max_iterations=2),
    ])


@pytest.fixture
def sink() -> InMemoryRecordSink:
    return InMemoryRecordSink()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(step_timeout=5.0)


@pytest.fixture
def executor(registry, model, catalog, sink, settings) -> WorkflowExecutor:
    return WorkflowExecutor(registry, model, catalog=catalog, sink=sink, settings=settings)


@pytest.fixture
def parser() -> WorkflowParser:
    return WorkflowParser()

