"""Agent reasoning loop: prompt, model call, optional tool call, repeat."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from ..errors import (
    AgentCancelled,
    AgentDisabled,
    AgentError,
    IterationExceeded,
    ModelInvocationFailed,
    ToolExecutionFailed,
    ToolNotFound,
    error_to_dict,
)
from ..models.agent import (
    DEFAULT_MAX_ITERATIONS,
    AgentDefinition,
    AgentExecution,
    AgentIteration,
    AgentStatus,
    ToolCallResult,
)
from ..monitoring import MetricsRecorder
from ..tools.registry import ToolDefinition, ToolRegistry
from .llm import LanguageModel
from .parsing import parse_tool_call
from .prompts import PromptBuilder

logger = logging.getLogger(__name__)


class ReasoningLoop:
    """Drives one agent execution to a final answer or a typed failure.

    The iteration cap counts completed model calls and is inclusive: an
    agent with ``max_iterations=N`` gets exactly N calls. Only tools that
    are both registered and listed in the agent's ``tools`` may be called.
    """

    def __init__(
        self,
        model: LanguageModel,
        registry: ToolRegistry,
        prompt_builder: Optional[PromptBuilder] = None,
        default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
        metrics: Optional[MetricsRecorder] = None,
    ) -> None:
        if default_max_iterations < 1:
            raise ValueError("default_max_iterations must be at least 1")
        self.model = model
        self.registry = registry
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.default_max_iterations = default_max_iterations
        self.metrics = metrics or MetricsRecorder()

    async def run(
        self,
        definition: AgentDefinition,
        input_data: Dict[str, Any],
        task: Optional[str] = None,
    ) -> AgentExecution:
        """Run the loop and return the execution; failures are recorded on it."""
        execution = AgentExecution(agent_id=definition.id, input=dict(input_data))
        try:
            await self.invoke(definition, input_data, task=task, execution=execution)
        except AgentError as e:
            logger.info("Agent %s finished with %s", definition.id, e.kind)
        return execution

    async def invoke(
        self,
        definition: AgentDefinition,
        input_data: Dict[str, Any],
        task: Optional[str] = None,
        execution: Optional[AgentExecution] = None,
    ) -> Any:
        """Run the loop and return the final answer, raising ``AgentError`` on failure."""
        if execution is None:
            execution = AgentExecution(agent_id=definition.id, input=dict(input_data))
        try:
            await self._reason(definition, input_data, task, execution)
        except asyncio.CancelledError:
            # step timeout or workflow cancellation; finalize before unwinding
            if not execution.is_terminal():
                error = AgentCancelled(definition.id, execution.iteration_count)
                execution.fail(error.to_dict(), status=AgentStatus.CANCELLED)
                self.metrics.inc("agent_executions_total", {"agent_id": definition.id, "status": "cancelled"})
            raise
        except IterationExceeded as e:
            execution.fail(e.to_dict(), status=AgentStatus.ITERATION_EXCEEDED)
            self.metrics.inc("agent_executions_total", {"agent_id": definition.id, "status": "iteration_exceeded"})
            raise
        except Exception as e:
            execution.fail(error_to_dict(e))
            self.metrics.inc("agent_executions_total", {"agent_id": definition.id, "status": "failed"})
            raise
        self.metrics.inc("agent_executions_total", {"agent_id": definition.id, "status": "completed"})
        return execution.output

    async def _reason(
        self,
        definition: AgentDefinition,
        input_data: Dict[str, Any],
        task: Optional[str],
        execution: AgentExecution,
    ) -> None:
        if not definition.enabled:
            raise AgentDisabled(definition.id)

        max_iterations = definition.max_iterations or self.default_max_iterations
        tools = self._permitted_tools(definition)
        execution.begin()

        for index in range(1, max_iterations + 1):
            prompt = self.prompt_builder.build(
                definition, input_data, tools, execution.iterations, task=task
            )
            try:
                response = await self.model.complete(prompt, agent=definition)
            except Exception as e:
                raise ModelInvocationFailed(definition.id, e) from e
            self.metrics.inc("agent_model_calls_total", {"agent_id": definition.id})

            iteration = AgentIteration(index=index, prompt=prompt.render(), response=response)
            call = parse_tool_call(response)
            if call is None:
                execution.append(iteration)
                execution.complete(response.strip())
                logger.debug("Agent %s answered after %d iteration(s)", definition.id, index)
                return

            iteration.tool_call = call
            if call.tool not in definition.tools or not self.registry.has(call.tool):
                execution.append(iteration)
                raise ToolNotFound(call.tool, definition.id)

            start = time.monotonic()
            try:
                output = await self.registry.invoke(call.tool, call.arguments)
            except Exception as e:
                iteration.tool_result = ToolCallResult(
                    tool=call.tool,
                    arguments=call.arguments,
                    error=error_to_dict(e),
                    duration_ms=(time.monotonic() - start) * 1000,
                )
                execution.append(iteration)
                raise ToolExecutionFailed(call.tool, e) from e

            iteration.tool_result = ToolCallResult(
                tool=call.tool,
                arguments=call.arguments,
                output=output,
                duration_ms=(time.monotonic() - start) * 1000,
            )
            execution.append(iteration)
            logger.debug("Agent %s iteration %d called %s", definition.id, index, call.tool)

        raise IterationExceeded(definition.id, max_iterations, execution.last_response)

    def _permitted_tools(self, definition: AgentDefinition) -> List[ToolDefinition]:
        return [self.registry.get(name) for name in definition.tools if self.registry.has(name)]
