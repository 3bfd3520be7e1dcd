"""Step execution: dispatch a step to its handler and capture the outcome."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type

from ..agents.catalog import AgentCatalog
from ..agents.loop import ReasoningLoop
from ..errors import StepTimeout, UnsupportedStepKind, WorkflowDefinitionError, error_to_dict
from ..models.agent import AgentExecution
from ..models.execution import StepResult
from ..models.workflow import AgentStepConfig, Step, ToolCallStepConfig
from ..monitoring import EventLogger, MetricsRecorder, TracingManager
from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class StepHandler(ABC):
    """Runs one kind of step. ``metadata`` is filled in even when the step fails."""

    @abstractmethod
    async def handle(self, step: Step, inputs: Dict[str, Any], metadata: Dict[str, Any]) -> Any:
        ...


class AgentStepHandler(StepHandler):
    def __init__(self, loop: ReasoningLoop, catalog: AgentCatalog):
        self.loop = loop
        self.catalog = catalog

    async def handle(self, step: Step, inputs: Dict[str, Any], metadata: Dict[str, Any]) -> Any:
        config: AgentStepConfig = step.config
        if config.agent is not None:
            definition = config.agent
        elif config.agent_id:
            definition = self.catalog.get(config.agent_id)
        else:
            raise WorkflowDefinitionError(f"Agent step '{step.id}' has no agent")

        execution = AgentExecution(agent_id=definition.id, input=dict(inputs))
        metadata["agent_id"] = definition.id
        metadata["agent_execution_id"] = execution.id
        try:
            return await self.loop.invoke(definition, inputs, task=config.task, execution=execution)
        finally:
            metadata["agent_status"] = execution.status.value
            metadata["iterations"] = execution.iteration_count
            metadata["trace"] = [iteration.to_dict() for iteration in execution.iterations]


class ToolCallStepHandler(StepHandler):
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def handle(self, step: Step, inputs: Dict[str, Any], metadata: Dict[str, Any]) -> Any:
        config: ToolCallStepConfig = step.config
        metadata["tool"] = config.tool_name
        return await self.registry.invoke(config.tool_name, inputs)


class StepExecutor:
    """Executes single steps and always returns a ``StepResult``.

    Errors raised by handlers, including per-step timeouts, become failed
    results. Task cancellation is not an error and propagates.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        loop: ReasoningLoop,
        catalog: Optional[AgentCatalog] = None,
        default_timeout: Optional[float] = None,
        metrics: Optional[MetricsRecorder] = None,
        tracer: Optional[TracingManager] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.default_timeout = default_timeout
        self.metrics = metrics or MetricsRecorder()
        self.tracer = tracer or TracingManager()
        self.events = event_logger or EventLogger()
        self.handlers: Dict[Type, StepHandler] = {
            AgentStepConfig: AgentStepHandler(loop, catalog or AgentCatalog()),
            ToolCallStepConfig: ToolCallStepHandler(registry),
        }

    def register_handler(self, config_type: Type, handler: StepHandler) -> None:
        self.handlers[config_type] = handler

    async def execute(
        self,
        step: Step,
        resolved_inputs: Dict[str, Any],
        *,
        execution_id: Optional[str] = None,
    ) -> StepResult:
        """Run ``step`` until it succeeds or its retry policy gives up."""
        started_at = datetime.utcnow()
        start = time.monotonic()
        policy = step.retry
        attempt = 1

        while True:
            metadata: Dict[str, Any] = {}
            output, error = await self._attempt(step, resolved_inputs, metadata, execution_id)
            if error is None or policy is None:
                break
            if attempt >= policy.max_attempts or not policy.should_retry(error):
                break
            delay = policy.delay(attempt)
            logger.info(
                "Step %s attempt %d/%d failed with %s, retrying in %.2fs",
                step.id, attempt, policy.max_attempts, error.get("kind"), delay,
            )
            self.metrics.inc("step_retries_total", {"step_kind": step.kind})
            await asyncio.sleep(delay)
            attempt += 1

        if policy is not None:
            metadata["attempts"] = attempt
        if error is None:
            result = StepResult.success(step.id, output, started_at, metadata)
        else:
            result = StepResult.failure(step.id, error, started_at, metadata)

        duration = time.monotonic() - start
        labels = {"step_kind": step.kind, "status": result.status.value}
        self.metrics.inc("steps_total", labels)
        self.metrics.observe("step_duration_seconds", duration, {"step_kind": step.kind})
        self.events.log(
            "step_finished",
            execution_id=execution_id,
            step_id=step.id,
            status=result.status.value,
            error_kind=result.error["kind"] if result.error else None,
            attempts=attempt,
        )
        return result

    async def _attempt(
        self,
        step: Step,
        resolved_inputs: Dict[str, Any],
        metadata: Dict[str, Any],
        execution_id: Optional[str],
    ) -> Tuple[Any, Optional[Dict[str, Any]]]:
        timeout = step.timeout or self.default_timeout
        try:
            handler = self.handlers.get(type(step.config))
            if handler is None:
                raise UnsupportedStepKind(step.id, step.kind)
            with self.tracer.span(f"step.{step.kind}.{step.id}", execution_id=execution_id or ""):
                call = handler.handle(step, resolved_inputs, metadata)
                if timeout:
                    output = await asyncio.wait_for(call, timeout=timeout)
                else:
                    output = await call
        except asyncio.TimeoutError:
            return None, StepTimeout(step.id, timeout).to_dict()
        except Exception as e:
            logger.warning("Step %s failed: %s", step.id, e)
            return None, error_to_dict(e)
        return output, None
