"""Workflow executor: validates, schedules batches and records results."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ..agents.catalog import AgentCatalog
from ..agents.llm import LanguageModel
from ..agents.loop import ReasoningLoop
from ..config import EngineSettings
from ..errors import (
    AgentflowError,
    ExecutionNotFound,
    StepCancelled,
    StepExecutionFailed,
    WorkflowCancelled,
    WorkflowTimeout,
    error_to_dict,
)
from ..models.execution import StepResult, WorkflowExecution
from ..models.workflow import ExecutionPlan, FailurePolicy, Step, WorkflowDefinition
from ..monitoring import EventLogger, MetricsRecorder, TracingManager
from ..sinks import ExecutionRecordSink
from ..tools.registry import ToolRegistry
from .inputs import apply_parameters, resolve_inputs
from .scheduler import BatchFrontier, ExecutionPlanCache, plan_cache_key
from .step_executor import StepExecutor
from .validator import DagValidator

LOGGER = logging.getLogger("agentflow.engine")


class WorkflowExecutor:
    """Runs workflow DAGs as level-synchronous batches of concurrent steps.

    Each batch holds every step whose dependencies all have a recorded
    result. The next batch starts only after the current one is fully
    recorded. Results are written by the coordinating task alone, once
    per step id.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        model: Optional[LanguageModel] = None,
        *,
        loop: Optional[ReasoningLoop] = None,
        catalog: Optional[AgentCatalog] = None,
        sink: Optional[ExecutionRecordSink] = None,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsRecorder] = None,
        tracer: Optional[TracingManager] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        if loop is None and model is None:
            raise ValueError("WorkflowExecutor needs a language model or a reasoning loop")
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.metrics = metrics or MetricsRecorder()
        self.tracer = tracer or TracingManager()
        self.events = event_logger or EventLogger()
        self.catalog = catalog or AgentCatalog()
        self.sink = sink
        self.loop = loop or ReasoningLoop(
            model,
            registry,
            default_max_iterations=self.settings.max_iterations,
            metrics=self.metrics,
        )
        self.step_executor = StepExecutor(
            registry,
            self.loop,
            self.catalog,
            default_timeout=self.settings.step_timeout,
            metrics=self.metrics,
            tracer=self.tracer,
            event_logger=self.events,
        )
        self.validator = DagValidator(max_steps=self.settings.max_steps)
        self.plan_cache = ExecutionPlanCache()
        self.executions: Dict[str, WorkflowExecution] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._cancel_requested: Set[str] = set()

    # public interface

    def validate(self, definition: WorkflowDefinition) -> ExecutionPlan:
        key = plan_cache_key(definition)
        plan = self.plan_cache.get(key)
        if plan is None:
            plan = self.validator.validate(definition)
            self.plan_cache.put(key, plan)
        return plan

    async def submit(
        self, definition: WorkflowDefinition, input_data: Optional[Dict[str, Any]] = None
    ) -> str:
        """Validate and start a run in the background; return its execution id.

        ``DagError`` and ``InvalidWorkflowInput`` propagate and no execution
        record is created.
        """
        plan = self.validate(definition)
        payload = apply_parameters(definition, input_data)
        execution = WorkflowExecution(definition=definition, input=payload)
        self._evict_finished()
        self.executions[execution.id] = execution
        await self._notify("on_start", execution.id, definition, execution.input)

        execution.start()
        self.metrics.inc("workflow_executions_started_total", {"workflow_id": definition.id})
        self.events.log("workflow_started", execution_id=execution.id, workflow_id=definition.id)

        task = asyncio.create_task(self._run(execution, plan))
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))
        return execution.id

    async def run(
        self, definition: WorkflowDefinition, input_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        execution_id = await self.submit(definition, input_data)
        return await self.wait(execution_id)

    async def wait(self, execution_id: str, timeout: Optional[float] = None) -> WorkflowExecution:
        execution = self._get(execution_id)
        task = self._tasks.get(execution_id)
        if task is not None and not task.done():
            # asyncio.wait neither cancels the run nor re-raises its cancellation
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise asyncio.TimeoutError(f"Execution {execution_id} still running after {timeout}s")
        return execution

    def get_status(self, execution_id: str) -> Dict[str, Any]:
        return self._get(execution_id).snapshot()

    def list_executions(self) -> List[Dict[str, Any]]:
        return [
            {
                "execution_id": execution.id,
                "workflow_id": execution.workflow_id,
                "status": execution.status.value,
            }
            for execution in self.executions.values()
        ]

    async def cancel(self, execution_id: str) -> bool:
        """Cancel a running execution. Returns False if it already finished."""
        execution = self._get(execution_id)
        task = self._tasks.get(execution_id)
        if execution.is_terminal() or task is None:
            return False
        self._cancel_requested.add(execution_id)
        task.cancel()
        await asyncio.wait({task})
        if not execution.is_terminal():
            # cancelled before the run task got to execute
            self._cancel_requested.discard(execution_id)
            await self._finish_failed(execution, WorkflowCancelled(execution_id))
        return True

    async def shutdown(self) -> None:
        for execution_id in list(self._tasks):
            await self.cancel(execution_id)

    # run loop

    def _get(self, execution_id: str) -> WorkflowExecution:
        execution = self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    def _evict_finished(self) -> None:
        # oldest finished runs go first; running ones are never evicted
        limit = self.settings.max_retained_executions
        if limit is None:
            return
        excess = len(self.executions) + 1 - limit
        if excess <= 0:
            return
        finished = [eid for eid, execution in self.executions.items() if execution.is_terminal()]
        for execution_id in finished[:excess]:
            del self.executions[execution_id]
        LOGGER.debug("Evicted %d finished execution(s)", min(excess, len(finished)))

    async def _run(self, execution: WorkflowExecution, plan: ExecutionPlan) -> None:
        definition = execution.definition
        try:
            with self.tracer.span("workflow.run", execution_id=execution.id, workflow_id=definition.id):
                await self._run_batches(execution, plan)
        except asyncio.CancelledError:
            requested = execution.id in self._cancel_requested
            self._cancel_requested.discard(execution.id)
            await self._finish_failed(execution, WorkflowCancelled(execution.id))
            if not requested:
                raise
        except AgentflowError as e:
            await self._finish_failed(execution, e)
        except Exception as e:
            LOGGER.exception("Execution %s crashed", execution.id)
            await self._finish_failed(execution, e)
        else:
            output = {sid: result.output for sid, result in execution.step_results.items()}
            execution.succeed(output)
            LOGGER.info("Execution %s succeeded", execution.id)
            self._record_finish(execution)
            await self._notify("on_finish", execution.id, execution.status, execution.output)

    async def _run_batches(self, execution: WorkflowExecution, plan: ExecutionPlan) -> None:
        definition = execution.definition
        policy = definition.failure_policy or self.settings.failure_policy
        timeout = definition.timeout or self.settings.workflow_timeout
        deadline = asyncio.get_running_loop().time() + timeout if timeout else None
        frontier = BatchFrontier(
            plan, definition.max_concurrent_steps or self.settings.max_concurrent_steps
        )
        steps = definition.step_map()

        while frontier.has_pending():
            batch = frontier.next_batch()
            execution.batches.append(list(batch))
            execution.current_steps.update(batch)
            LOGGER.debug("Execution %s batch %d: %s", execution.id, len(execution.batches), batch)

            tasks = {
                asyncio.create_task(self._execute_step(execution, steps[step_id])): step_id
                for step_id in batch
            }
            await self._await_batch(execution, tasks, policy, deadline, timeout)

            failures: Dict[str, Dict[str, Any]] = {}
            for step_id in batch:
                result = execution.step_results[step_id]
                if result.succeeded or steps[step_id].optional:
                    frontier.mark_completed(step_id)
                elif result.error.get("kind") != StepCancelled.kind:
                    failures[step_id] = result.error
            if failures:
                raise StepExecutionFailed(failures)

    async def _await_batch(
        self,
        execution: WorkflowExecution,
        tasks: Dict["asyncio.Task[StepResult]", str],
        policy: FailurePolicy,
        deadline: Optional[float],
        timeout: Optional[float],
    ) -> None:
        pending = set(tasks)
        loop = asyncio.get_running_loop()
        try:
            while pending:
                remaining = None if deadline is None else max(deadline - loop.time(), 0)
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    running = [tasks[task] for task in pending]
                    await self._cancel_steps(execution, tasks, pending, "workflow timed out")
                    raise WorkflowTimeout(timeout, running)

                required_failed = False
                for task in done:
                    result = task.result()
                    await self._record(execution, result)
                    step = execution.definition.get_step(result.step_id)
                    if not result.succeeded and not step.optional:
                        required_failed = True

                if required_failed and policy == FailurePolicy.FAIL_FAST and pending:
                    await self._cancel_steps(execution, tasks, pending, "sibling step failed")
                    pending = set()
        except asyncio.CancelledError:
            unrecorded = {task for task, sid in tasks.items() if sid not in execution.step_results}
            await self._cancel_steps(execution, tasks, unrecorded, "workflow cancelled")
            raise

    async def _execute_step(self, execution: WorkflowExecution, step: Step) -> StepResult:
        try:
            inputs = resolve_inputs(step, execution.input, execution.step_results)
        except Exception as e:
            return StepResult.failure(step.id, error_to_dict(e))
        return await self.step_executor.execute(step, inputs, execution_id=execution.id)

    async def _cancel_steps(
        self,
        execution: WorkflowExecution,
        tasks: Dict["asyncio.Task[StepResult]", str],
        pending: Set["asyncio.Task[StepResult]"],
        reason: str,
    ) -> None:
        for task in pending:
            task.cancel()
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            step_id = tasks[task]
            if not task.cancelled() and task.exception() is None:
                result = task.result()
            else:
                result = StepResult.failure(step_id, StepCancelled(step_id, reason).to_dict())
            await self._record(execution, result)

    async def _record(self, execution: WorkflowExecution, result: StepResult) -> None:
        execution.record_step_result(result)
        await self._notify("on_step_complete", execution.id, result.step_id, result)

    async def _finish_failed(self, execution: WorkflowExecution, error: BaseException) -> None:
        output = {
            "failed_steps": {
                sid: result.error for sid, result in execution.step_results.items() if not result.succeeded
            },
            "completed_steps": {
                sid: result.output for sid, result in execution.step_results.items() if result.succeeded
            },
        }
        execution.fail(error_to_dict(error), output=output)
        LOGGER.warning("Execution %s failed: %s (failed steps: %s)", execution.id, error, execution.failed_steps())
        self._record_finish(execution)
        await self._notify("on_finish", execution.id, execution.status, execution.output)

    def _record_finish(self, execution: WorkflowExecution) -> None:
        labels = {"workflow_id": execution.workflow_id, "status": execution.status.value}
        self.metrics.inc("workflow_executions_total", labels)
        if execution.duration is not None:
            self.metrics.observe("workflow_duration_seconds", execution.duration, labels)
        self.events.log(
            "workflow_finished",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
        )

    async def _notify(self, method: str, *args: Any) -> None:
        if self.sink is None:
            return
        try:
            await getattr(self.sink, method)(*args)
        except Exception:
            LOGGER.exception("Record sink %s failed", method)
