import asyncio

import pytest

from agentflow.config import EngineSettings
from agentflow.core import WorkflowExecutor
from agentflow.errors import CycleDetected, ExecutionNotFound, InvalidWorkflowInput
from agentflow.models import ExecutionStatus
from agentflow.sinks import ExecutionRecordSink
from agentflow.tools import ToolDefinition

from helpers import agent_step, tool_step, workflow_dict


def add_sleepy(registry, seconds=30):
    async def sleepy(arguments):
        await asyncio.sleep(arguments.get("seconds", seconds))
        return "done"

    registry.register(ToolDefinition(name="sleepy"), sleepy)


@pytest.mark.asyncio
async def test_diamond_runs_in_level_batches(executor, parser, sink):
    definition = parser.parse_dict(workflow_dict([
        tool_step("A"),
        tool_step("B", ["A"]),
        tool_step("C", ["A"]),
        tool_step("D", ["B", "C"]),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.batches == [["A"], ["B", "C"], ["D"]]
    assert execution.output == {sid: {"step": sid} for sid in "ABCD"}

    record = sink.records[execution.id]
    assert record.status == ExecutionStatus.SUCCEEDED
    assert record.step_order[0] == "A"
    assert record.step_order[-1] == "D"
    assert sink.events[0] == ("start", execution.id)
    assert sink.events[-1] == ("finish", execution.id, "succeeded")


@pytest.mark.asyncio
async def test_single_agent_step(executor, parser, model):
    model.push("4")
    definition = parser.parse_dict(workflow_dict([
        agent_step("ask", {"max_iterations": 1}),
    ]))

    execution = await executor.run(definition, {"question": "2+2"})

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.output == {"ask": "4"}
    assert model.calls == 1
    assert "2+2" in model.prompts[0].user


@pytest.mark.asyncio
async def test_tool_output_feeds_agent(executor, parser, model):
    model.push("Short summary")
    summarize = agent_step("summarize", "writer", ["fetch"], inputs={"page": "${fetch.text}"})
    summarize["config"]["task"] = "Summarize: {page}"
    definition = parser.parse_dict(workflow_dict([
        tool_step("fetch", arguments={"text": "${input.text}"}),
        summarize,
    ]))

    execution = await executor.run(definition, {"text": "long article"})

    assert execution.output["summarize"] == "Short summary"
    assert model.prompts[0].user == "Summarize: long article"


@pytest.mark.asyncio
async def test_failed_dependency_blocks_dependents(executor, parser, model):
    definition = parser.parse_dict(workflow_dict([
        tool_step("fetch", tool="fail"),
        agent_step("summarize", "writer", ["fetch"]),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error["kind"] == "StepExecutionFailed"
    assert execution.error["details"]["failed_steps"] == ["fetch"]
    assert "summarize" not in execution.step_results
    assert model.calls == 0
    assert execution.output["completed_steps"] == {}
    assert execution.output["failed_steps"]["fetch"]["kind"] == "ToolInvocationError"


@pytest.mark.asyncio
async def test_optional_failure_is_tolerated(executor, parser):
    definition = parser.parse_dict(workflow_dict([
        tool_step("enrich", tool="fail", optional=True),
        tool_step("report", ["enrich"], arguments={"extra": "${enrich.result}"}),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.step_results["enrich"].error["kind"] == "ToolInvocationError"
    assert execution.output == {"enrich": None, "report": {"extra": None}}


@pytest.mark.asyncio
async def test_drain_lets_siblings_finish(executor, parser, registry):
    add_sleepy(registry)
    definition = parser.parse_dict(workflow_dict([
        tool_step("bad", tool="fail"),
        tool_step("slow", tool="sleepy", arguments={"seconds": 0.05}),
        tool_step("after", ["bad", "slow"]),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.step_results["slow"].output == "done"
    assert "after" not in execution.step_results
    assert execution.output["completed_steps"] == {"slow": "done"}


@pytest.mark.asyncio
async def test_fail_fast_cancels_siblings(executor, parser, registry):
    add_sleepy(registry)
    definition = parser.parse_dict(workflow_dict(
        [tool_step("bad", tool="fail"), tool_step("slow", tool="sleepy", arguments={})],
        failure_policy="fail_fast",
    ))

    execution = await asyncio.wait_for(executor.run(definition), timeout=2)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error["details"]["failed_steps"] == ["bad"]
    assert execution.step_results["slow"].error["kind"] == "Cancelled"
    assert execution.failed_steps() == ["bad", "slow"]


@pytest.mark.asyncio
async def test_workflow_timeout(executor, parser, registry):
    add_sleepy(registry)
    definition = parser.parse_dict(workflow_dict(
        [tool_step("slow", tool="sleepy", arguments={})],
        timeout=0.1,
    ))

    execution = await asyncio.wait_for(executor.run(definition), timeout=2)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error["kind"] == "WorkflowTimeout"
    assert execution.error["details"]["running_steps"] == ["slow"]
    assert execution.step_results["slow"].error["kind"] == "Cancelled"


@pytest.mark.asyncio
async def test_cancel_running_execution(executor, parser, registry, sink):
    add_sleepy(registry)
    definition = parser.parse_dict(workflow_dict([
        tool_step("slow", tool="sleepy", arguments={}),
        tool_step("never", ["slow"]),
    ]))

    execution_id = await executor.submit(definition)
    await asyncio.sleep(0.05)
    assert executor.get_status(execution_id)["current_steps"] == ["slow"]

    assert await executor.cancel(execution_id) is True
    status = executor.get_status(execution_id)
    assert status["status"] == "failed"
    assert status["error"]["kind"] == "WorkflowCancelled"
    assert status["step_results"]["slow"]["error"]["kind"] == "Cancelled"
    assert sink.events[-1] == ("finish", execution_id, "failed")

    assert await executor.cancel(execution_id) is False


@pytest.mark.asyncio
async def test_cancel_before_first_batch(executor, parser):
    definition = parser.parse_dict(workflow_dict([tool_step("a")]))

    execution_id = await executor.submit(definition)
    assert await executor.cancel(execution_id) is True

    execution = await executor.wait(execution_id)
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error["kind"] == "WorkflowCancelled"


@pytest.mark.asyncio
async def test_steps_in_a_batch_run_concurrently(executor, parser, registry):
    arrived = []
    everyone_here = asyncio.Event()

    async def meet(arguments):
        arrived.append(arguments["step"])
        if len(arrived) == 2:
            everyone_here.set()
        await asyncio.wait_for(everyone_here.wait(), timeout=1)
        return len(arrived)

    registry.register(ToolDefinition(name="meet"), meet)
    definition = parser.parse_dict(workflow_dict([
        tool_step("left", tool="meet"),
        tool_step("right", tool="meet"),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.output == {"left": 2, "right": 2}


@pytest.mark.asyncio
async def test_max_concurrent_steps_splits_batches(executor, parser):
    definition = parser.parse_dict(workflow_dict(
        [tool_step("a"), tool_step("b"), tool_step("c")],
        max_concurrent_steps=2,
    ))

    execution = await executor.run(definition)

    assert execution.batches == [["a", "b"], ["c"]]


class BrokenSink(ExecutionRecordSink):
    async def on_start(self, execution_id, definition, input_data):
        raise RuntimeError("database offline")

    async def on_step_complete(self, execution_id, step_id, result):
        raise RuntimeError("database offline")

    async def on_finish(self, execution_id, status, output):
        raise RuntimeError("database offline")


@pytest.mark.asyncio
async def test_failing_sink_does_not_affect_execution(registry, model, catalog, settings, parser):
    executor = WorkflowExecutor(registry, model, catalog=catalog, sink=BrokenSink(), settings=settings)
    definition = parser.parse_dict(workflow_dict([tool_step("a"), tool_step("b", ["a"])]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_cyclic_workflow_is_rejected_without_a_record(executor, parser, sink):
    definition = parser.parse_dict(workflow_dict([
        tool_step("a", ["b"]),
        tool_step("b", ["a"]),
    ]))

    with pytest.raises(CycleDetected):
        await executor.submit(definition)

    assert executor.list_executions() == []
    assert sink.events == []


@pytest.mark.asyncio
async def test_unknown_execution(executor):
    with pytest.raises(ExecutionNotFound):
        executor.get_status("nope")
    with pytest.raises(ExecutionNotFound):
        await executor.cancel("nope")


@pytest.mark.asyncio
async def test_metrics_and_listing(executor, parser):
    definition = parser.parse_dict(workflow_dict([tool_step("a")]))

    first = await executor.run(definition)
    await executor.run(definition)

    assert executor.metrics.get_counter(
        "workflow_executions_total", {"workflow_id": "wf", "status": "succeeded"}
    ) == 2
    assert len(executor.plan_cache) == 1
    executor.plan_cache.clear()
    assert len(executor.plan_cache) == 0
    assert {"execution_id": first.id, "workflow_id": "wf", "status": "succeeded"} in executor.list_executions()


def test_executor_needs_a_model(registry):
    with pytest.raises(ValueError):
        WorkflowExecutor(registry)


ADD_INPUTS = {"operation": "add", "a": "${input.a}", "b": "${input.b}"}
NUMBER_PARAMETERS = [
    {"name": "a", "type": "number", "required": True},
    {"name": "b", "type": "number", "default": 10, "validation": {"max": 100}},
]


@pytest.mark.asyncio
async def test_parameter_defaults_fill_the_input(executor, parser):
    definition = parser.parse_dict(workflow_dict(
        [tool_step("sum", tool="calculator", arguments=ADD_INPUTS)],
        parameters=NUMBER_PARAMETERS,
    ))

    execution = await executor.run(definition, {"a": 1})

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.input == {"a": 1, "b": 10}
    assert execution.output["sum"]["result"] == 11


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "root: 'a' is a required property"),
        ({"a": "one"}, "a: 'one' is not of type 'number'"),
        ({"a": 1, "b": 500}, "b: 500 is greater than the maximum of 100.0"),
    ],
)
async def test_invalid_input_is_rejected_without_a_record(executor, parser, sink, payload, message):
    definition = parser.parse_dict(workflow_dict(
        [tool_step("sum", tool="calculator", arguments=ADD_INPUTS)],
        parameters=NUMBER_PARAMETERS,
    ))

    with pytest.raises(InvalidWorkflowInput) as excinfo:
        await executor.submit(definition, payload)

    assert excinfo.value.errors == [message]
    assert executor.list_executions() == []
    assert sink.events == []


@pytest.mark.asyncio
async def test_retried_step_is_recorded_once(executor, parser, registry, sink):
    calls = []

    def flaky(arguments):
        calls.append(arguments)
        if len(calls) < 3:
            raise ConnectionError("refused")
        return "ok"

    registry.register(ToolDefinition(name="flaky"), flaky)
    definition = parser.parse_dict(workflow_dict([
        tool_step("fetch", tool="flaky", arguments={}, retry={"max_attempts": 3, "interval": 0}),
    ]))

    execution = await executor.run(definition)

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert execution.step_results["fetch"].metadata["attempts"] == 3
    assert sink.records[execution.id].step_order == ["fetch"]


@pytest.mark.asyncio
async def test_finished_executions_are_evicted(registry, model, catalog, parser):
    settings = EngineSettings(step_timeout=5.0, max_retained_executions=2)
    executor = WorkflowExecutor(registry, model, catalog=catalog, settings=settings)
    definition = parser.parse_dict(workflow_dict([tool_step("a")]))

    first = await executor.run(definition)
    second = await executor.run(definition)
    third = await executor.run(definition)

    assert [item["execution_id"] for item in executor.list_executions()] == [second.id, third.id]
    with pytest.raises(ExecutionNotFound):
        executor.get_status(first.id)


@pytest.mark.asyncio
async def test_running_executions_are_never_evicted(registry, model, catalog, parser):
    add_sleepy(registry)
    settings = EngineSettings(step_timeout=5.0, max_retained_executions=1)
    executor = WorkflowExecutor(registry, model, catalog=catalog, settings=settings)
    slow = parser.parse_dict(workflow_dict([tool_step("slow", tool="sleepy", arguments={})]))

    running = await executor.submit(slow)
    finished = await executor.run(parser.parse_dict(workflow_dict([tool_step("a")])))

    assert executor.get_status(running)["status"] == "running"
    assert executor.get_status(finished.id)["status"] == "succeeded"
    await executor.cancel(running)
