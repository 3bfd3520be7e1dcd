import pytest

from agentflow.core import WorkflowExecutor
from agentflow.models import ExecutionStatus
from agentflow.sinks import CompositeRecordSink, InMemoryRecordSink, SQLiteRecordSink

from helpers import tool_step, workflow_dict


@pytest.fixture
def sqlite_sink(tmp_path):
    sink = SQLiteRecordSink(str(tmp_path / "records.db"))
    yield sink
    sink.close()


@pytest.mark.asyncio
async def test_sqlite_sink_records_execution(registry, model, catalog, settings, parser, sqlite_sink):
    executor = WorkflowExecutor(registry, model, catalog=catalog, sink=sqlite_sink, settings=settings)
    definition = parser.parse_dict(workflow_dict([
        tool_step("a"),
        tool_step("b", ["a"], tool="fail"),
    ]))

    execution = await executor.run(definition, {"topic": "graphs"})

    row = sqlite_sink.fetch_execution(execution.id)
    assert row["workflow_id"] == "wf"
    assert row["status"] == "failed"
    assert row["input"] == {"topic": "graphs"}
    assert row["output"]["completed_steps"] == {"a": {"step": "a"}}
    assert row["finished_at"] >= row["started_at"]

    steps = sqlite_sink.fetch_step_results(execution.id)
    assert [(s["step_id"], s["status"]) for s in steps] == [("a", "succeeded"), ("b", "failed")]
    assert steps[1]["error"]["kind"] == "ToolInvocationError"


def test_sqlite_sink_unknown_execution(sqlite_sink):
    assert sqlite_sink.fetch_execution("missing") is None
    assert sqlite_sink.fetch_step_results("missing") == []


class ExplodingSink(InMemoryRecordSink):
    async def on_step_complete(self, execution_id, step_id, result):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_composite_sink_isolates_failures(registry, model, catalog, settings, parser):
    healthy = InMemoryRecordSink()
    composite = CompositeRecordSink([ExplodingSink(), healthy])
    executor = WorkflowExecutor(registry, model, catalog=catalog, sink=composite, settings=settings)

    execution = await executor.run(parser.parse_dict(workflow_dict([tool_step("a")])))

    assert execution.status == ExecutionStatus.SUCCEEDED
    assert healthy.events == [
        ("start", execution.id),
        ("step", execution.id, "a"),
        ("finish", execution.id, "succeeded"),
    ]
    assert healthy.records[execution.id].step_results["a"].output == {"step": "a"}
