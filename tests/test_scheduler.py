import pytest

from agentflow.core import BatchFrontier, ExecutionPlanCache, WorkflowParser, validate
from agentflow.core.scheduler import plan_cache_key
from agentflow.errors import DeadlockDetected
from agentflow.models import ExecutionPlan

from helpers import tool_step, workflow_dict


def diamond_plan():
    definition = WorkflowParser().parse_dict(workflow_dict([
        tool_step("A"),
        tool_step("B", ["A"]),
        tool_step("C", ["A"]),
        tool_step("D", ["B", "C"]),
    ]))
    return validate(definition)


def test_frontier_yields_diamond_batches():
    frontier = BatchFrontier(diamond_plan())
    batches = []
    while frontier.has_pending():
        batch = frontier.next_batch()
        batches.append(batch)
        for step_id in batch:
            frontier.mark_completed(step_id)

    assert batches == [["A"], ["B", "C"], ["D"]]
    assert frontier.completed == {"A", "B", "C", "D"}
    assert frontier.pending == set()


def test_dispatched_steps_leave_pending():
    frontier = BatchFrontier(diamond_plan())
    assert frontier.next_batch() == ["A"]
    assert "A" not in frontier.pending
    frontier.mark_completed("A")
    with pytest.raises(ValueError):
        frontier.mark_completed("A")


def test_max_concurrent_steps_splits_a_level():
    definition = WorkflowParser().parse_dict(workflow_dict(
        [tool_step(f"s{i}") for i in range(5)]
    ))
    frontier = BatchFrontier(validate(definition), max_concurrent_steps=2)

    batches = []
    while frontier.has_pending():
        batch = frontier.next_batch()
        batches.append(batch)
        for step_id in batch:
            frontier.mark_completed(step_id)
    assert batches == [["s0", "s1"], ["s2", "s3"], ["s4"]]


def test_deadlock_when_nothing_is_ready():
    # plans built by hand can be inconsistent; the frontier must not spin
    plan = ExecutionPlan(
        workflow_id="wf",
        entry_points=frozenset(),
        dependencies={"a": frozenset({"b"}), "b": frozenset({"a"})},
        dependents={"a": frozenset({"b"}), "b": frozenset({"a"})},
        levels=(),
    )
    frontier = BatchFrontier(plan)
    with pytest.raises(DeadlockDetected) as exc_info:
        frontier.next_batch()
    assert exc_info.value.details["pending"] == ["a", "b"]


def test_uncompleted_dependency_blocks_dependents():
    frontier = BatchFrontier(diamond_plan())
    frontier.next_batch()
    # "A" failed and was never marked completed
    with pytest.raises(DeadlockDetected):
        frontier.next_batch()


def test_execution_plan_cache_eviction():
    cache = ExecutionPlanCache(capacity=2)
    cache.put("a", object())  # type: ignore[arg-type]
    cache.put("b", object())  # type: ignore[arg-type]
    cache.get("a")
    cache.put("c", object())  # type: ignore[arg-type]
    assert cache.get("b") is None
    assert cache.get("a") is not None
    assert len(cache) == 2


def test_plan_cache_key_ignores_step_order():
    parser = WorkflowParser()
    steps = [tool_step("A"), tool_step("B", ["A"])]
    key = plan_cache_key(parser.parse_dict(workflow_dict(steps)))
    assert key == plan_cache_key(parser.parse_dict(workflow_dict(list(reversed(steps)))))
    assert key != plan_cache_key(parser.parse_dict(workflow_dict([tool_step("A"), tool_step("B")])))
