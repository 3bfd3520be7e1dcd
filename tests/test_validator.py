import random

import pytest

from agentflow.core import DagValidator, WorkflowParser, validate
from agentflow.errors import (
    CycleDetected,
    DuplicateStepId,
    StepLimitExceeded,
    UndeclaredInput,
    UnknownDependency,
)

from helpers import tool_step, workflow_dict


def parse(steps):
    return WorkflowParser().parse_dict(workflow_dict(steps))


def diamond_steps():
    return [
        tool_step("A"),
        tool_step("B", ["A"]),
        tool_step("C", ["A"]),
        tool_step("D", ["B", "C"]),
    ]


def test_diamond_plan():
    plan = validate(parse(diamond_steps()))

    assert plan.entry_points == frozenset({"A"})
    assert plan.levels == (frozenset({"A"}), frozenset({"B", "C"}), frozenset({"D"}))
    assert plan.dependents_of("A") == frozenset({"B", "C"})
    assert plan.dependents_of("D") == frozenset()
    assert plan.dependencies_of("D") == frozenset({"B", "C"})


def test_validation_is_idempotent_and_order_independent():
    steps = diamond_steps()
    first = validate(parse(steps))
    shuffled = list(steps)
    random.Random(7).shuffle(shuffled)

    assert validate(parse(steps)) == first
    assert validate(parse(shuffled)) == first


def test_cycle_detected_reports_path():
    steps = [
        tool_step("a", ["c"]),
        tool_step("b", ["a"]),
        tool_step("c", ["b"]),
    ]
    with pytest.raises(CycleDetected) as exc_info:
        validate(parse(steps))

    cycle = exc_info.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    assert exc_info.value.to_dict()["kind"] == "CycleDetected"


def test_self_dependency_is_a_cycle():
    with pytest.raises(CycleDetected):
        validate(parse([tool_step("a", ["a"])]))


def test_unknown_dependency():
    with pytest.raises(UnknownDependency) as exc_info:
        validate(parse([tool_step("a"), tool_step("b", ["missing"])]))
    assert exc_info.value.details == {"step_id": "b", "dependency": "missing"}


def test_duplicate_step_id():
    with pytest.raises(DuplicateStepId):
        validate(parse([tool_step("a"), tool_step("a")]))


def test_input_must_reference_declared_dependency():
    steps = [
        tool_step("a"),
        tool_step("b", inputs={"value": "${a.result}"}),
    ]
    with pytest.raises(UndeclaredInput):
        validate(parse(steps))


def test_input_referencing_unknown_step():
    steps = [tool_step("a", arguments={"value": "${ghost.output}"})]
    with pytest.raises(UnknownDependency):
        validate(parse(steps))


def test_workflow_input_references_are_always_allowed():
    steps = [tool_step("a", arguments={"q": "${input.question}"})]
    plan = validate(parse(steps))
    assert plan.entry_points == frozenset({"a"})


def test_step_limit():
    steps = [tool_step(f"s{i}") for i in range(4)]
    with pytest.raises(StepLimitExceeded):
        DagValidator(max_steps=3).validate(parse(steps))


def test_validation_does_not_modify_definition():
    definition = parse(diamond_steps())
    before = [(s.id, list(s.depends_on)) for s in definition.steps]
    validate(definition)
    assert [(s.id, list(s.depends_on)) for s in definition.steps] == before
