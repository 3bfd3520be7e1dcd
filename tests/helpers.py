"""Builders for workflow documents used across the tests."""


def tool_step(step_id, depends_on=(), tool="echo", arguments=None, **extra):
    step = {
        "id": step_id,
        "kind": "tool_call",
        "depends_on": list(depends_on),
        "config": {"tool_name": tool, "arguments": arguments or {"step": step_id}},
    }
    step.update(extra)
    return step


def agent_step(step_id, agent, depends_on=(), **extra):
    step = {
        "id": step_id,
        "kind": "agent",
        "depends_on": list(depends_on),
        "config": {"agent": agent},
    }
    step.update(extra)
    return step


def workflow_dict(steps, **extra):
    payload = {"id": "wf", "name": "Test Workflow", "steps": steps}
    payload.update(extra)
    return payload
