"""
API endpoint tests
"""
import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from agentflow.api import create_app
from agentflow.tools import ToolDefinition

from helpers import tool_step, workflow_dict


def wait_for_terminal(client, execution_id, attempts=100):
    for _ in range(attempts):
        body = client.get(f"/executions/{execution_id}").json()
        if body["status"] in ("succeeded", "failed"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"execution {execution_id} did not finish")


class TestAgentflowAPI:
    """HTTP surface of the executor"""

    @pytest.fixture
    def client(self, executor, registry):
        async def sleepy(arguments):
            await asyncio.sleep(30)

        registry.register(ToolDefinition(name="sleepy"), sleepy)
        with TestClient(create_app(executor)) as client:
            yield client

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_validate_returns_plan(self, client):
        workflow = workflow_dict([
            tool_step("A"),
            tool_step("B", ["A"]),
            tool_step("C", ["A"]),
            tool_step("D", ["B", "C"]),
        ])

        response = client.post("/workflows/validate", json={"workflow": workflow})

        assert response.status_code == 200
        data = response.json()
        assert data["entry_points"] == ["A"]
        assert data["levels"] == [["A"], ["B", "C"], ["D"]]
        assert data["dependents"]["A"] == ["B", "C"]

    def test_validate_rejects_cycle(self, client):
        workflow = workflow_dict([tool_step("a", ["b"]), tool_step("b", ["a"])])

        response = client.post("/workflows/validate", json={"workflow": workflow})

        assert response.status_code == 422
        assert response.json()["error"]["kind"] == "CycleDetected"

    @pytest.mark.parametrize("path", ["/executions", "/workflows/validate"])
    @pytest.mark.parametrize(
        "workflow",
        [
            {"id": "wf"},
            {"id": "wf", "steps": [{"id": "a", "kind": "tool_call", "config": None}]},
            {"id": "wf", "steps": [{"id": "a", "kind": "tool", "tool": "echo", "config": "echo"}]},
            {"id": "wf", "steps": [{"id": "a", "kind": "tool", "tool": "echo", "timeout": "soon"}]},
            {"id": "wf", "max_concurrent_steps": "many", "steps": []},
            {"id": "wf", "steps": [{"id": "a", "kind": "agent", "config": {"agent": {"tools": "echo"}}}]},
        ],
    )
    def test_malformed_definition(self, client, path, workflow):
        response = client.post(path, json={"workflow": workflow})

        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "InvalidDefinition"

    def test_invalid_input(self, client):
        workflow = workflow_dict(
            [tool_step("a")],
            parameters=[{"name": "topic", "type": "string", "required": True}],
        )

        response = client.post("/executions", json={"workflow": workflow, "input": {"topic": 3}})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["kind"] == "InvalidInput"
        assert error["details"]["validation_errors"] == ["topic: 3 is not of type 'string'"]
        assert client.get("/executions").json() == []

    def test_submit_and_poll(self, client):
        workflow = workflow_dict([
            tool_step("sum", tool="calculator", arguments={
                "operation": "add", "a": "${input.a}", "b": "${input.b}",
            }),
        ])

        response = client.post("/executions", json={"workflow": workflow, "input": {"a": 2, "b": 3}})

        assert response.status_code == 202
        execution_id = response.json()["execution_id"]
        status = wait_for_terminal(client, execution_id)
        assert status["status"] == "succeeded"
        assert status["output"]["sum"]["result"] == 5

        listed = client.get("/executions").json()
        assert any(item["execution_id"] == execution_id for item in listed)

    def test_cancel(self, client):
        workflow = workflow_dict([tool_step("slow", tool="sleepy")])
        execution_id = client.post("/executions", json={"workflow": workflow}).json()["execution_id"]

        response = client.post(f"/executions/{execution_id}/cancel")

        assert response.json() == {"execution_id": execution_id, "cancelled": True}
        status = client.get(f"/executions/{execution_id}").json()
        assert status["status"] == "failed"
        assert status["error"]["kind"] == "WorkflowCancelled"

    def test_unknown_execution(self, client):
        response = client.get("/executions/missing")

        assert response.status_code == 404
        assert response.json()["error"]["details"] == {"execution_id": "missing"}

    def test_tools_and_metrics(self, client):
        names = [tool["name"] for tool in client.get("/tools").json()]
        assert names == ["calculator", "echo", "fail", "sleepy"]

        metrics = client.get("/metrics").json()
        assert set(metrics) == {"counters", "histograms"}
