"""HTTP API for submitting workflows and querying executions."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .core.executor import WorkflowExecutor
from .core.parser import WorkflowParser
from .errors import AgentflowError, DagError, ExecutionNotFound, WorkflowDefinitionError

logger = logging.getLogger(__name__)


class WorkflowPayload(BaseModel):
    workflow: Dict[str, Any] = Field(..., description="Workflow definition document")


class ExecutionRequest(BaseModel):
    workflow: Dict[str, Any] = Field(..., description="Workflow definition document")
    input: Dict[str, Any] = Field(default_factory=dict, description="Workflow input payload")


class ExecutionCreated(BaseModel):
    execution_id: str
    status: str


class PlanResponse(BaseModel):
    workflow_id: str
    entry_points: List[str]
    levels: List[List[str]]
    dependents: Dict[str, List[str]]


def _status_code_for(error: AgentflowError) -> int:
    if isinstance(error, ExecutionNotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, DagError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, WorkflowDefinitionError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(executor: WorkflowExecutor) -> FastAPI:
    parser = WorkflowParser()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("agentflow API started with %d tools", len(executor.registry.list_tools()))
        yield
        logger.info("Shutting down agentflow API...")
        await executor.shutdown()

    app = FastAPI(title="agentflow", version="1.0.0", lifespan=lifespan)
    app.state.executor = executor

    @app.exception_handler(AgentflowError)
    async def agentflow_error_handler(request: Request, exc: AgentflowError) -> JSONResponse:
        code = _status_code_for(exc)
        if code >= 500:
            logger.error("Unhandled engine error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=code, content={"error": exc.to_dict()})

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/workflows/validate", response_model=PlanResponse)
    async def validate_workflow(payload: WorkflowPayload) -> PlanResponse:
        definition = parser.parse_dict(payload.workflow)
        plan = executor.validate(definition)
        return PlanResponse(
            workflow_id=plan.workflow_id,
            entry_points=sorted(plan.entry_points),
            levels=[sorted(level) for level in plan.levels],
            dependents={sid: sorted(plan.dependents_of(sid)) for sid in sorted(plan.step_ids)},
        )

    @app.post("/executions", response_model=ExecutionCreated, status_code=status.HTTP_202_ACCEPTED)
    async def submit_execution(request: ExecutionRequest) -> ExecutionCreated:
        definition = parser.parse_dict(request.workflow)
        execution_id = await executor.submit(definition, request.input)
        return ExecutionCreated(
            execution_id=execution_id,
            status=executor.get_status(execution_id)["status"],
        )

    @app.get("/executions")
    async def list_executions() -> List[Dict[str, Any]]:
        return executor.list_executions()

    @app.get("/executions/{execution_id}")
    async def get_execution(execution_id: str) -> Dict[str, Any]:
        return executor.get_status(execution_id)

    @app.post("/executions/{execution_id}/cancel")
    async def cancel_execution(execution_id: str) -> Dict[str, Any]:
        cancelled = await executor.cancel(execution_id)
        return {"execution_id": execution_id, "cancelled": cancelled}

    @app.get("/tools")
    async def list_tools() -> List[Dict[str, Any]]:
        return [tool.to_dict() for tool in executor.registry.list_tools()]

    @app.get("/metrics")
    async def metrics() -> Dict[str, Any]:
        return executor.metrics.snapshot()

    return app
