"""Execution record sinks: observers notified of workflow lifecycle events.

Notifications are fire-and-forget from the engine's point of view. The
executor logs and drops any exception a sink raises.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .models.execution import ExecutionStatus, StepResult
from .models.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


class ExecutionRecordSink(ABC):
    @abstractmethod
    async def on_start(
        self, execution_id: str, definition: WorkflowDefinition, input_data: Dict[str, Any]
    ) -> None:
        ...

    @abstractmethod
    async def on_step_complete(self, execution_id: str, step_id: str, result: StepResult) -> None:
        ...

    @abstractmethod
    async def on_finish(
        self, execution_id: str, status: ExecutionStatus, output: Optional[Dict[str, Any]]
    ) -> None:
        ...


class LoggingRecordSink(ExecutionRecordSink):
    """Writes every notification to the ``agentflow.records`` logger."""

    def __init__(self, logger_name: str = "agentflow.records") -> None:
        self.logger = logging.getLogger(logger_name)

    async def on_start(self, execution_id, definition, input_data) -> None:
        self.logger.info(
            "Execution %s started for workflow %s (%d steps)",
            execution_id, definition.id, len(definition.steps),
        )

    async def on_step_complete(self, execution_id, step_id, result) -> None:
        self.logger.info(
            "Execution %s step %s %s", execution_id, step_id, result.status.value
        )

    async def on_finish(self, execution_id, status, output) -> None:
        self.logger.info("Execution %s finished: %s", execution_id, status.value)


@dataclass
class ExecutionRecord:
    execution_id: str
    workflow_id: str
    input: Dict[str, Any]
    status: Optional[ExecutionStatus] = None
    output: Optional[Dict[str, Any]] = None
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    step_order: List[str] = field(default_factory=list)


class InMemoryRecordSink(ExecutionRecordSink):
    """Keeps records in memory; handy for tests and the API."""

    def __init__(self) -> None:
        self.records: Dict[str, ExecutionRecord] = {}
        self.events: List[tuple] = []

    async def on_start(self, execution_id, definition, input_data) -> None:
        self.records[execution_id] = ExecutionRecord(
            execution_id=execution_id, workflow_id=definition.id, input=dict(input_data)
        )
        self.events.append(("start", execution_id))

    async def on_step_complete(self, execution_id, step_id, result) -> None:
        record = self.records[execution_id]
        record.step_results[step_id] = result
        record.step_order.append(step_id)
        self.events.append(("step", execution_id, step_id))

    async def on_finish(self, execution_id, status, output) -> None:
        record = self.records[execution_id]
        record.status = status
        record.output = output
        self.events.append(("finish", execution_id, status.value))


SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS workflow_executions (
        execution_id TEXT PRIMARY KEY,
        workflow_id TEXT NOT NULL,
        workflow_version TEXT NOT NULL,
        definition TEXT NOT NULL,
        input TEXT NOT NULL,
        status TEXT NOT NULL,
        output TEXT,
        started_at REAL,
        finished_at REAL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS step_executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        execution_id TEXT NOT NULL,
        step_id TEXT NOT NULL,
        status TEXT NOT NULL,
        output TEXT,
        error TEXT,
        duration REAL,
        created_at REAL,
        UNIQUE (execution_id, step_id)
    );
    """,
]


class SQLiteRecordSink(ExecutionRecordSink):
    """Audit trail of executions and step results in SQLite."""

    def __init__(self, database: Optional[str] = None, *, uri: bool = False) -> None:
        if database is None:
            database = "file:agentflow?mode=memory&cache=shared"
            uri = True
        self.database = database
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(database, uri=uri, check_same_thread=False)
        self._apply_schema()

    def _apply_schema(self) -> None:
        with self._connection() as conn:
            for ddl in SCHEMA_SQL:
                conn.executescript(ddl)
            conn.commit()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    async def on_start(self, execution_id, definition, input_data) -> None:
        from .core.parser import WorkflowParser

        payload = WorkflowParser().serialize(definition, fmt="json")
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO workflow_executions"
                " (execution_id, workflow_id, workflow_version, definition, input, status, started_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    execution_id,
                    definition.id,
                    definition.version,
                    payload,
                    _dumps(input_data),
                    ExecutionStatus.RUNNING.value,
                    time.time(),
                ),
            )
            conn.commit()

    async def on_step_complete(self, execution_id, step_id, result) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO step_executions"
                " (execution_id, step_id, status, output, error, duration, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    execution_id,
                    step_id,
                    result.status.value,
                    _dumps(result.output),
                    _dumps(result.error) if result.error else None,
                    result.duration,
                    time.time(),
                ),
            )
            conn.commit()

    async def on_finish(self, execution_id, status, output) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE workflow_executions SET status = ?, output = ?, finished_at = ?"
                " WHERE execution_id = ?",
                (status.value, _dumps(output), time.time(), execution_id),
            )
            conn.commit()

    def fetch_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT workflow_id, status, input, output, started_at, finished_at"
                " FROM workflow_executions WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        if row is None:
            return None
        workflow_id, status, input_json, output_json, started_at, finished_at = row
        return {
            "execution_id": execution_id,
            "workflow_id": workflow_id,
            "status": status,
            "input": json.loads(input_json),
            "output": json.loads(output_json) if output_json else None,
            "started_at": started_at,
            "finished_at": finished_at,
        }

    def fetch_step_results(self, execution_id: str) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT step_id, status, output, error, duration FROM step_executions"
                " WHERE execution_id = ? ORDER BY id",
                (execution_id,),
            ).fetchall()
        return [
            {
                "step_id": step_id,
                "status": status,
                "output": json.loads(output) if output else None,
                "error": json.loads(error) if error else None,
                "duration": duration,
            }
            for step_id, status, output, error, duration in rows
        ]


class CompositeRecordSink(ExecutionRecordSink):
    """Fans notifications out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Sequence[ExecutionRecordSink]) -> None:
        self.sinks = list(sinks)

    async def on_start(self, execution_id, definition, input_data) -> None:
        for sink in self.sinks:
            await self._call(sink, "on_start", execution_id, definition, input_data)

    async def on_step_complete(self, execution_id, step_id, result) -> None:
        for sink in self.sinks:
            await self._call(sink, "on_step_complete", execution_id, step_id, result)

    async def on_finish(self, execution_id, status, output) -> None:
        for sink in self.sinks:
            await self._call(sink, "on_finish", execution_id, status, output)

    async def _call(self, sink: ExecutionRecordSink, method: str, *args: Any) -> None:
        try:
            await getattr(sink, method)(*args)
        except Exception:
            logger.exception("Record sink %s.%s failed", type(sink).__name__, method)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)
