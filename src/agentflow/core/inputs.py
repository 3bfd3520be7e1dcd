"""Input bindings: ``${input.field}`` and ``${step_id.field}`` expressions."""
from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterator, Mapping, Optional, Set

from ..errors import InvalidWorkflowInput
from ..models.execution import StepResult
from ..models.workflow import AgentStepConfig, Step, ToolCallStepConfig, WorkflowDefinition
from ..tools.validators import SchemaValidator

INPUT_ROOT = "input"

_EXPRESSION = re.compile(r"^\$\{\s*([A-Za-z0-9_\-]+)((?:\.[A-Za-z0-9_\-]+)*)\s*\}$")


def parse_expression(value: Any):
    """Return ``(root, path)`` for an expression string, otherwise ``None``."""
    if not isinstance(value, str):
        return None
    match = _EXPRESSION.match(value.strip())
    if not match:
        return None
    root = match.group(1)
    path = [part for part in match.group(2).split(".") if part]
    return root, path


def _walk(value: Any) -> Iterator[Any]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _walk(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk(item)
    else:
        yield value


def bindings_of(step: Step) -> Dict[str, Any]:
    """Everything on a step that may contain expressions."""
    config = step.config
    if isinstance(config, ToolCallStepConfig):
        return {"arguments": config.arguments, "inputs": step.inputs}
    if isinstance(config, AgentStepConfig):
        return {"parameters": config.parameters, "inputs": step.inputs}
    return {"inputs": step.inputs}


def referenced_steps(step: Step) -> Set[str]:
    refs = set()
    for leaf in _walk(bindings_of(step)):
        parsed = parse_expression(leaf)
        if parsed and parsed[0] != INPUT_ROOT:
            refs.add(parsed[0])
    return refs


def _lookup(value: Any, path) -> Any:
    for part in path:
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _resolve(value: Any, workflow_input: Mapping[str, Any], outputs: Mapping[str, Any]) -> Any:
    if isinstance(value, dict):
        return {key: _resolve(item, workflow_input, outputs) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve(item, workflow_input, outputs) for item in value]
    parsed = parse_expression(value)
    if parsed is None:
        return value
    root, path = parsed
    if root == INPUT_ROOT:
        return _lookup(dict(workflow_input), path)
    return _lookup(outputs.get(root), path)


def resolve_inputs(
    step: Step,
    workflow_input: Mapping[str, Any],
    results: Mapping[str, StepResult],
) -> Dict[str, Any]:
    """Project upstream outputs into the inputs a step consumes.

    Tool-call steps receive their (resolved) arguments. Agent steps receive
    their declared bindings, or, when none are declared, the workflow input
    plus the output of every direct dependency keyed by step id. Outputs of
    failed optional dependencies resolve to ``None``.
    """
    outputs = {
        dep: results[dep].output if dep in results and results[dep].succeeded else None
        for dep in step.depends_on
    }
    config = step.config

    if isinstance(config, ToolCallStepConfig):
        arguments = _resolve(config.arguments, workflow_input, outputs)
        arguments.update(_resolve(step.inputs, workflow_input, outputs))
        return arguments

    if step.inputs:
        resolved = _resolve(step.inputs, workflow_input, outputs)
    else:
        resolved = dict(workflow_input)
        resolved.update(outputs)

    if isinstance(config, AgentStepConfig) and config.parameters:
        for key, value in _resolve(config.parameters, workflow_input, outputs).items():
            resolved.setdefault(key, value)
    return resolved


def apply_parameters(
    definition: WorkflowDefinition,
    input_data: Optional[Mapping[str, Any]],
    validator: Optional[SchemaValidator] = None,
) -> Dict[str, Any]:
    """Fill declared parameter defaults into a run input and validate it.

    Keys that are not declared pass through untouched.
    """
    payload = dict(input_data or {})
    schema = definition.input_schema()
    if schema is None:
        return payload
    for param in definition.parameters:
        if param.name not in payload and param.default is not None:
            payload[param.name] = copy.deepcopy(param.default)
    errors = (validator or SchemaValidator()).validate(payload, schema)
    if errors:
        raise InvalidWorkflowInput(definition.id, errors)
    return payload
