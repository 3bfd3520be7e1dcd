"""Workflow parser converts declarative definitions into runtime models."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..errors import WorkflowDefinitionError
from ..models.agent import AgentDefinition
from ..models.workflow import (
    AgentStepConfig,
    BackoffStrategy,
    FailurePolicy,
    ParameterType,
    RetryPolicy,
    Step,
    StepKind,
    ToolCallStepConfig,
    UnsupportedStepConfig,
    WorkflowDefinition,
    WorkflowParameter,
)


class WorkflowParser:
    """Parser that understands YAML/JSON workflow definitions."""

    def __init__(self):
        self.parsers = {
            "yaml": self._parse_yaml,
            "yml": self._parse_yaml,
            "json": self._parse_json,
        }

    def parse(self, data: str, fmt: str = "yaml") -> WorkflowDefinition:
        loader = self.parsers.get(fmt)
        if loader is None:
            raise WorkflowDefinitionError(f"Unsupported workflow format: {fmt}")
        return self.parse_dict(loader(data))

    def parse_file(self, file_path: Union[str, Path]) -> WorkflowDefinition:
        path = Path(file_path)
        suffix = path.suffix.lower().lstrip(".")
        if suffix not in self.parsers:
            raise WorkflowDefinitionError(f"Unsupported file format: {suffix}")
        return self.parse(path.read_text(encoding="utf-8"), fmt=suffix)

    def parse_dict(self, payload: Dict[str, Any]) -> WorkflowDefinition:
        if not isinstance(payload, dict):
            raise WorkflowDefinitionError("Workflow definition must be a mapping")
        if "workflow" in payload:
            payload = payload["workflow"]
            if not isinstance(payload, dict):
                raise WorkflowDefinitionError("'workflow' must be a mapping")

        if not payload.get("id"):
            raise WorkflowDefinitionError("Workflow must include an 'id'")
        steps_data = payload.get("steps", payload.get("nodes"))
        if not isinstance(steps_data, list):
            raise WorkflowDefinitionError("Workflow must include a list of 'steps'")

        policy = payload.get("failure_policy")
        try:
            failure_policy = FailurePolicy(policy) if policy else None
        except ValueError:
            raise WorkflowDefinitionError(f"Unknown failure_policy: {policy}")

        max_concurrent = _optional_int(payload.get("max_concurrent_steps"), "max_concurrent_steps")
        if max_concurrent is not None and max_concurrent < 1:
            raise WorkflowDefinitionError("max_concurrent_steps must be positive")

        return WorkflowDefinition(
            id=str(payload["id"]),
            name=payload.get("name") or str(payload["id"]),
            version=str(payload.get("version", "1.0.0")),
            description=payload.get("description"),
            steps=[self._parse_step(spec) for spec in steps_data],
            timeout=_optional_float(payload.get("timeout"), "timeout"),
            failure_policy=failure_policy,
            max_concurrent_steps=max_concurrent,
            parameters=self._parse_parameters(payload.get("parameters")),
            metadata=_mapping(payload.get("metadata"), "metadata"),
        )

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowDefinitionError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowDefinitionError(f"Failed to parse JSON: {e}")

    def _parse_step(self, spec: Dict[str, Any]) -> Step:
        if not isinstance(spec, dict):
            raise WorkflowDefinitionError("Each step must be a mapping")
        kind = spec.get("kind", spec.get("type"))
        if "id" not in spec or not kind:
            raise WorkflowDefinitionError("Step must include 'id' and 'kind'")
        step_id = str(spec["id"])

        depends_on = spec.get("depends_on", spec.get("dependencies", []))
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        if not isinstance(depends_on, list):
            raise WorkflowDefinitionError(f"Step '{step_id}': depends_on must be a list")

        return Step(
            id=step_id,
            kind=str(kind),
            config=self._parse_config(step_id, str(kind), spec),
            depends_on=[str(dep) for dep in depends_on],
            inputs=_mapping(spec.get("inputs"), f"Step '{step_id}': inputs"),
            optional=bool(spec.get("optional", False)),
            timeout=_optional_float(spec.get("timeout"), f"Step '{step_id}': timeout"),
            retry=self._parse_retry(step_id, spec.get("retry", spec.get("retry_config"))),
            name=spec.get("name"),
            description=spec.get("description"),
        )

    def _parse_config(self, step_id: str, kind: str, spec: Dict[str, Any]):
        config = _mapping(spec.get("config"), f"Step '{step_id}': config")
        resolved = StepKind.resolve(kind)

        if resolved == StepKind.AGENT:
            # shorthand: ``agent: <id>`` or an inline agent mapping
            agent_ref = config.get("agent", spec.get("agent"))
            agent_id = config.get("agent_id")
            inline = None
            if isinstance(agent_ref, dict):
                inline = self._parse_agent(step_id, agent_ref)
            elif isinstance(agent_ref, str):
                agent_id = agent_id or agent_ref
            if not agent_id and inline is None:
                raise WorkflowDefinitionError(
                    f"Agent step '{step_id}' must specify agent_id or an inline agent"
                )
            return AgentStepConfig(
                agent_id=agent_id,
                agent=inline,
                task=config.get("task"),
                parameters=_mapping(config.get("parameters"), f"Step '{step_id}': parameters"),
            )

        if resolved == StepKind.TOOL_CALL:
            tool_name = config.get("tool_name", config.get("tool", spec.get("tool")))
            if not tool_name:
                raise WorkflowDefinitionError(f"Tool step '{step_id}' must specify tool_name")
            arguments = _mapping(
                config.get("arguments", config.get("parameters")), f"Step '{step_id}': arguments"
            )
            return ToolCallStepConfig(tool_name=str(tool_name), arguments=arguments)

        return UnsupportedStepConfig(kind=kind, raw=config)

    def _parse_agent(self, step_id: str, data: Dict[str, Any]) -> AgentDefinition:
        data = dict(data)
        data.setdefault("id", f"{step_id}-agent")
        try:
            return AgentDefinition.from_dict(data)
        except ValueError as e:
            raise WorkflowDefinitionError(f"Step '{step_id}': invalid agent definition: {e}")

    def _parse_retry(self, step_id: str, data: Any) -> Optional[RetryPolicy]:
        if data is None:
            return None
        what = f"Step '{step_id}': retry"
        data = _mapping(data, what)
        retry_on = data.get("retry_on", ["any_error"])
        if isinstance(retry_on, str):
            retry_on = [retry_on]
        if not isinstance(retry_on, list) or not all(isinstance(c, str) for c in retry_on):
            raise WorkflowDefinitionError(f"{what}.retry_on must be a list of error names")
        max_attempts = _optional_int(data.get("max_attempts"), f"{what}.max_attempts")
        try:
            return RetryPolicy(
                max_attempts=3 if max_attempts is None else max_attempts,
                interval=_float_or(data.get("interval", data.get("interval_seconds")), 1.0, f"{what}.interval"),
                backoff=BackoffStrategy(data.get("backoff", data.get("backoff_strategy", "fixed"))),
                backoff_factor=_float_or(data.get("backoff_factor"), 2.0, f"{what}.backoff_factor"),
                max_delay=_float_or(data.get("max_delay"), 60.0, f"{what}.max_delay"),
                jitter=bool(data.get("jitter", False)),
                retry_on=list(retry_on),
            )
        except ValueError as e:
            raise WorkflowDefinitionError(f"{what}: {e}")

    def _parse_parameters(self, data: Any) -> List[WorkflowParameter]:
        if data is None:
            return []
        # either a list of mappings with a name or a mapping keyed by name
        if isinstance(data, dict):
            data = [_named(name, spec) for name, spec in data.items()]
        if not isinstance(data, list):
            raise WorkflowDefinitionError("Workflow parameters must be a list or a mapping")

        parameters: List[WorkflowParameter] = []
        seen = set()
        for spec in data:
            if not isinstance(spec, dict) or not spec.get("name"):
                raise WorkflowDefinitionError("Each workflow parameter needs a 'name'")
            name = str(spec["name"])
            if name in seen:
                raise WorkflowDefinitionError(f"Duplicate workflow parameter: {name}")
            seen.add(name)
            parameters.append(self._parse_parameter(name, spec))
        return parameters

    def _parse_parameter(self, name: str, spec: Dict[str, Any]) -> WorkflowParameter:
        what = f"Parameter '{name}'"
        validation = _mapping(spec.get("validation"), f"{what}: validation")
        rules = dict(validation, **{k: v for k, v in spec.items() if k in _VALIDATION_KEYS})
        try:
            param_type = ParameterType(spec.get("type", spec.get("parameter_type", "string")))
        except ValueError:
            raise WorkflowDefinitionError(f"{what}: unknown type {spec.get('type')!r}")

        pattern = rules.get("pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except (re.error, TypeError) as e:
                raise WorkflowDefinitionError(f"{what}: invalid pattern: {e}")

        enum_values = rules.get("enum", rules.get("enum_values"))
        if enum_values is not None and not isinstance(enum_values, list):
            raise WorkflowDefinitionError(f"{what}: enum must be a list")

        return WorkflowParameter(
            name=name,
            type=param_type,
            description=str(spec.get("description", "")),
            required=bool(spec.get("required", False)),
            default=spec.get("default", spec.get("default_value")),
            minimum=_optional_float(rules.get("min", rules.get("minimum")), f"{what}: min"),
            maximum=_optional_float(rules.get("max", rules.get("maximum")), f"{what}: max"),
            pattern=pattern,
            enum_values=enum_values,
        )

    def serialize(self, workflow: WorkflowDefinition, fmt: str = "json") -> str:
        data = {"workflow": self.to_dict(workflow)}
        if fmt == "json":
            return json.dumps(data, ensure_ascii=False, indent=2)
        if fmt == "yaml":
            return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
        raise WorkflowDefinitionError(f"Unsupported serialisation format: {fmt}")

    def to_dict(self, workflow: WorkflowDefinition) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": workflow.id,
            "name": workflow.name,
            "version": workflow.version,
            "steps": [self._step_to_dict(step) for step in workflow.steps],
            "metadata": workflow.metadata,
        }
        if workflow.description:
            payload["description"] = workflow.description
        if workflow.timeout is not None:
            payload["timeout"] = workflow.timeout
        if workflow.failure_policy is not None:
            payload["failure_policy"] = workflow.failure_policy.value
        if workflow.max_concurrent_steps is not None:
            payload["max_concurrent_steps"] = workflow.max_concurrent_steps
        if workflow.parameters:
            payload["parameters"] = [self._parameter_to_dict(p) for p in workflow.parameters]
        return payload

    def _step_to_dict(self, step: Step) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": step.id,
            "kind": step.kind,
            "config": self._config_to_dict(step),
            "depends_on": list(step.depends_on),
        }
        if step.inputs:
            payload["inputs"] = step.inputs
        if step.optional:
            payload["optional"] = True
        if step.timeout is not None:
            payload["timeout"] = step.timeout
        if step.retry is not None:
            payload["retry"] = {
                "max_attempts": step.retry.max_attempts,
                "interval": step.retry.interval,
                "backoff": step.retry.backoff.value,
                "backoff_factor": step.retry.backoff_factor,
                "max_delay": step.retry.max_delay,
                "jitter": step.retry.jitter,
                "retry_on": list(step.retry.retry_on),
            }
        if step.name:
            payload["name"] = step.name
        if step.description:
            payload["description"] = step.description
        return payload

    def _parameter_to_dict(self, param: WorkflowParameter) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": param.name,
            "type": param.type.value,
            "required": param.required,
        }
        if param.description:
            payload["description"] = param.description
        if param.default is not None:
            payload["default"] = param.default
        for key, value in (
            ("min", param.minimum),
            ("max", param.maximum),
            ("pattern", param.pattern),
            ("enum", param.enum_values),
        ):
            if value is not None:
                payload[key] = list(value) if key == "enum" else value
        return payload

    def _config_to_dict(self, step: Step) -> Dict[str, Any]:
        config = step.config
        if isinstance(config, ToolCallStepConfig):
            return {"tool_name": config.tool_name, "arguments": config.arguments}
        if isinstance(config, AgentStepConfig):
            payload: Dict[str, Any] = {}
            if config.agent_id:
                payload["agent_id"] = config.agent_id
            if config.agent is not None:
                payload["agent"] = config.agent.to_dict()
            if config.task:
                payload["task"] = config.task
            if config.parameters:
                payload["parameters"] = config.parameters
            return payload
        return dict(config.raw)


_VALIDATION_KEYS = ("min", "max", "minimum", "maximum", "pattern", "enum", "enum_values")


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    # a bare ``key:`` in YAML loads as None
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WorkflowDefinitionError(f"{what} must be a mapping, got {type(value).__name__}")
    return dict(value)


def _optional_float(value: Any, what: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise WorkflowDefinitionError(f"{what} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise WorkflowDefinitionError(f"{what} must be a number, got {value!r}")


def _float_or(value: Any, default: float, what: str) -> float:
    parsed = _optional_float(value, what)
    return default if parsed is None else parsed


def _optional_int(value: Any, what: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise WorkflowDefinitionError(f"{what} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WorkflowDefinitionError(f"{what} must be an integer, got {value!r}")


def _named(name: str, spec: Any) -> Any:
    # ``topic: string`` is shorthand for ``topic: {type: string}``
    if spec is None:
        return {"name": name}
    if isinstance(spec, str):
        return {"name": name, "type": spec}
    if isinstance(spec, dict):
        return dict(spec, name=name)
    return spec
