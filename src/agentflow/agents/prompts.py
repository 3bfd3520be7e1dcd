"""Prompt construction for the reasoning loop."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..models.agent import AgentDefinition, AgentIteration, ToolCallRequest
from ..tools.registry import ToolDefinition
from .parsing import format_tool_call

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

TOOL_INSTRUCTIONS = (
    "To use a tool, reply with exactly one directive and nothing else:\n"
    "{example}\n"
    "When you have the final answer, reply with the answer only, without a directive."
)


@dataclass
class Prompt:
    system: str
    user: str

    def render(self) -> str:
        return f"{self.system}\n\n{self.user}"


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def render_template(template: str, input_data: Dict[str, Any]) -> str:
    """Substitute ``{input}`` and ``{<top-level key>}``; unknown names are left as is."""
    values = {key: _to_text(value) for key, value in input_data.items()}
    values["input"] = _to_text(input_data)

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        return values.get(name, match.group(0))

    return _PLACEHOLDER.sub(replace, template)


class PromptBuilder:
    """Builds the prompt for each model call of an agent execution."""

    def build(
        self,
        definition: AgentDefinition,
        input_data: Dict[str, Any],
        tools: Sequence[ToolDefinition] = (),
        history: Sequence[AgentIteration] = (),
        task: Optional[str] = None,
    ) -> Prompt:
        return Prompt(
            system=self._system(definition, tools),
            user=self._user(definition, input_data, history, task),
        )

    def _system(self, definition: AgentDefinition, tools: Sequence[ToolDefinition]) -> str:
        parts = [definition.system_prompt]
        if tools:
            catalogue = "\n".join(
                f"- {tool.name}: {tool.description}\n  parameters: {json.dumps(tool.parameters_schema, sort_keys=True)}"
                for tool in tools
            )
            parts.append(f"Available tools:\n{catalogue}")
            example = format_tool_call(ToolCallRequest(tool=tools[0].name, arguments={}))
            parts.append(TOOL_INSTRUCTIONS.format(example=example))
        return "\n\n".join(parts)

    def _user(
        self,
        definition: AgentDefinition,
        input_data: Dict[str, Any],
        history: Sequence[AgentIteration],
        task: Optional[str],
    ) -> str:
        template = task or definition.prompt_template
        if template:
            parts = [render_template(template, input_data)]
        else:
            parts = [f"Input:\n{_to_text(input_data)}"]

        observations: List[str] = []
        for iteration in history:
            if iteration.tool_call is None or iteration.tool_result is None:
                continue
            result = iteration.tool_result
            observations.append(
                f"Assistant: {iteration.response.strip()}\n"
                f"Tool {result.tool} returned: {_to_text(result.output)}"
            )
        if observations:
            parts.append("Previous steps:\n" + "\n\n".join(observations))
        return "\n\n".join(parts)
