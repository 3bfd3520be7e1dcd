"""Strict parsing of tool-call directives embedded in model responses.

A directive looks like::

    <tool_call>{"tool": "calculator", "arguments": {"operation": "add", "a": 1, "b": 2}}</tool_call>

Anything that does not match exactly is not a tool call.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Optional

from ..models.agent import ToolCallRequest

logger = logging.getLogger(__name__)

TOOL_CALL_OPEN = "<tool_call>"
TOOL_CALL_CLOSE = "</tool_call>"

_DIRECTIVE = re.compile(
    re.escape(TOOL_CALL_OPEN) + r"(.*?)" + re.escape(TOOL_CALL_CLOSE),
    re.DOTALL,
)


def parse_tool_call(text: Optional[str]) -> Optional[ToolCallRequest]:
    """Return the first well-formed directive in ``text`` or ``None``."""
    if not text:
        return None
    match = _DIRECTIVE.search(text)
    if match is None:
        return None

    try:
        payload = json.loads(match.group(1).strip())
    except json.JSONDecodeError as e:
        logger.debug("Ignoring malformed tool call directive: %s", e)
        return None

    if not isinstance(payload, dict):
        return None
    tool = payload.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None
    arguments = payload.get("arguments", {})
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        return None
    return ToolCallRequest(tool=tool.strip(), arguments=arguments)


def format_tool_call(request: ToolCallRequest) -> str:
    """Render a request in directive form."""
    body = json.dumps({"tool": request.tool, "arguments": request.arguments}, ensure_ascii=False)
    return f"{TOOL_CALL_OPEN}{body}{TOOL_CALL_CLOSE}"
