"""Tool registry and built-in tools"""

from .registry import ToolDefinition, ToolRegistry, DEFAULT_TOOL_TIMEOUT
from .validators import SchemaValidator
from .builtin import BuiltinTools, FileToolConfig, HttpToolConfig, register_builtin_tools

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "DEFAULT_TOOL_TIMEOUT",
    "SchemaValidator",
    "BuiltinTools",
    "FileToolConfig",
    "HttpToolConfig",
    "register_builtin_tools",
]
