"""Agent reasoning: prompts, model clients and the tool-calling loop"""

from .catalog import AgentCatalog
from .llm import LanguageModel, OpenAIChatModel, ScriptedLanguageModel
from .loop import ReasoningLoop
from .parsing import format_tool_call, parse_tool_call
from .prompts import Prompt, PromptBuilder

__all__ = [
    "AgentCatalog",
    "LanguageModel",
    "OpenAIChatModel",
    "ScriptedLanguageModel",
    "ReasoningLoop",
    "format_tool_call",
    "parse_tool_call",
    "Prompt",
    "PromptBuilder",
]
