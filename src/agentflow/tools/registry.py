"""Tool registry: named, schema-validated callables."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import (
    RegistryFrozen,
    ToolError,
    ToolInvocationError,
    ToolNotFound,
    ToolValidationError,
)
from .validators import SchemaValidator

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]

DEFAULT_TOOL_TIMEOUT = 30.0


@dataclass
class ToolDefinition:
    """Metadata describing a registered tool."""

    name: str
    description: str = ""
    parameters_schema: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = DEFAULT_TOOL_TIMEOUT
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters_schema": self.parameters_schema,
            "timeout": self.timeout,
            "metadata": self.metadata,
        }


class ToolRegistry:
    """In-process tool registry.

    Tools are registered during startup and the registry is then frozen;
    lookups after that are read-only and safe from concurrent steps.
    Handlers take the argument mapping and may be plain or async
    functions. Plain functions run in a worker thread so they never
    block the event loop.
    """

    def __init__(self, validator: Optional[SchemaValidator] = None) -> None:
        self.tools: Dict[str, ToolDefinition] = {}
        self.handlers: Dict[str, ToolHandler] = {}
        self.validator = validator or SchemaValidator()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        if self._frozen:
            raise RegistryFrozen(definition.name)
        if not callable(handler):
            raise ValueError(f"Handler for tool {definition.name} must be callable")
        if definition.name in self.tools:
            raise ValueError(f"Tool already registered: {definition.name}")
        if definition.parameters_schema:
            self.validator.check_schema(definition.parameters_schema)

        self.tools[definition.name] = definition
        self.handlers[definition.name] = handler
        logger.info("Registered tool: %s", definition.name)

    def tool(
        self,
        name: Optional[str] = None,
        *,
        description: str = "",
        parameters_schema: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = DEFAULT_TOOL_TIMEOUT,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register(
                ToolDefinition(
                    name=name or func.__name__,
                    description=description or (inspect.getdoc(func) or ""),
                    parameters_schema=parameters_schema or {},
                    timeout=timeout,
                ),
                func,
            )
            return func

        return decorator

    def get(self, name: str) -> ToolDefinition:
        definition = self.tools.get(name)
        if definition is None:
            raise ToolNotFound(name)
        return definition

    def has(self, name: str) -> bool:
        return name in self.tools

    def list_tools(self) -> List[ToolDefinition]:
        return [self.tools[name] for name in sorted(self.tools)]

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        definition = self.get(name)
        handler = self.handlers[name]
        arguments = dict(arguments or {})

        errors = self.validator.validate(arguments, definition.parameters_schema)
        if errors:
            raise ToolValidationError(name, errors)

        start_time = time.monotonic()
        try:
            if inspect.iscoroutinefunction(handler):
                call = handler(arguments)
            else:
                call = asyncio.to_thread(handler, arguments)
            if definition.timeout:
                result = await asyncio.wait_for(call, timeout=definition.timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            raise ToolInvocationError(name, f"Tool {name} timed out after {definition.timeout}s")
        except ToolError:
            raise
        except Exception as e:
            logger.error("Tool %s invocation failed: %s", name, e, exc_info=True)
            raise ToolInvocationError(name, f"Tool {name} failed: {e}", cause=e) from e

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info("Tool %s invoked successfully in %.2fms", name, duration_ms)
        return result
