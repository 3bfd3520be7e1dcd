"""Built-in tools: calculator, HTTP requests and sandboxed file access."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
import httpx

from .registry import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

MAX_PRECISION = 10
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


@dataclass
class HttpToolConfig:
    timeout: float = 30.0
    allowed_methods: List[str] = field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD"]
    )
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(
        default_factory=lambda: ["localhost", "127.0.0.1", "0.0.0.0", "::1"]
    )
    max_response_size: int = DEFAULT_MAX_BYTES
    max_redirects: int = 5


@dataclass
class FileToolConfig:
    root: Path = field(default_factory=Path.cwd)
    allowed_extensions: List[str] = field(
        default_factory=lambda: ["txt", "md", "json", "csv", "log", "yaml", "yml"]
    )
    max_file_size: int = DEFAULT_MAX_BYTES


class BuiltinTools:
    """Factories returning ``(ToolDefinition, handler)`` pairs."""

    @staticmethod
    def create_calculator_tool() -> Tuple[ToolDefinition, Callable]:
        operations = ["add", "subtract", "multiply", "divide", "power", "sqrt", "abs", "round"]
        binary = {"add", "subtract", "multiply", "divide", "power"}
        tool_def = ToolDefinition(
            name="calculator",
            description="Perform arithmetic: add, subtract, multiply, divide, power, sqrt, abs, round",
            parameters_schema={
                "type": "object",
                "properties": {
                    "operation": {"type": "string", "enum": operations},
                    "a": {"type": "number"},
                    "b": {"type": "number"},
                    "precision": {"type": "integer", "minimum": 0, "maximum": MAX_PRECISION},
                },
                "required": ["operation", "a"],
            },
            timeout=5,
            metadata={"category": "math"},
        )

        def handler(params: Dict[str, Any]) -> Dict[str, Any]:
            operation = params["operation"]
            a = float(params["a"])
            if operation in binary:
                if "b" not in params:
                    raise ValueError(f"Operation {operation} requires parameter 'b'")
                b = float(params["b"])
            if operation == "add":
                result = a + b
            elif operation == "subtract":
                result = a - b
            elif operation == "multiply":
                result = a * b
            elif operation == "divide":
                if b == 0:
                    raise ValueError("Division by zero")
                result = a / b
            elif operation == "power":
                result = math.pow(a, b)
            elif operation == "sqrt":
                if a < 0:
                    raise ValueError("Cannot take the square root of a negative number")
                result = math.sqrt(a)
            elif operation == "abs":
                result = abs(a)
            else:
                result = round(a, int(params.get("precision", 0)))
            return {"operation": operation, "result": result}

        return tool_def, handler

    @staticmethod
    def create_http_tool(
        config: Optional[HttpToolConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Tuple[ToolDefinition, Callable]:
        config = config or HttpToolConfig()
        tool_def = ToolDefinition(
            name="http_request",
            description="Make an HTTP request and return status, headers and body",
            parameters_schema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "method": {"type": "string", "enum": config.allowed_methods, "default": "GET"},
                    "headers": {"type": "object"},
                    "params": {"type": "object"},
                    "body": {},
                },
                "required": ["url"],
            },
            timeout=config.timeout,
            metadata={"category": "network"},
        )

        async def handler(params: Dict[str, Any]) -> Dict[str, Any]:
            url = httpx.URL(params["url"])
            method = params.get("method", "GET").upper()
            _check_host(url, config)

            body = params.get("body")
            request_kwargs: Dict[str, Any] = {
                "headers": params.get("headers") or {},
                "params": params.get("params") or {},
            }
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            elif body is not None:
                request_kwargs["content"] = str(body)

            async def check_hop(request: httpx.Request) -> None:
                # redirects are followed, so every hop is checked again
                _check_host(request.url, config)

            async with httpx.AsyncClient(
                transport=transport,
                timeout=config.timeout,
                follow_redirects=True,
                max_redirects=config.max_redirects,
                event_hooks={"request": [check_hop]},
            ) as client:
                async with client.stream(method, url, **request_kwargs) as response:
                    content_length = response.headers.get("content-length")
                    if content_length and int(content_length) > config.max_response_size:
                        raise ValueError(
                            f"Response too large: {content_length} bytes, "
                            f"limit is {config.max_response_size}"
                        )
                    chunks = []
                    size = 0
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > config.max_response_size:
                            raise ValueError(
                                f"Response exceeded {config.max_response_size} bytes"
                            )
                        chunks.append(chunk)

            text = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            logger.debug("HTTP %s %s -> %s", method, url, response.status_code)
            return {
                "status": response.status_code,
                "status_text": response.reason_phrase,
                "headers": dict(response.headers),
                "body": text,
                "json": parsed,
                "size": size,
                "success": response.is_success,
            }

        return tool_def, handler

    @staticmethod
    def create_file_tools(config: Optional[FileToolConfig] = None) -> List[Tuple[ToolDefinition, Callable]]:
        config = config or FileToolConfig()
        root = Path(config.root).resolve()

        def resolve(path: str, check_extension: bool = True) -> Path:
            target = (root / path).resolve()
            if target != root and root not in target.parents:
                raise PermissionError(f"Path escapes the sandbox root: {path}")
            if check_extension and target.suffix.lstrip(".").lower() not in config.allowed_extensions:
                raise PermissionError(f"File extension not allowed: {target.suffix or '(none)'}")
            return target

        async def read_file(params: Dict[str, Any]) -> Dict[str, Any]:
            target = resolve(params["path"])
            size = await aiofiles.os.path.getsize(target)
            if size > config.max_file_size:
                raise ValueError(f"File too large: {size} bytes, limit is {config.max_file_size}")
            async with aiofiles.open(target, "r", encoding="utf-8") as f:
                content = await f.read()
            return {"path": str(target.relative_to(root)), "content": content, "size": size}

        async def write_file(params: Dict[str, Any]) -> Dict[str, Any]:
            target = resolve(params["path"])
            content = params["content"]
            if len(content.encode("utf-8")) > config.max_file_size:
                raise ValueError(f"Content exceeds {config.max_file_size} bytes")
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            mode = "a" if params.get("append") else "w"
            async with aiofiles.open(target, mode, encoding="utf-8") as f:
                await f.write(content)
            return {
                "path": str(target.relative_to(root)),
                "bytes_written": len(content.encode("utf-8")),
                "append": mode == "a",
            }

        async def list_directory(params: Dict[str, Any]) -> Dict[str, Any]:
            target = resolve(params.get("path", "."), check_extension=False)
            if not await aiofiles.os.path.isdir(target):
                raise NotADirectoryError(f"Not a directory: {params.get('path', '.')}")
            entries = []
            for name in sorted(await aiofiles.os.listdir(target)):
                entry = target / name
                is_dir = await aiofiles.os.path.isdir(entry)
                entries.append({
                    "name": name,
                    "type": "directory" if is_dir else "file",
                    "size": None if is_dir else await aiofiles.os.path.getsize(entry),
                })
            return {"path": str(target.relative_to(root)), "entries": entries}

        path_only = {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        }
        return [
            (
                ToolDefinition(
                    name="read_file",
                    description="Read a text file below the sandbox root",
                    parameters_schema=path_only,
                    metadata={"category": "file"},
                ),
                read_file,
            ),
            (
                ToolDefinition(
                    name="write_file",
                    description="Write or append text to a file below the sandbox root",
                    parameters_schema={
                        "type": "object",
                        "properties": {
                            "path": {"type": "string"},
                            "content": {"type": "string"},
                            "append": {"type": "boolean"},
                        },
                        "required": ["path", "content"],
                    },
                    metadata={"category": "file"},
                ),
                write_file,
            ),
            (
                ToolDefinition(
                    name="list_directory",
                    description="List the entries of a directory below the sandbox root",
                    parameters_schema={
                        "type": "object",
                        "properties": {"path": {"type": "string"}},
                    },
                    metadata={"category": "file"},
                ),
                list_directory,
            ),
        ]


def _check_host(url: httpx.URL, config: HttpToolConfig) -> None:
    if url.scheme not in ("http", "https"):
        raise ValueError(f"Unsupported URL scheme: {url.scheme}")
    host = url.host.lower()
    if config.allowed_domains and not any(_matches(host, d) for d in config.allowed_domains):
        raise PermissionError(f"Domain not allowed: {host}")
    if any(_matches(host, d) for d in config.blocked_domains):
        raise PermissionError(f"Domain is blocked: {host}")


def _matches(host: str, domain: str) -> bool:
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    file_root: Optional[Path] = None,
    http_config: Optional[HttpToolConfig] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[str]:
    """Register every built-in tool and return their names."""
    pairs = [
        BuiltinTools.create_calculator_tool(),
        BuiltinTools.create_http_tool(http_config, http_transport),
    ]
    if file_root is not None:
        pairs.extend(BuiltinTools.create_file_tools(FileToolConfig(root=file_root)))
    for tool_def, handler in pairs:
        registry.register(tool_def, handler)
    return [tool_def.name for tool_def, _ in pairs]
