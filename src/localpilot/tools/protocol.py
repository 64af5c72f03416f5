"""
LocalPilot Tool-Server Protocol

Abstract interface for tool servers. A tool server is an external (or
in-process) capability provider: it advertises named tools with input
schemas and executes calls to them. The core never branches on which
kind of tool it is talking to; everything goes through this contract.

Wire shape (JSON-RPC 2.0, newline-delimited, for the stdio transport):

    -> {"jsonrpc": "2.0", "id": "...", "method": "tools/list"}
    <- {"jsonrpc": "2.0", "id": "...", "result": {"tools": [...]}}
    -> {"jsonrpc": "2.0", "id": "...", "method": "tools/call",
        "params": {"name": "...", "arguments": {...}}}
    <- {"jsonrpc": "2.0", "id": "...", "result": {...}}
     | {"jsonrpc": "2.0", "id": "...", "error": {"code": -1, "message": "..."}}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from localpilot.core.models import ToolDescriptor


class ToolServerResponse(BaseModel):
    """Response to a tool call: success flag plus output or failure reason."""
    success: bool
    output: Any = None
    error: str = ""


class ResponseError(BaseModel):
    """JSON-RPC error object."""
    code: int = -1
    message: str = ""
    data: Any = None


class ResponseMessage(BaseModel):
    """JSON-RPC response envelope."""
    id: str | int | None = None
    result: Any = None
    error: ResponseError | None = None


class Resource(BaseModel):
    """A readable resource advertised by a tool server."""
    uri: str
    name: str = ""
    description: str = ""


class ToolServer(ABC):
    """Abstract base class for tool servers.

    Implementations must be safe to call ``list_tools`` on repeatedly;
    discovery is re-run whenever the registry refreshes.
    """

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        """Server name, used for logging and collision reporting."""
        return self._name

    async def connect(self) -> None:
        """Establish the transport. No-op for in-process servers."""

    async def close(self) -> None:
        """Release the transport. No-op for in-process servers."""

    @abstractmethod
    async def list_tools(self) -> list[ToolDescriptor]:
        """Return the tools this server currently advertises."""
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolServerResponse:
        """Execute a tool. Transport failures raise; tool failures return success=False."""
        ...

    async def ping(self) -> bool:
        """Liveness check. In-process servers are always alive."""
        return True

    async def list_resources(self) -> list[Resource]:
        return []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r})"


def parse_tool_list(payload: Any, server: str) -> list[ToolDescriptor]:
    """Build descriptors from a ``tools/list`` result.

    Accepts ``{"tools": [...]}`` or a bare list, and either ``input_schema``
    or ``inputSchema`` for the schema key.
    """
    items = payload.get("tools", []) if isinstance(payload, dict) else payload
    descriptors: list[ToolDescriptor] = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        schema = item.get("input_schema") or item.get("inputSchema") or {"type": "object", "properties": {}}
        descriptors.append(
            ToolDescriptor(
                name=str(item["name"]),
                description=str(item.get("description") or ""),
                input_schema=schema,
                server=server,
            )
        )
    return descriptors


def parse_call_result(result: Any) -> ToolServerResponse:
    """Normalize a ``tools/call`` result into a ToolServerResponse.

    Servers following the MCP content convention return
    ``{"content": [...], "isError": bool}``; plain servers return any JSON
    value, which is taken as the output of a successful call.
    """
    if isinstance(result, dict) and "content" in result and isinstance(result["content"], list):
        texts = [
            block.get("text", "")
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        output: Any = "\n".join(texts) if texts else result["content"]
        if result.get("isError"):
            return ToolServerResponse(success=False, error=str(output))
        return ToolServerResponse(success=True, output=output)
    if isinstance(result, dict) and result.get("success") is False:
        return ToolServerResponse(success=False, error=str(result.get("error") or "tool reported failure"))
    return ToolServerResponse(success=True, output=result)
