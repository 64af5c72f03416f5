"""
LocalPilot In-Process Tool Server

Hosts tools implemented as Python callables in the same process.
Used for the file-index tool and anywhere a subprocess would be
overkill. Handlers may be sync or async and receive the validated
arguments as keyword arguments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from localpilot.core.models import ToolDescriptor
from localpilot.tools.protocol import ToolServer, ToolServerResponse


class RegisteredTool:
    """A tool hosted by a LocalToolServer: descriptor plus handler."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: Callable[..., Any] | Callable[..., Awaitable[Any]],
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.handler = handler


class LocalToolServer(ToolServer):
    """Tool server whose tools are plain Python callables."""

    def __init__(self, name: str, tools: list[RegisteredTool] | None = None):
        super().__init__(name)
        self._tools: dict[str, RegisteredTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: RegisteredTool) -> None:
        """Register a tool. Raises ValueError if the name is already taken on this server."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered on server '{self.name}'")
        self._tools[tool.name] = tool

    def add(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> None:
        """Shorthand for ``register(RegisteredTool(...))``."""
        self.register(
            RegisteredTool(
                name=name,
                description=description,
                input_schema=input_schema or {"type": "object", "properties": {}},
                handler=handler,
            )
        )

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name=t.name,
                description=t.description,
                input_schema=t.input_schema,
                server=self.name,
            )
            for t in self._tools.values()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolServerResponse:
        tool = self._tools.get(name)
        if tool is None:
            return ToolServerResponse(success=False, error=f"Unknown tool: {name}")
        try:
            result = tool.handler(**arguments)
            if asyncio.iscoroutine(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return ToolServerResponse(success=False, error=f"{type(e).__name__}: {e}")
        return ToolServerResponse(success=True, output=result)

    def __len__(self) -> int:
        return len(self._tools)
