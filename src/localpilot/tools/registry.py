"""
LocalPilot Tool Registry

Discovers and caches the tools advertised by the connected tool servers.

- discover() asks every server for its tool list, in configured order,
  and replaces the cache wholesale. Descriptors from servers that stop
  answering are dropped, never merged with the old cache.
- Tool names are unique across servers. On collision the server that
  comes later in the configured order wins and a warning is logged.
- list() and get() read the current snapshot and never block.

The cache is a dict reference that is swapped, not mutated, so readers
in other sessions never observe a half-built registry.
"""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Any

from localpilot.core.models import ToolDescriptor
from localpilot.exceptions import ToolServerConnectionError
from localpilot.tools.protocol import ToolServer

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry of callable tools across all connected tool servers."""

    def __init__(self, servers: list[ToolServer] | None = None, discovery_timeout: float = 30.0):
        self._servers: list[ToolServer] = list(servers or [])
        self._discovery_timeout = discovery_timeout
        self._tools: MappingProxyType[str, ToolDescriptor] = MappingProxyType({})
        self._owners: MappingProxyType[str, ToolServer] = MappingProxyType({})

    def add_server(self, server: ToolServer) -> None:
        """Attach a server. It takes part in the next discover()."""
        if any(s.name == server.name for s in self._servers):
            raise ValueError(f"Tool server '{server.name}' is already attached")
        self._servers.append(server)

    @property
    def servers(self) -> list[ToolServer]:
        return list(self._servers)

    async def discover(self) -> frozenset[ToolDescriptor]:
        """Query all servers and replace the cached descriptor set.

        Raises ToolServerConnectionError, leaving the previous cache in
        place, if no server responds at all.
        """
        listings = await asyncio.gather(
            *(self._list_server(server) for server in self._servers)
        )

        tools: dict[str, ToolDescriptor] = {}
        owners: dict[str, ToolServer] = {}
        responded: list[str] = []
        for server, listing in zip(self._servers, listings):
            if listing is None:
                continue
            responded.append(server.name)
            for descriptor in listing:
                previous = owners.get(descriptor.name)
                if previous is not None and previous is not server:
                    logger.warning(
                        "Tool name collision: '%s' from server '%s' replaces the one from '%s'",
                        descriptor.name,
                        server.name,
                        previous.name,
                        extra={"tool_name": descriptor.name, "server": server.name},
                    )
                tools[descriptor.name] = descriptor
                owners[descriptor.name] = server

        if not responded:
            raise ToolServerConnectionError(
                "No tool server responded to discovery",
                servers=[s.name for s in self._servers],
            )

        self._tools = MappingProxyType(tools)
        self._owners = MappingProxyType(owners)
        logger.info(
            "Discovered %d tools from %d/%d servers",
            len(tools),
            len(responded),
            len(self._servers),
            extra={"count": len(tools)},
        )
        return frozenset(tools.values())

    async def _list_server(self, server: ToolServer) -> list[ToolDescriptor] | None:
        try:
            await server.connect()
            listing = await asyncio.wait_for(server.list_tools(), timeout=self._discovery_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Tool server did not respond to discovery: %s: %s",
                type(e).__name__,
                e,
                extra={"server": server.name},
            )
            return None
        return [
            d if d.server == server.name else d.model_copy(update={"server": server.name})
            for d in listing
        ]

    def list(self) -> list[ToolDescriptor]:
        """Cached descriptors, ordered by name."""
        return sorted(self._tools.values(), key=lambda d: d.name)

    def get(self, name: str) -> ToolDescriptor | None:
        """Look up a descriptor by tool name."""
        return self._tools.get(name)

    def server_for(self, name: str) -> ToolServer | None:
        """The server that owns a tool in the current snapshot."""
        return self._owners.get(name)

    def schemas(self) -> list[dict[str, Any]]:
        """Provider tool schemas for every cached tool."""
        return [d.to_schema() for d in self.list()]

    async def close(self) -> None:
        for server in self._servers:
            try:
                await server.close()
            except Exception as e:
                logger.warning("Error closing tool server: %s", e, extra={"server": server.name})

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
