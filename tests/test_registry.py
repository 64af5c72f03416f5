"""Tests for tool discovery and the registry cache."""

import logging

import pytest

from localpilot.core.models import ToolDescriptor
from localpilot.exceptions import ToolServerConnectionError
from localpilot.tools.local import LocalToolServer
from localpilot.tools.protocol import ToolServer, ToolServerResponse
from localpilot.tools.registry import ToolRegistry


class BrokenServer(ToolServer):
    """A server that never answers discovery."""

    def __init__(self, name: str = "broken"):
        super().__init__(name)
        self.available = False
        self.tools: list[ToolDescriptor] = []

    async def list_tools(self):
        if not self.available:
            raise ConnectionRefusedError("server is down")
        return self.tools

    async def call_tool(self, name, arguments):
        return ToolServerResponse(success=True, output=None)


def server_with(name: str, *tools: str) -> LocalToolServer:
    server = LocalToolServer(name)
    for tool in tools:
        server.add(tool, lambda: tool, description=f"{tool} from {name}")
    return server


class TestDiscover:
    @pytest.mark.asyncio
    async def test_discovers_all_servers(self, workbench_server):
        registry = ToolRegistry([workbench_server, server_with("extra", "web_search")])
        tools = await registry.discover()
        assert {t.name for t in tools} == {"file_reader", "shell_executor", "web_search"}
        assert registry.get("web_search").server == "extra"
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_idempotent(self, workbench_server):
        registry = ToolRegistry([workbench_server])
        first = await registry.discover()
        second = await registry.discover()
        assert first == second

    @pytest.mark.asyncio
    async def test_no_server_responds(self):
        registry = ToolRegistry([BrokenServer("a"), BrokenServer("b")])
        with pytest.raises(ToolServerConnectionError) as exc_info:
            await registry.discover()
        assert exc_info.value.servers == ["a", "b"]
        assert isinstance(exc_info.value, ConnectionError)

    @pytest.mark.asyncio
    async def test_no_servers_at_all(self):
        with pytest.raises(ToolServerConnectionError):
            await ToolRegistry([]).discover()

    @pytest.mark.asyncio
    async def test_failed_discovery_keeps_previous_cache(self):
        broken = BrokenServer()
        broken.available = True
        broken.tools = [ToolDescriptor(name="reader")]
        registry = ToolRegistry([broken])
        await registry.discover()

        broken.available = False
        with pytest.raises(ToolServerConnectionError):
            await registry.discover()
        assert "reader" in registry

    @pytest.mark.asyncio
    async def test_unreachable_server_tools_are_dropped(self, workbench_server):
        flaky = BrokenServer("flaky")
        flaky.available = True
        flaky.tools = [ToolDescriptor(name="stale_tool")]
        registry = ToolRegistry([workbench_server, flaky])
        await registry.discover()
        assert "stale_tool" in registry

        flaky.available = False
        tools = await registry.discover()
        assert "stale_tool" not in {t.name for t in tools}
        assert "stale_tool" not in registry
        assert registry.server_for("stale_tool") is None

    @pytest.mark.asyncio
    async def test_name_collision_later_server_wins(self, caplog):
        first = server_with("first", "search")
        second = server_with("second", "search")
        registry = ToolRegistry([first, second])
        with caplog.at_level(logging.WARNING, logger="localpilot"):
            await registry.discover()
        assert registry.get("search").server == "second"
        assert registry.server_for("search") is second
        assert "collision" in caplog.text

    @pytest.mark.asyncio
    async def test_descriptor_server_is_stamped(self):
        broken = BrokenServer("stamped")
        broken.available = True
        broken.tools = [ToolDescriptor(name="t", server="")]
        registry = ToolRegistry([broken])
        await registry.discover()
        assert registry.get("t").server == "stamped"


class TestReads:
    @pytest.mark.asyncio
    async def test_list_sorted_by_name(self):
        registry = ToolRegistry([server_with("s", "zeta", "alpha", "mid")])
        await registry.discover()
        assert [t.name for t in registry.list()] == ["alpha", "mid", "zeta"]

    def test_empty_before_discovery(self):
        registry = ToolRegistry([server_with("s", "a")])
        assert registry.list() == []
        assert registry.get("a") is None
        assert registry.schemas() == []

    @pytest.mark.asyncio
    async def test_schemas(self, registry):
        names = [s["name"] for s in registry.schemas()]
        assert names == ["file_reader", "shell_executor"]
        assert registry.schemas()[0]["input_schema"]["required"] == ["path"]


class TestServers:
    def test_duplicate_server_name_rejected(self):
        registry = ToolRegistry([server_with("s")])
        with pytest.raises(ValueError):
            registry.add_server(server_with("s"))

    @pytest.mark.asyncio
    async def test_added_server_joins_next_discovery(self):
        registry = ToolRegistry([server_with("a", "one")])
        await registry.discover()
        registry.add_server(server_with("b", "two"))
        assert "two" not in registry
        await registry.discover()
        assert "two" in registry
