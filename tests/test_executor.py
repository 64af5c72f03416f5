"""Tests for the Tool Execution Engine."""

import asyncio

import pytest

from localpilot.core.models import FailureReason, ToolCall, ToolDescriptor
from localpilot.exceptions import SchemaValidationError, ToolExecutionFailure
from localpilot.tools.executor import ToolExecutionEngine
from localpilot.tools.local import LocalToolServer
from localpilot.tools.protocol import ToolServer, ToolServerResponse
from localpilot.tools.registry import ToolRegistry


class TransportServer(ToolServer):
    """Server whose call_tool raises a configurable exception."""

    def __init__(self, error: Exception):
        super().__init__("transport")
        self._error = error

    async def list_tools(self):
        return [ToolDescriptor(name="remote_tool")]

    async def call_tool(self, name, arguments):
        raise self._error


async def engine_for(server: ToolServer, timeout: float = 1.0) -> ToolExecutionEngine:
    registry = ToolRegistry([server])
    await registry.discover()
    return ToolExecutionEngine(registry, timeout_seconds=timeout)


class TestExecute:
    @pytest.mark.asyncio
    async def test_success(self, engine):
        result = await engine.execute(ToolCall(tool_name="file_reader", arguments={"path": "/tmp/a.txt"}))
        assert result.success
        assert result.output == "contents of /tmp/a.txt"
        assert result.failure_reason is None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, engine):
        with pytest.raises(SchemaValidationError, match="unknown tool"):
            await engine.execute(ToolCall(tool_name="nope"))

    @pytest.mark.asyncio
    async def test_invalid_arguments_raise(self, engine, executed_commands):
        with pytest.raises(SchemaValidationError):
            await engine.execute(ToolCall(tool_name="shell_executor", arguments={"command": 42}))
        assert executed_commands == []

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, engine):
        with pytest.raises(SchemaValidationError, match="missing required property 'path'"):
            await engine.execute(ToolCall(tool_name="file_reader", arguments={}))

    @pytest.mark.asyncio
    async def test_tool_error(self):
        server = LocalToolServer("s")

        def explode():
            raise RuntimeError("disk full")

        server.add("explode", explode)
        engine = await engine_for(server)
        result = await engine.execute(ToolCall(tool_name="explode"))
        assert not result.success
        assert result.failure_reason == FailureReason.TOOL_ERROR
        assert "disk full" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self):
        server = LocalToolServer("s")

        async def slow():
            await asyncio.sleep(5)

        server.add("slow", slow)
        engine = await engine_for(server, timeout=0.05)
        result = await engine.execute(ToolCall(tool_name="slow"))
        assert not result.success
        assert result.failure_reason == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_transport_error(self):
        engine = await engine_for(TransportServer(BrokenPipeError("pipe closed")))
        result = await engine.execute(ToolCall(tool_name="remote_tool"))
        assert result.failure_reason == FailureReason.TRANSPORT_ERROR
        assert "BrokenPipeError" in result.error

    @pytest.mark.asyncio
    async def test_transport_timeout_failure(self):
        failure = ToolExecutionFailure("remote_tool", "no reply", reason="timeout")
        engine = await engine_for(TransportServer(failure))
        result = await engine.execute(ToolCall(tool_name="remote_tool"))
        assert result.failure_reason == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_server_reported_failure(self):
        class Declining(TransportServer):
            async def call_tool(self, name, arguments):
                return ToolServerResponse(success=False, error="permission denied")

        engine = await engine_for(Declining(RuntimeError()))
        result = await engine.execute(ToolCall(tool_name="remote_tool"))
        assert result.failure_reason == FailureReason.TOOL_ERROR
        assert result.error == "permission denied"

    @pytest.mark.asyncio
    async def test_no_retry(self):
        calls = []
        server = LocalToolServer("s")

        def flaky():
            calls.append(1)
            raise RuntimeError("once")

        server.add("flaky", flaky)
        engine = await engine_for(server)
        await engine.execute(ToolCall(tool_name="flaky"))
        assert calls == [1]


class TestValidate:
    @pytest.mark.asyncio
    async def test_validate_does_not_execute(self, engine, executed_commands):
        engine.validate(ToolCall(tool_name="shell_executor", arguments={"command": "ls"}))
        assert executed_commands == []
