"""Shared test fixtures for the LocalPilot test suite."""

import logging
from unittest.mock import AsyncMock

import pytest

from localpilot.config import PilotConfig
from localpilot.providers.base import ContentBlock, LLMResponse
from localpilot.safety.risk import RiskClassifier
from localpilot.tools.executor import ToolExecutionEngine
from localpilot.tools.local import LocalToolServer
from localpilot.tools.registry import ToolRegistry

FILE_READER_SCHEMA = {
    "type": "object",
    "properties": {"path": {"type": "string"}},
    "required": ["path"],
}

SHELL_SCHEMA = {
    "type": "object",
    "properties": {"command": {"type": "string"}},
    "required": ["command"],
}


@pytest.fixture(autouse=True)
def restore_logging():
    """configure_logging() detaches the localpilot logger; reattach it for caplog."""
    yield
    logger = logging.getLogger("localpilot")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def executed_commands() -> list[str]:
    return []


@pytest.fixture
def workbench_server(executed_commands):
    """file_reader (allow-listed) and shell_executor (dangerous) in one server."""
    server = LocalToolServer("workbench")
    server.add(
        "file_reader",
        lambda path: f"contents of {path}",
        description="Read a text file",
        input_schema=FILE_READER_SCHEMA,
    )

    def shell_executor(command: str) -> str:
        executed_commands.append(command)
        return f"ran: {command}"

    server.add(
        "shell_executor",
        shell_executor,
        description="Run a shell command",
        input_schema=SHELL_SCHEMA,
    )
    return server


@pytest.fixture
async def registry(workbench_server):
    reg = ToolRegistry([workbench_server])
    await reg.discover()
    return reg


@pytest.fixture
def classifier():
    return RiskClassifier(["file_reader", "search_local_files"])


@pytest.fixture
def engine(registry):
    return ToolExecutionEngine(registry, timeout_seconds=2.0)


@pytest.fixture
def config():
    return PilotConfig(safe_tools=["file_reader", "search_local_files"])


@pytest.fixture
def text_response():
    def _make(text: str) -> LLMResponse:
        return LLMResponse(content=[ContentBlock(type="text", text=text)])

    return _make


@pytest.fixture
def tool_response():
    def _make(*calls: tuple[str, dict], text: str = "") -> LLMResponse:
        blocks = [ContentBlock(type="text", text=text)] if text else []
        for i, (name, arguments) in enumerate(calls):
            blocks.append(
                ContentBlock(
                    type="tool_use",
                    tool_name=name,
                    tool_input=arguments,
                    tool_use_id=f"toolu_{i}",
                )
            )
        return LLMResponse(content=blocks, stop_reason="tool_use")

    return _make


@pytest.fixture
def make_provider():
    """Fake LLMProvider whose create_message returns the given responses in order."""

    def _make(*responses):
        provider = AsyncMock()
        provider.name = "FakeProvider"
        provider.create_message = AsyncMock(side_effect=list(responses))
        return provider

    return _make
