"""
LocalPilot Stdio Tool Server Client

Talks JSON-RPC 2.0 to a tool server subprocess over newline-delimited
stdin/stdout (the Model Context Protocol stdio transport):

- The subprocess is spawned on connect() with piped stdio
- A reader task parses stdout lines and resolves the Future waiting
  on the matching request id
- Every request is bounded by request_timeout; on timeout the waiter
  is dropped and ToolExecutionFailure(reason="timeout") is raised
- If the process exits, or sends a line longer than read_limit, all
  waiters fail with reason="transport_error" and the next request
  restarts the server

Lines that are not valid JSON-RPC responses (server logging to stdout,
notifications) are skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from typing import Any

from pydantic import ValidationError

from localpilot.core.models import ToolDescriptor
from localpilot.exceptions import ToolExecutionFailure
from localpilot.tools.protocol import (
    Resource,
    ResponseMessage,
    ToolServer,
    ToolServerResponse,
    parse_call_result,
    parse_tool_list,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# Longest single stdout line (one JSON-RPC message) accepted from a server.
DEFAULT_READ_LIMIT = 16 * 1024 * 1024


class StdioToolServer(ToolServer):
    """Tool server running as a subprocess, spoken to over stdio."""

    def __init__(
        self,
        name: str,
        command: list[str],
        env: dict[str, str] | None = None,
        request_timeout: float = 30.0,
        cwd: str | None = None,
        read_limit: int = DEFAULT_READ_LIMIT,
    ):
        super().__init__(name)
        if not command:
            raise ValueError(f"Tool server '{name}' needs a command")
        self._command = list(command)
        self._env = env
        self._cwd = cwd
        self._request_timeout = request_timeout
        self._read_limit = read_limit
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._write_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        """True while the process runs and its stdout is still being read."""
        return (
            self._process is not None
            and self._process.returncode is None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    async def connect(self) -> None:
        """Spawn the subprocess and perform the initialize handshake (best effort).

        A server whose reader has stopped is restarted.
        """
        async with self._connect_lock:
            if not self.connected:
                await self._stop_process()
                await self._start()

    async def _start(self) -> None:
        env = {**os.environ, **self._env} if self._env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=env,
                cwd=self._cwd,
                limit=self._read_limit,
            )
        except OSError as e:
            raise ToolExecutionFailure(
                self.name, f"could not start {self._command[0]}: {e}", reason="transport_error"
            ) from e

        self._process = process
        self._reader_task = asyncio.create_task(self._read_loop(process))
        logger.info("Started tool server", extra={"server": self.name})

        try:
            await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": "localpilot", "version": "0.1.0"},
                },
            )
        except ToolExecutionFailure as e:
            # Plain JSON-RPC servers without a handshake are still usable.
            logger.debug("initialize not supported: %s", e, extra={"server": self.name})
        else:
            await self._notify("notifications/initialized")

    async def close(self) -> None:
        """Terminate the subprocess and fail any in-flight requests."""
        await self._stop_process()
        self._fail_pending("tool server closed")

    async def _stop_process(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=2.0)
            except TimeoutError:
                process.kill()
                await process.wait()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

    async def list_tools(self) -> list[ToolDescriptor]:
        result = await self._request("tools/list")
        return parse_tool_list(result, self.name)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolServerResponse:
        try:
            result = await self._request("tools/call", {"name": name, "arguments": arguments})
        except ToolExecutionFailure as e:
            if e.reason == "tool_error":
                return ToolServerResponse(success=False, error=e.details.get("message", str(e)))
            raise
        return parse_call_result(result)

    async def ping(self) -> bool:
        try:
            await self._request("ping", timeout=min(self._request_timeout, 5.0))
        except ToolExecutionFailure:
            return False
        return True

    async def list_resources(self) -> list[Resource]:
        result = await self._request("resources/list")
        items = result.get("resources", []) if isinstance(result, dict) else result
        return [Resource(**item) for item in items or [] if isinstance(item, dict) and "uri" in item]

    async def read_resource(self, uri: str) -> Any:
        return await self._request("resources/read", {"uri": uri})

    # ─── Transport ─────────────────────────────────────────

    async def _request(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        if not self.connected:
            await self.connect()

        request_id = uuid.uuid4().hex
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write(message)
            response: ResponseMessage = await asyncio.wait_for(
                future, timeout=timeout or self._request_timeout
            )
        except TimeoutError as e:
            raise ToolExecutionFailure(
                self.name,
                f"no response to {method} within {timeout or self._request_timeout}s",
                reason="timeout",
            ) from e
        except (ConnectionError, BrokenPipeError) as e:
            raise ToolExecutionFailure(self.name, f"{method}: {e}", reason="transport_error") from e
        finally:
            self._pending.pop(request_id, None)

        if response.error is not None:
            raise ToolExecutionFailure(
                self.name,
                f"{method}: {response.error.message}",
                reason="tool_error",
                details={"code": response.error.code, "message": response.error.message},
            )
        return response.result

    async def _notify(self, method: str) -> None:
        await self._write({"jsonrpc": "2.0", "method": method})

    async def _write(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise ConnectionError(f"tool server '{self.name}' is not running")
        data = (json.dumps(message) + "\n").encode("utf-8")
        async with self._write_lock:
            process.stdin.write(data)
            await process.stdin.drain()

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        reason = "tool server exited"
        try:
            while process.stdout is not None:
                try:
                    line = await process.stdout.readline()
                except ValueError:
                    # The stream cannot resync after an overlong line.
                    reason = f"response line longer than {self._read_limit} bytes"
                    logger.error("Tool server sent an oversized line", extra={"server": self.name})
                    break
                if not line:
                    logger.warning("Tool server stdout closed", extra={"server": self.name})
                    break
                self._dispatch(line)
        finally:
            self._fail_pending(reason)

    def _dispatch(self, line: bytes) -> None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            return
        if not isinstance(payload, dict) or "id" not in payload:
            return
        future = self._pending.get(str(payload["id"]))
        if future is None or future.done():
            return
        try:
            response = ResponseMessage.model_validate(payload)
        except ValidationError as e:
            future.set_exception(ConnectionError(f"malformed response: {e.error_count()} error(s)"))
            return
        future.set_result(response)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        self._pending.clear()
