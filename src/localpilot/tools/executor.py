"""
LocalPilot Tool Execution Engine

Invokes a tool server with validated arguments and returns a structured
result. Steps for every call:

1. Look up the descriptor in the registry snapshot
2. Validate the argument payload against its input schema
   (SchemaValidationError is raised: it is a caller error)
3. Dispatch to the owning server under a bounded timeout
4. Map timeout / transport failure / tool failure onto a
   ToolExecutionResult with success=False and a failure_reason

No automatic retries: tool side effects are not assumed idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import time

from localpilot.core.models import FailureReason, ToolCall, ToolExecutionResult
from localpilot.exceptions import SchemaValidationError, ToolExecutionFailure
from localpilot.tools.registry import ToolRegistry
from localpilot.tools.schema import validate_arguments

logger = logging.getLogger(__name__)


class ToolExecutionEngine:
    """Executes tool calls against their owning tool servers."""

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = 30.0,
        max_output_chars: int = 65536,
    ):
        self._registry = registry
        self._timeout = timeout_seconds
        self._max_output_chars = max_output_chars

    @property
    def max_output_chars(self) -> int:
        return self._max_output_chars

    def validate(self, tool_call: ToolCall) -> None:
        """Raise SchemaValidationError if the call cannot be executed as given."""
        descriptor = self._registry.get(tool_call.tool_name)
        if descriptor is None:
            raise SchemaValidationError(tool_call.tool_name, [f"unknown tool '{tool_call.tool_name}'"])
        validate_arguments(tool_call.tool_name, tool_call.arguments, descriptor.input_schema)

    async def execute(self, tool_call: ToolCall) -> ToolExecutionResult:
        """Validate and run one tool call.

        Only SchemaValidationError escapes; every transport or tool
        failure comes back as an unsuccessful result.
        """
        self.validate(tool_call)

        server = self._registry.server_for(tool_call.tool_name)
        if server is None:
            return self._failure(
                tool_call, FailureReason.SERVER_UNAVAILABLE, "no server owns this tool", 0.0
            )

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                server.call_tool(tool_call.tool_name, dict(tool_call.arguments)),
                timeout=self._timeout,
            )
        except TimeoutError:
            return self._failure(
                tool_call,
                FailureReason.TIMEOUT,
                f"no result within {self._timeout}s",
                _elapsed_ms(start),
            )
        except ToolExecutionFailure as e:
            reason = FailureReason.TIMEOUT if e.reason == "timeout" else FailureReason.TRANSPORT_ERROR
            return self._failure(tool_call, reason, str(e), _elapsed_ms(start))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failure(
                tool_call,
                FailureReason.TRANSPORT_ERROR,
                f"{type(e).__name__}: {e}",
                _elapsed_ms(start),
            )

        duration_ms = _elapsed_ms(start)
        if not response.success:
            return self._failure(
                tool_call, FailureReason.TOOL_ERROR, response.error or "tool reported failure", duration_ms
            )

        logger.info(
            "Tool executed",
            extra={
                "tool_name": tool_call.tool_name,
                "server": server.name,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return ToolExecutionResult(
            tool_name=tool_call.tool_name,
            success=True,
            output=response.output,
            duration_ms=duration_ms,
        )

    def _failure(
        self,
        tool_call: ToolCall,
        reason: FailureReason,
        error: str,
        duration_ms: float,
    ) -> ToolExecutionResult:
        logger.warning(
            "Tool execution failed: %s",
            error,
            extra={
                "tool_name": tool_call.tool_name,
                "failure_reason": reason.value,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return ToolExecutionResult(
            tool_name=tool_call.tool_name,
            success=False,
            failure_reason=reason,
            error=error,
            duration_ms=duration_ms,
        )


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000
