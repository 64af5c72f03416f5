"""
LocalPilot Custom Exceptions

Structured exception hierarchy for the LocalPilot orchestration core.
All LocalPilot-specific exceptions inherit from LocalPilotError.

Exception hierarchy:
    LocalPilotError
    +-- ToolServerConnectionError     (no tool server reachable; also a ConnectionError)
    +-- SchemaValidationError         (argument payload fails the tool's input schema)
    +-- ApprovalError                 (approval gate ordering errors)
    |   +-- AlreadyPendingError       (second request while one is PENDING)
    |   +-- UnknownRequestError       (resolution does not match the pending request)
    +-- ToolExecutionFailure          (tool server failed or timed out)
    +-- ModelError                    (model call failed or timed out)
    +-- IndexRefreshError             (no index root readable; also an OSError)

Validation and ordering errors (SchemaValidationError, ApprovalError) are
surfaced to the caller immediately. Transport errors are folded into the
session as failure results by the orchestrator. Nothing here is fatal.
"""

from __future__ import annotations


class LocalPilotError(Exception):
    """Base exception for all LocalPilot errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ToolServerConnectionError(LocalPilotError, ConnectionError):
    """Raised when no tool server responds during discovery."""

    def __init__(self, message: str, servers: list[str] | None = None, details: dict | None = None):
        super().__init__(
            message,
            details={"servers": servers or [], **(details or {})},
        )
        self.servers = servers or []


class SchemaValidationError(LocalPilotError):
    """Raised when a tool call's arguments do not match the tool's input schema.

    ``errors`` lists every violation found, as ``"<json path>: <problem>"``.
    """

    def __init__(self, tool_name: str, errors: list[str], details: dict | None = None):
        summary = "; ".join(errors) if errors else "invalid arguments"
        super().__init__(
            f"Arguments for tool '{tool_name}' failed validation: {summary}",
            details={"tool_name": tool_name, "errors": errors, **(details or {})},
        )
        self.tool_name = tool_name
        self.errors = errors


class ApprovalError(LocalPilotError):
    """Base class for approval gate ordering errors."""


class AlreadyPendingError(ApprovalError):
    """Raised when an approval is requested while another is still PENDING."""

    def __init__(self, pending_request_id: str, session_id: str = ""):
        super().__init__(
            f"Approval request '{pending_request_id}' is still pending",
            details={"pending_request_id": pending_request_id, "session_id": session_id},
        )
        self.pending_request_id = pending_request_id
        self.session_id = session_id


class UnknownRequestError(ApprovalError):
    """Raised when a resolution does not match the current pending request."""

    def __init__(self, message: str, request_id: str = "", details: dict | None = None):
        super().__init__(message, details={"request_id": request_id, **(details or {})})
        self.request_id = request_id


class ToolExecutionFailure(LocalPilotError):
    """Raised when a tool server reports failure or does not answer in time.

    The execution engine converts these into failed ToolExecutionResults;
    transports raise them internally.
    """

    def __init__(self, tool_name: str, message: str, reason: str = "tool_error", details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' execution failed: {message}",
            details={"tool_name": tool_name, "reason": reason, **(details or {})},
        )
        self.tool_name = tool_name
        self.reason = reason


class ModelError(LocalPilotError):
    """Raised when the model provider call fails or times out."""

    def __init__(self, provider_name: str, message: str, details: dict | None = None):
        super().__init__(
            f"Model provider '{provider_name}' error: {message}",
            details={"provider_name": provider_name, **(details or {})},
        )
        self.provider_name = provider_name


class IndexRefreshError(LocalPilotError, OSError):
    """Raised when a file index refresh cannot read any of its roots."""

    def __init__(self, message: str, roots: list[str] | None = None, details: dict | None = None):
        super().__init__(message, details={"roots": roots or [], **(details or {})})
        self.roots = roots or []
