"""
LocalPilot Core Data Models

Shared types used across the orchestration core: conversation messages,
tool descriptors and calls, risk tiers, approval requests, execution
results and file index entries. This module depends only on pydantic.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_json(value: Any) -> str:
    """Serialize a JSON value with sorted keys and compact separators.

    Two argument payloads are the same call exactly when their canonical
    forms are byte-for-byte equal.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ─── Enums ───────────────────────────────────────────────────


class Role(str, Enum):
    """Author of a conversation message."""
    OPERATOR = "operator"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class RiskTier(str, Enum):
    """Risk classification for a tool call."""
    SAFE = "SAFE"
    DANGEROUS = "DANGEROUS"


class SessionState(str, Enum):
    """Per-message state machine of the session orchestrator."""
    IDLE = "IDLE"
    MODEL_PENDING = "MODEL_PENDING"
    FINAL_ANSWER = "FINAL_ANSWER"
    TOOL_REQUESTED = "TOOL_REQUESTED"
    RISK_CHECK = "RISK_CHECK"
    EXECUTING = "EXECUTING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    TOOL_REJECTED = "TOOL_REJECTED"


class ApprovalStatus(str, Enum):
    """Status of a human approval request."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class FailureReason(str, Enum):
    """Machine-readable reason attached to a failed ToolExecutionResult."""
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    TOOL_ERROR = "tool_error"
    SERVER_UNAVAILABLE = "server_unavailable"
    SCHEMA_VALIDATION = "schema_validation"
    REJECTED = "rejected"


# ─── Tools ───────────────────────────────────────────────────


class ToolDescriptor(BaseModel):
    """A callable capability advertised by a tool server.

    Frozen: re-discovery supersedes descriptors, it never mutates them.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    server: str = ""

    def __hash__(self) -> int:
        return hash((self.name, self.server, self.description, canonical_json(self.input_schema)))

    def to_schema(self) -> dict[str, Any]:
        """Provider-facing tool schema (Anthropic tool format)."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"tc-{uuid.uuid4().hex[:8]}")
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str = ""
    message_id: str = ""

    def fingerprint(self) -> str:
        """Identity of the call for approval matching: name plus canonical arguments."""
        return f"{self.tool_name}:{canonical_json(self.arguments)}"

    def matches(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        return self.fingerprint() == f"{tool_name}:{canonical_json(arguments)}"


class ToolExecutionResult(BaseModel):
    """Outcome of one tool execution, folded back into the conversation."""
    tool_name: str
    success: bool
    output: Any = None
    failure_reason: FailureReason | None = None
    error: str = ""
    duration_ms: float = 0.0

    def render(self, max_chars: int = 65536) -> str:
        """Text form handed back to the model and the operator."""
        if not self.success:
            reason = self.failure_reason.value if self.failure_reason else "unknown"
            return f"[{reason}] {self.error}".strip()
        if isinstance(self.output, str):
            text = self.output
        else:
            text = json.dumps(self.output, ensure_ascii=False, default=str)
        if len(text) > max_chars:
            text = text[:max_chars] + f"\n[TRUNCATED at {max_chars} chars]"
        return text


# ─── Conversation ────────────────────────────────────────────


class Message(BaseModel):
    """One immutable entry of a session's conversation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:8]}")
    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_use_id: str = ""
    tool_name: str = ""
    is_error: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


# ─── Approval ────────────────────────────────────────────────


class ApprovalRequest(BaseModel):
    """A request for operator approval of one dangerous tool call."""
    id: str = Field(default_factory=lambda: f"apr-{uuid.uuid4().hex[:8]}")
    tool_call: ToolCall
    justification: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_name": self.tool_call.tool_name,
            "arguments": self.tool_call.arguments,
            "justification": self.justification,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


class RejectionNotice(BaseModel):
    """Returned by the approval gate when the operator rejects a call."""
    request_id: str
    tool_call: ToolCall
    reason: str = "rejected by operator"


# ─── File Index ──────────────────────────────────────────────


def entry_id(path: str) -> str:
    """Stable identifier for an index entry, derived from its absolute path."""
    return hashlib.sha256(path.encode("utf-8", errors="surrogateescape")).hexdigest()[:16]


class FileIndexEntry(BaseModel):
    """One catalogued filesystem entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    path: str
    size: int = 0
    indexed_at: datetime = Field(default_factory=_utcnow)
    extension: str | None = None
    modified: str = ""
    is_directory: bool = False

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "path": self.path, "size": self.size}
