"""
LocalPilot Approval Gate

Holds at most one outstanding approval request per session and resolves
it by explicit operator decision.

State machine:
  NONE -> PENDING -> {APPROVED, REJECTED} -> NONE

- request() while PENDING raises AlreadyPendingError
- resolve() with an id (or tool name + arguments) that does not match
  the pending request raises UnknownRequestError
- A request never expires on its own. An optional expiry can be
  configured; when it fires the request resolves as REJECTED.

The pending request is a Future so an awaiting caller (wait()) resumes
exactly when resolve() is called, mirroring the API-mode approval queue.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from localpilot.core.models import (
    ApprovalRequest,
    ApprovalStatus,
    RejectionNotice,
    ToolCall,
)
from localpilot.exceptions import AlreadyPendingError, UnknownRequestError

logger = logging.getLogger(__name__)


class ApprovalGate:
    """Per-session human-in-the-loop gate for dangerous tool calls."""

    def __init__(self, session_id: str = "", expiry_seconds: float | None = None):
        self._session_id = session_id
        self._expiry_seconds = expiry_seconds
        self._pending: ApprovalRequest | None = None
        self._future: asyncio.Future | None = None
        self._history: list[ApprovalRequest] = []

    @property
    def pending(self) -> ApprovalRequest | None:
        """The outstanding request, if any."""
        return self._pending

    @property
    def history(self) -> list[ApprovalRequest]:
        """Resolved requests, oldest first."""
        return list(self._history)

    def request(self, tool_call: ToolCall, justification: str = "") -> ApprovalRequest:
        """Open an approval request for ``tool_call``."""
        if self._pending is not None:
            raise AlreadyPendingError(self._pending.id, self._session_id)

        request = ApprovalRequest(tool_call=tool_call, justification=justification)
        self._pending = request
        try:
            self._future = asyncio.get_running_loop().create_future()
        except RuntimeError:
            self._future = None

        logger.info(
            "Approval requested",
            extra={
                "session_id": self._session_id,
                "request_id": request.id,
                "tool_name": tool_call.tool_name,
            },
        )
        return request

    def resolve(self, request_id: str, approved: bool, reason: str = "") -> ToolCall | RejectionNotice:
        """Resolve the pending request by id.

        Returns the approved ToolCall, or a RejectionNotice.
        """
        pending = self._pending
        if pending is None:
            raise UnknownRequestError("No approval request is pending", request_id=request_id)
        if pending.id != request_id:
            raise UnknownRequestError(
                f"Approval request '{request_id}' does not match the pending request",
                request_id=request_id,
            )
        return self._finish(approved, reason or "rejected by operator")

    def resolve_matching(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        approved: bool,
        reason: str = "",
    ) -> ToolCall | RejectionNotice:
        """Resolve the pending request addressed by its exact tool call.

        The name and canonical argument payload must both match the call
        that was put up for approval.
        """
        pending = self._pending
        if pending is None:
            raise UnknownRequestError(f"No approval request is pending for tool '{tool_name}'")
        if not pending.tool_call.matches(tool_name, arguments):
            raise UnknownRequestError(
                f"No pending approval matches tool '{tool_name}' with the given arguments",
                request_id=pending.id,
                details={"tool_name": tool_name},
            )
        return self._finish(approved, reason or "rejected by operator")

    async def wait(self) -> ToolCall | RejectionNotice:
        """Suspend until the pending request is resolved.

        With no expiry configured this waits indefinitely; only resolve()
        or abandon() resumes it.
        """
        pending = self._pending
        if pending is None or self._future is None:
            raise UnknownRequestError("No approval request is pending")
        future = self._future
        if self._expiry_seconds is None:
            return await asyncio.shield(future)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._expiry_seconds)
        except TimeoutError:
            return self.expire(pending.id)

    def expire(self, request_id: str) -> RejectionNotice:
        """Reject the pending request because nobody decided in time."""
        pending = self._pending
        if pending is None or pending.id != request_id:
            raise UnknownRequestError(
                f"Approval request '{request_id}' is not pending", request_id=request_id
            )
        logger.info(
            "Approval request expired",
            extra={"session_id": self._session_id, "request_id": pending.id},
        )
        return self._reject(pending, "expired")

    def abandon(self) -> RejectionNotice | None:
        """Reject whatever is pending because the session is going away."""
        if self._pending is None:
            return None
        return self._reject(self._pending, "abandoned")

    def _finish(self, approved: bool, reason: str) -> ToolCall | RejectionNotice:
        pending = self._pending
        if pending is None:
            raise UnknownRequestError("No approval request is pending")
        if approved:
            self._settle(pending, ApprovalStatus.APPROVED, pending.tool_call)
            return pending.tool_call
        return self._reject(pending, reason)

    def _reject(self, pending: ApprovalRequest, reason: str) -> RejectionNotice:
        notice = RejectionNotice(request_id=pending.id, tool_call=pending.tool_call, reason=reason)
        self._settle(pending, ApprovalStatus.REJECTED, notice)
        return notice

    def _settle(
        self,
        pending: ApprovalRequest,
        status: ApprovalStatus,
        outcome: ToolCall | RejectionNotice,
    ) -> None:
        resolved = pending.model_copy(
            update={"status": status, "resolved_at": datetime.now(timezone.utc)}
        )
        self._history.append(resolved)
        self._pending = None

        future, self._future = self._future, None
        if future is not None and not future.done():
            future.set_result(outcome)

        logger.info(
            "Approval %s",
            status.value.lower(),
            extra={
                "session_id": self._session_id,
                "request_id": pending.id,
                "tool_name": pending.tool_call.tool_name,
            },
        )
