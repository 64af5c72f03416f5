"""
LocalPilot Session

One Session per conversation. It owns:

- the append-only message history
- the current orchestrator state
- its Approval Gate (at most one pending request)
- the queue of tool calls from the current model turn that have not
  been processed yet
- an asyncio.Lock that serializes every state transition

Sessions live only in memory; nothing here is persisted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from localpilot.core.models import Message, Role, SessionState, ToolCall
from localpilot.safety.approval import ApprovalGate

if TYPE_CHECKING:
    from localpilot.providers.base import LLMProvider

logger = logging.getLogger(__name__)


class Session:
    """State of a single conversation."""

    def __init__(self, session_id: str | None = None, approval_expiry: float | None = None):
        self.id = session_id or f"s-{uuid.uuid4().hex[:12]}"
        self.created_at = datetime.now(timezone.utc)
        self.gate = ApprovalGate(self.id, expiry_seconds=approval_expiry)
        self.lock = asyncio.Lock()
        self.queue: deque[ToolCall] = deque()
        self.provider: LLMProvider | None = None
        self.last_reply: str | None = None
        self.expiry_task: asyncio.Task | None = None
        self.model_turns = 0
        self.closed = False
        self._state = SessionState.IDLE
        self._messages: list[Message] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def transition(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug(
            "%s -> %s",
            self._state.value,
            state.value,
            extra={"session_id": self.id, "state": state.value},
        )
        self._state = state

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def add_operator(self, text: str) -> Message:
        return self.append(Message(role=Role.OPERATOR, content=text))

    def add_assistant(self, text: str, tool_calls: tuple[ToolCall, ...] = ()) -> Message:
        return self.append(Message(role=Role.ASSISTANT, content=text, tool_calls=tool_calls))

    def add_tool_result(self, call: ToolCall, content: str, is_error: bool) -> Message:
        return self.append(
            Message(
                role=Role.TOOL_RESULT,
                content=content,
                tool_use_id=call.tool_use_id or call.id,
                tool_name=call.tool_name,
                is_error=is_error,
            )
        )

    def provider_messages(self) -> list[dict[str, Any]]:
        """The conversation in Anthropic message format.

        Consecutive tool results are grouped into one user message, the
        shape the model expects after a turn with several tool calls.
        """
        out: list[dict[str, Any]] = []
        for message in self._messages:
            if message.role is Role.OPERATOR:
                out.append({"role": "user", "content": message.content})
            elif message.role is Role.ASSISTANT:
                if not message.tool_calls:
                    out.append({"role": "assistant", "content": message.content})
                    continue
                blocks: list[dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    blocks.append({
                        "type": "tool_use",
                        "id": call.tool_use_id or call.id,
                        "name": call.tool_name,
                        "input": call.arguments,
                    })
                out.append({"role": "assistant", "content": blocks})
            else:
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_use_id,
                    "content": message.content,
                }
                if message.is_error:
                    block["is_error"] = True
                previous = out[-1] if out else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                ):
                    previous["content"].append(block)
                else:
                    out.append({"role": "user", "content": [block]})
        return out

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, state={self._state.value}, messages={len(self._messages)})"
