"""
LocalPilot Session Orchestrator

Drives one conversation from operator input to final answer:

    IDLE -> MODEL_PENDING -> FINAL_ANSWER -> IDLE
                          -> TOOL_REQUESTED -> RISK_CHECK -> EXECUTING -> MODEL_PENDING
                                                          -> AWAITING_APPROVAL
    AWAITING_APPROVAL -> (approved) EXECUTING | (rejected) TOOL_REJECTED -> MODEL_PENDING

Tool calls from one model turn are processed sequentially in the order
the model issued them. A DANGEROUS call suspends the turn: the outcome
is PENDING_APPROVAL and the calls behind it stay queued until the
operator decides, or until the configured approval timeout rejects the
request as expired. Every transition of a session happens under that
session's lock; distinct sessions progress independently.

Model failures are folded into the conversation as a notice, the session
returns to IDLE and ModelError is re-raised. Tool failures never abort
the loop: they are folded in as error tool results the model can read.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from localpilot.core.models import (
    ApprovalRequest,
    FailureReason,
    Message,
    RejectionNotice,
    RiskTier,
    Role,
    SessionState,
    ToolCall,
    ToolExecutionResult,
)
from localpilot.engine.session import Session
from localpilot.exceptions import (
    AlreadyPendingError,
    ModelError,
    SchemaValidationError,
    UnknownRequestError,
)
from localpilot.index.file_index import SEARCH_TOOL_NAME
from localpilot.safety.risk import RiskClassifier
from localpilot.tools.executor import ToolExecutionEngine
from localpilot.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from localpilot.config import PilotConfig
    from localpilot.providers.base import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

PENDING_APPROVAL = "PENDING_APPROVAL"

SYSTEM_PROMPT_TEMPLATE = """You are an AI assistant that can use tools on the operator's local machine.

Available tools:
[
{tools}
]

Follow these rules:
1. Always use the exact tool names as provided.
2. Provide all required arguments according to the input schema.
3. Actions that write, delete, move or otherwise modify anything are held for the operator's approval before they run.
4. To search for local files, use the '{search_tool}' tool with a query parameter.
5. Respond with plain text when providing explanations or summaries."""


class TurnStatus(str, Enum):
    """How a run of the model loop ended."""
    FINAL_ANSWER = "FINAL_ANSWER"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    TURN_LIMIT = "TURN_LIMIT"


class TurnOutcome(BaseModel):
    """Result of process_message() or of the continuation after an approval."""
    session_id: str
    status: TurnStatus
    reply: str = ""
    approval: ApprovalRequest | None = None

    @property
    def text(self) -> str:
        """What the command surface hands back to the UI."""
        if self.status is TurnStatus.PENDING_APPROVAL:
            return PENDING_APPROVAL
        return self.reply


class ApprovalOutcome(BaseModel):
    """Result of resolving a pending approval request."""
    session_id: str
    request_id: str
    approved: bool
    result: ToolExecutionResult
    continuation: TurnOutcome | None = None
    continuation_error: str = ""


class SessionOrchestrator:
    """Runs the per-message state machine for every session."""

    def __init__(
        self,
        registry: ToolRegistry,
        engine: ToolExecutionEngine,
        classifier: RiskClassifier,
        config: PilotConfig | None = None,
    ):
        self._registry = registry
        self._engine = engine
        self._classifier = classifier
        self._max_model_turns = config.max_model_turns if config else 10
        self._approval_timeout = config.approval_timeout_seconds if config else None
        self._reject_on_abandon = config.reject_on_abandon if config else True
        self._sessions: dict[str, Session] = {}

    # ─── Sessions ────────────────────────────────────────────

    def create_session(self, session_id: str | None = None) -> Session:
        if session_id is not None and session_id in self._sessions:
            raise ValueError(f"Session '{session_id}' already exists")
        session = Session(session_id, approval_expiry=self._approval_timeout)
        self._sessions[session.id] = session
        logger.info("Session created", extra={"session_id": session.id})
        return session

    def get_session(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session '{session_id}'") from None

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    async def close_session(self, session_id: str) -> RejectionNotice | None:
        """Drop a session, rejecting its pending approval if configured to."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        async with session.lock:
            session.closed = True
            _cancel_expiry(session)
            notice = None
            if self._reject_on_abandon:
                notice = session.gate.abandon()
                if notice is not None:
                    self._fold_rejection(session, notice)
            session.queue.clear()
            session.transition(SessionState.IDLE)
        logger.info("Session closed", extra={"session_id": session_id})
        return notice

    # ─── Commands ────────────────────────────────────────────

    async def process_message(self, session: Session, text: str, provider: LLMProvider) -> TurnOutcome:
        """Append operator input and run the model loop until it settles.

        Raises:
            AlreadyPendingError: an approval is still outstanding.
            ModelError: the model call failed (the session stays usable).
        """
        async with session.lock:
            pending = session.gate.pending
            if pending is not None:
                raise AlreadyPendingError(pending.id, session.id)
            session.provider = provider
            session.model_turns = 0
            session.add_operator(text)
            return await self._run(session)

    async def resolve_approval(
        self,
        session: Session,
        approved: bool,
        *,
        request_id: str | None = None,
        tool_name: str | None = None,
        arguments: dict[str, Any] | None = None,
        reason: str = "",
    ) -> ApprovalOutcome:
        """Apply the operator's decision and continue the suspended turn.

        The pending request is addressed either by ``request_id`` or by
        the exact tool call (``tool_name`` + ``arguments``).

        Raises:
            UnknownRequestError: nothing matching is pending.
        """
        async with session.lock:
            pending = session.gate.pending
            if pending is None:
                raise UnknownRequestError("No approval request is pending", request_id=request_id or "")
            if request_id is not None:
                decision = session.gate.resolve(request_id, approved, reason)
            elif tool_name is not None:
                decision = session.gate.resolve_matching(tool_name, arguments or {}, approved, reason)
            else:
                raise UnknownRequestError("An approval decision needs a request id or a tool call")
            _cancel_expiry(session)

            if isinstance(decision, RejectionNotice):
                session.transition(SessionState.TOOL_REJECTED)
                result = self._fold_rejection(session, decision)
            else:
                result = await self._execute(session, decision)

            outcome = ApprovalOutcome(
                session_id=session.id,
                request_id=pending.id,
                approved=approved,
                result=result,
            )
            outcome.continuation, outcome.continuation_error = await self._continue(session)
            return outcome

    def system_prompt(self) -> str:
        """System prompt listing the current tool catalogue."""
        tools = ",\n".join(
            json.dumps(tool.to_schema(), ensure_ascii=False) for tool in self._registry.list()
        )
        return SYSTEM_PROMPT_TEMPLATE.format(tools=tools, search_tool=SEARCH_TOOL_NAME)

    # ─── Loop ────────────────────────────────────────────────

    async def _continue(self, session: Session) -> tuple[TurnOutcome | None, str]:
        """Resume the model loop after a decision; a model failure is returned, not raised."""
        session.model_turns = 0
        try:
            return await self._run(session), ""
        except ModelError as e:
            return None, str(e)

    async def _expire(self, session: Session, request_id: str) -> None:
        """Reject ``request_id`` as expired if the operator has not decided in time."""
        await asyncio.sleep(self._approval_timeout)
        async with session.lock:
            pending = session.gate.pending
            if session.closed or pending is None or pending.id != request_id:
                return
            session.expiry_task = None
            notice = session.gate.expire(request_id)
            session.transition(SessionState.TOOL_REJECTED)
            self._fold_rejection(session, notice)
            await self._continue(session)

    async def _run(self, session: Session) -> TurnOutcome:
        while True:
            suspended = await self._drain_queue(session)
            if suspended is not None:
                return suspended

            if session.model_turns >= self._max_model_turns:
                notice = f"Stopped after {self._max_model_turns} model turns without a final answer."
                session.add_assistant(notice)
                session.last_reply = notice
                session.transition(SessionState.IDLE)
                logger.warning("Model turn limit reached", extra={"session_id": session.id})
                return TurnOutcome(session_id=session.id, status=TurnStatus.TURN_LIMIT, reply=notice)

            response = await self._call_model(session)

            if not response.has_tool_use:
                session.transition(SessionState.FINAL_ANSWER)
                reply = response.text
                session.add_assistant(reply)
                session.last_reply = reply
                session.transition(SessionState.IDLE)
                return TurnOutcome(session_id=session.id, status=TurnStatus.FINAL_ANSWER, reply=reply)

            session.transition(SessionState.TOOL_REQUESTED)
            message_id = f"msg-{uuid.uuid4().hex[:8]}"
            calls = tuple(
                ToolCall(
                    tool_name=block.tool_name,
                    arguments=block.tool_input,
                    tool_use_id=block.tool_use_id or f"toolu_{uuid.uuid4().hex[:12]}",
                    message_id=message_id,
                )
                for block in response.tool_calls
            )
            session.append(
                Message(id=message_id, role=Role.ASSISTANT, content=response.text, tool_calls=calls)
            )
            session.queue.extend(calls)
            logger.info(
                "Model requested %d tool call(s)",
                len(calls),
                extra={"session_id": session.id, "count": len(calls)},
            )

    async def _drain_queue(self, session: Session) -> TurnOutcome | None:
        """Process queued calls in order; stop at the first one needing approval."""
        while session.queue:
            call = session.queue.popleft()
            session.transition(SessionState.RISK_CHECK)

            try:
                self._engine.validate(call)
            except SchemaValidationError as e:
                self._fold_result(session, call, _schema_failure(call, e))
                continue

            tier = self._classifier.classify_call(call)
            logger.info(
                "Tool call classified",
                extra={
                    "session_id": session.id,
                    "tool_name": call.tool_name,
                    "risk_tier": tier.value,
                },
            )
            if tier is RiskTier.SAFE:
                await self._execute(session, call)
                continue

            session.transition(SessionState.AWAITING_APPROVAL)
            request = session.gate.request(call, justification=self._classifier.explain(call.tool_name))
            if self._approval_timeout is not None:
                session.expiry_task = asyncio.create_task(self._expire(session, request.id))
            return TurnOutcome(
                session_id=session.id,
                status=TurnStatus.PENDING_APPROVAL,
                approval=request,
            )
        return None

    async def _call_model(self, session: Session) -> LLMResponse:
        session.transition(SessionState.MODEL_PENDING)
        session.model_turns += 1
        provider = session.provider
        if provider is None:
            raise ModelError("none", "no model provider for this session")

        tools = self._registry.schemas()
        try:
            return await provider.create_message(
                session.provider_messages(),
                system=self.system_prompt(),
                tools=tools or None,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, ModelError) else ModelError(
                getattr(provider, "name", type(provider).__name__), f"{type(e).__name__}: {e}"
            )
            notice = f"[model error] {error}"
            session.add_assistant(notice)
            session.last_reply = notice
            session.transition(SessionState.IDLE)
            logger.error(
                "Model call failed",
                extra={"session_id": session.id, "provider": error.provider_name},
            )
            if error is e:
                raise
            raise error from e

    async def _execute(self, session: Session, call: ToolCall) -> ToolExecutionResult:
        session.transition(SessionState.EXECUTING)
        try:
            result = await self._engine.execute(call)
        except SchemaValidationError as e:
            # The registry can change between the risk check and dispatch.
            result = _schema_failure(call, e)
        self._fold_result(session, call, result)
        return result

    def _fold_rejection(self, session: Session, notice: RejectionNotice) -> ToolExecutionResult:
        result = ToolExecutionResult(
            tool_name=notice.tool_call.tool_name,
            success=False,
            failure_reason=FailureReason.REJECTED,
            error=notice.reason,
        )
        self._fold_result(session, notice.tool_call, result)
        return result

    def _fold_result(self, session: Session, call: ToolCall, result: ToolExecutionResult) -> None:
        session.add_tool_result(
            call,
            result.render(self._engine.max_output_chars),
            is_error=not result.success,
        )


def _cancel_expiry(session: Session) -> None:
    task, session.expiry_task = session.expiry_task, None
    if task is not None and task is not asyncio.current_task() and not task.done():
        task.cancel()


def _schema_failure(call: ToolCall, error: SchemaValidationError) -> ToolExecutionResult:
    return ToolExecutionResult(
        tool_name=call.tool_name,
        success=False,
        failure_reason=FailureReason.SCHEMA_VALIDATION,
        error=str(error),
    )
