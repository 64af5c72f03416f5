"""
LocalPilot — Safety-Gated Local Tool Orchestration

Usage:
    from localpilot import LocalPilot, ModelCredentials

    pilot = LocalPilot()
    await pilot.init()
    reply = await pilot.process_message(
        "Find my 2024 invoice",
        ModelCredentials(api_key="...", model="claude-sonnet-4-20250514"),
    )
    if reply == "PENDING_APPROVAL":
        request = pilot.pending_approval()
        await pilot.approve_tool_call(request["tool_name"], json.dumps(request["arguments"]))
"""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from localpilot.config import ModelCredentials, PilotConfig, ToolServerSpec
from localpilot.core.models import (
    ApprovalRequest,
    FileIndexEntry,
    Message,
    RiskTier,
    SessionState,
    ToolCall,
    ToolDescriptor,
    ToolExecutionResult,
)
from localpilot.engine.orchestrator import (
    PENDING_APPROVAL,
    ApprovalOutcome,
    SessionOrchestrator,
    TurnOutcome,
    TurnStatus,
)
from localpilot.engine.session import Session
from localpilot.exceptions import (
    AlreadyPendingError,
    IndexRefreshError,
    LocalPilotError,
    ModelError,
    SchemaValidationError,
    ToolServerConnectionError,
    UnknownRequestError,
)
from localpilot.index.file_index import FileIndex, FileIndexToolServer, default_roots
from localpilot.providers import LLMProvider, create_provider
from localpilot.safety.approval import ApprovalGate
from localpilot.safety.risk import RiskClassifier
from localpilot.tools.executor import ToolExecutionEngine
from localpilot.tools.protocol import ToolServer
from localpilot.tools.registry import ToolRegistry
from localpilot.tools.stdio import StdioToolServer

__version__ = "0.1.0"

__all__ = [
    # Main API
    "LocalPilot",
    "__version__",
    "PENDING_APPROVAL",
    # Config
    "ModelCredentials",
    "PilotConfig",
    "ToolServerSpec",
    # Models
    "ApprovalRequest",
    "FileIndexEntry",
    "Message",
    "RiskTier",
    "SessionState",
    "ToolCall",
    "ToolDescriptor",
    "ToolExecutionResult",
    # Engine
    "ApprovalOutcome",
    "Session",
    "SessionOrchestrator",
    "TurnOutcome",
    "TurnStatus",
    # Safety
    "ApprovalGate",
    "RiskClassifier",
    # Tools
    "StdioToolServer",
    "ToolExecutionEngine",
    "ToolRegistry",
    "ToolServer",
    # Index
    "FileIndex",
    # Errors
    "AlreadyPendingError",
    "IndexRefreshError",
    "LocalPilotError",
    "ModelError",
    "SchemaValidationError",
    "ToolServerConnectionError",
    "UnknownRequestError",
]

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ModelCredentials], LLMProvider]


class LocalPilot:
    """The command surface a UI talks to.

    Wires the pieces together:
    1. Tool servers (configured stdio servers plus the file-index tool)
    2. ToolRegistry discovery
    3. RiskClassifier and per-session ApprovalGate
    4. ToolExecutionEngine for validated, bounded dispatch
    5. SessionOrchestrator running the model loop

    Commands that omit ``session_id`` act on a default session created
    on first use, which is all a single-conversation UI needs.
    """

    def __init__(
        self,
        config: PilotConfig | None = None,
        servers: list[ToolServer] | None = None,
        file_index: FileIndex | None = None,
        provider_factory: ProviderFactory | None = None,
        include_file_index: bool = True,
    ):
        """Initialize LocalPilot.

        Args:
            config: Runtime settings. Defaults to PilotConfig().
            servers: Tool servers to use instead of the ones in config.
            file_index: Index instance to share; a fresh one if None.
            provider_factory: Builds an LLMProvider from per-message
                credentials. Defaults to create_provider().
            include_file_index: Expose the index as the search_local_files tool.
        """
        self._config = config or PilotConfig()
        self._index = file_index or FileIndex()

        if servers is None:
            servers = [
                StdioToolServer(
                    spec.name,
                    spec.command,
                    env=spec.env,
                    request_timeout=self._config.tool_timeout_seconds,
                    cwd=spec.cwd,
                )
                for spec in self._config.tool_servers
            ]
        servers = list(servers)
        if include_file_index:
            # First in order, so a configured server may override the tool.
            servers.insert(0, FileIndexToolServer(self._index))

        self._registry = ToolRegistry(servers, discovery_timeout=self._config.discovery_timeout_seconds)
        self._classifier = RiskClassifier(self._config.safe_tools)
        self._engine = ToolExecutionEngine(
            self._registry,
            timeout_seconds=self._config.tool_timeout_seconds,
            max_output_chars=self._config.max_output_chars,
        )
        self._orchestrator = SessionOrchestrator(
            self._registry, self._engine, self._classifier, self._config
        )
        self._provider_factory = provider_factory or self._create_provider
        self._default_session_id: str | None = None
        self._refresh_task: asyncio.Task | None = None

    @property
    def config(self) -> PilotConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def orchestrator(self) -> SessionOrchestrator:
        return self._orchestrator

    @property
    def file_index(self) -> FileIndex:
        return self._index

    @property
    def classifier(self) -> RiskClassifier:
        return self._classifier

    async def __aenter__(self) -> "LocalPilot":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ─── Commands ────────────────────────────────────────────

    async def init(self) -> str:
        """Connect to the tool servers and discover their tools.

        Raises:
            ToolServerConnectionError: no tool server responded.
        """
        tools = await self._registry.discover()
        return f"Tool servers initialized successfully: {len(tools)} tools available"

    def list_tools(self) -> list[dict[str, Any]]:
        """Discovered tools as name/description/input_schema dicts."""
        return [tool.to_schema() for tool in self._registry.list()]

    async def process_message(
        self,
        text: str,
        credentials: ModelCredentials | dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Run one operator message through the model loop.

        Returns the assistant reply, or ``"PENDING_APPROVAL"`` when a
        dangerous tool call is waiting for the operator.
        """
        provider = self._provider_factory(self._merge_credentials(credentials))
        session = self._session(session_id, create=True)
        outcome = await self._orchestrator.process_message(session, text, provider)
        return outcome.text

    async def approve_tool_call(
        self,
        tool_name: str,
        arguments_json: str | dict[str, Any],
        session_id: str | None = None,
    ) -> str:
        """Approve the pending call that exactly matches ``tool_name`` and its arguments.

        Returns the execution result text. The model's follow-up reply is
        available from last_reply().

        Raises:
            UnknownRequestError: no pending request matches.
            SchemaValidationError: ``arguments_json`` is not a JSON object.
        """
        arguments = _parse_arguments(tool_name, arguments_json)
        outcome = await self._orchestrator.resolve_approval(
            self._session(session_id), True, tool_name=tool_name, arguments=arguments
        )
        return self._approval_text(outcome, tool_name)

    async def reject_tool_call(
        self,
        tool_name: str,
        arguments_json: str | dict[str, Any],
        session_id: str | None = None,
        reason: str = "",
    ) -> str:
        """Reject the pending call; the model is told it was refused."""
        arguments = _parse_arguments(tool_name, arguments_json)
        outcome = await self._orchestrator.resolve_approval(
            self._session(session_id), False, tool_name=tool_name, arguments=arguments, reason=reason
        )
        return self._approval_text(outcome, tool_name)

    def search_files(self, query: str, limit: int = 50) -> list[dict[str, Any]]:
        """Search the local file index."""
        return [entry.summary() for entry in self._index.search(query, limit=limit)]

    async def refresh_file_index(
        self,
        roots: list[str | Path] | None = None,
        background: bool = False,
    ) -> str:
        """Rebuild the file index from ``roots`` (config or default folders if None).

        With ``background=True`` the walk is scheduled and this returns
        immediately; searches keep using the previous snapshot meanwhile.

        Raises:
            IndexRefreshError: no root was readable (foreground only).
        """
        root_paths = [Path(r).expanduser() for r in roots or self._config.index_roots or default_roots()]
        if background:
            if self._refresh_task is not None and not self._refresh_task.done():
                return "File index refresh already in progress"
            self._refresh_task = asyncio.create_task(self._background_refresh(root_paths))
            return "File index refresh started"

        count = await self._index.refresh_async(root_paths)
        return f"File index refreshed successfully: {count} entries"

    def pending_approval(self, session_id: str | None = None) -> dict[str, Any] | None:
        """The outstanding approval request of a session, if any."""
        session = self._find_session(session_id)
        if session is None or session.gate.pending is None:
            return None
        return session.gate.pending.summary()

    def last_reply(self, session_id: str | None = None) -> str | None:
        """The latest assistant reply of a session."""
        session = self._find_session(session_id)
        return session.last_reply if session else None

    async def close_session(self, session_id: str | None = None) -> None:
        target = session_id or self._default_session_id
        if target is None:
            return
        await self._orchestrator.close_session(target)
        if target == self._default_session_id:
            self._default_session_id = None

    async def shutdown(self) -> None:
        """Stop background work, close every session and tool server."""
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        for session in self._orchestrator.sessions:
            await self._orchestrator.close_session(session.id)
        self._default_session_id = None
        await self._registry.close()

    # ─── Helpers ─────────────────────────────────────────────

    def _session(self, session_id: str | None, create: bool = False) -> Session:
        if session_id is None:
            if self._default_session_id is None:
                if not create:
                    raise UnknownRequestError("No approval request is pending")
                self._default_session_id = self._orchestrator.create_session().id
            return self._orchestrator.get_session(self._default_session_id)
        try:
            return self._orchestrator.get_session(session_id)
        except KeyError:
            if not create:
                raise UnknownRequestError(
                    f"No approval request is pending in session '{session_id}'"
                ) from None
            return self._orchestrator.create_session(session_id)

    def _find_session(self, session_id: str | None) -> Session | None:
        target = session_id or self._default_session_id
        if target is None:
            return None
        try:
            return self._orchestrator.get_session(target)
        except KeyError:
            return None

    def _merge_credentials(self, credentials: ModelCredentials | dict[str, Any] | None) -> ModelCredentials:
        if credentials is None:
            return self._config.credentials()
        if isinstance(credentials, dict):
            credentials = ModelCredentials.model_validate(credentials)
        defaults = self._config.credentials()
        return ModelCredentials(
            api_key=credentials.api_key or defaults.api_key,
            base_url=credentials.base_url or defaults.base_url,
            model=credentials.model or defaults.model,
            provider=credentials.provider or defaults.provider,
        )

    def _create_provider(self, credentials: ModelCredentials) -> LLMProvider:
        return create_provider(
            credentials.provider,
            api_key=credentials.api_key.get_secret_value() if credentials.api_key else None,
            model=credentials.model,
            base_url=credentials.base_url,
        )

    def _approval_text(self, outcome: ApprovalOutcome, tool_name: str) -> str:
        rendered = outcome.result.render(self._engine.max_output_chars)
        if not outcome.approved:
            text = f"Tool call rejected: {tool_name}"
        elif outcome.result.success:
            text = f"Tool call approved and executed: {tool_name}\n{rendered}"
        else:
            text = f"Tool call failed: {tool_name}\n{rendered}"
        if outcome.continuation_error:
            text += f"\nThe model could not continue: {outcome.continuation_error}"
        return text

    async def _background_refresh(self, roots: list[Path]) -> None:
        try:
            await self._index.refresh_async(roots)
        except IndexRefreshError as e:
            logger.error("Background index refresh failed: %s", e, extra={"count": len(roots)})


def _parse_arguments(tool_name: str, arguments_json: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(arguments_json, dict):
        return arguments_json
    try:
        arguments = json.loads(arguments_json or "{}")
    except json.JSONDecodeError as e:
        raise SchemaValidationError(tool_name, [f"$: arguments are not valid JSON ({e.msg})"]) from e
    if not isinstance(arguments, dict):
        raise SchemaValidationError(tool_name, ["$: arguments must be a JSON object"])
    return arguments
