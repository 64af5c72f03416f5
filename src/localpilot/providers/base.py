"""
LocalPilot LLM Provider Base

Abstract interface for model providers. The orchestrator treats the
model as an opaque request/response boundary: it hands over the
conversation (Anthropic-style message dicts) plus tool schemas and gets
back a unified LLMResponse.

Providers are async. Transient failures are retried with exponential
backoff in the base class; whatever still fails afterwards is raised as
ModelError, the only error the orchestrator expects from a model call.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from localpilot.exceptions import ModelError

logger = logging.getLogger(__name__)


class ContentBlock(BaseModel):
    """One text or tool_use block of a model reply, provider-neutral."""
    type: str = "text"
    text: str = ""
    tool_name: str = ""
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str = ""


class LLMResponse(BaseModel):
    """Unified response from any LLM provider."""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str = "end_turn"
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def text(self) -> str:
        """Concatenated text from all text blocks."""
        return "".join(b.text for b in self.content if b.type == "text")

    @property
    def tool_calls(self) -> list[ContentBlock]:
        """All tool_use blocks, in the order the model returned them."""
        return [b for b in self.content if b.type == "tool_use"]

    @property
    def has_tool_use(self) -> bool:
        return any(b.type == "tool_use" for b in self.content)


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider.

    The API key is a SecretStr so it never shows up in reprs or logs.
    """
    api_key: SecretStr | None = None
    model: str = ""
    base_url: str | None = None
    max_retries: int = 3
    timeout_seconds: float = 60.0
    retry_base_delay: float = 1.0  # exponential backoff base (1s, 2s, 4s)
    max_tokens: int = 1024
    temperature: float | None = 0.7

    def secret(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key else None


class ProviderCapability(str, Enum):
    """Capabilities that providers may support."""
    TOOL_USE = "TOOL_USE"
    STREAMING = "STREAMING"
    SYSTEM_PROMPT = "SYSTEM_PROMPT"


class LLMProvider(ABC):
    """Base class for model providers.

    Subclasses declare their ``capabilities`` and implement _complete(),
    which performs exactly one API call. create_message() wraps it with
    retries and turns the last failure into ModelError.
    """

    capabilities: frozenset[ProviderCapability] = frozenset()

    def __init__(self, config: ProviderConfig | None = None):
        self._config = config or ProviderConfig()

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def supports(self, capability: ProviderCapability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def _complete(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        system: str | None,
        tools: list[dict] | None,
        temperature: float | None,
    ) -> LLMResponse:
        """One call to the provider API, no retries."""
        ...

    def _retry_delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self._config.retry_base_delay * (2 ** (attempt - 1))

    async def create_message(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int | None = None,
        system: str | None = None,
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Send the conversation to the model, retrying transient failures.

        Args:
            messages: Anthropic-style message dicts (role + content).
            max_tokens: Response token limit (config default if None).
            system: Optional system prompt.
            tools: Optional tool schemas for tool use.
            temperature: Optional temperature override.

        Raises:
            ModelError: after the last attempt fails.
        """
        attempts = max(self._config.max_retries, 1)
        if temperature is None:
            temperature = self._config.temperature
        error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._complete(
                    messages,
                    max_tokens=max_tokens or self._config.max_tokens,
                    system=system,
                    tools=tools,
                    temperature=temperature,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
                logger.warning(
                    "Model call failed (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    type(e).__name__,
                    extra={"provider": self.name},
                )
                if attempt < attempts:
                    await asyncio.sleep(self._retry_delay(attempt))

        raise ModelError(
            self.name,
            f"failed after {attempts} attempt(s): {type(error).__name__}: {error}",
        ) from error
