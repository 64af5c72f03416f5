"""
LocalPilot Claude Provider

Anthropic Messages API via the official SDK (anthropic.AsyncAnthropic).
The conversation is already in Anthropic format, so requests pass
through unchanged; only the response is normalized into LLMResponse.

A custom base_url (proxy or gateway) may be given with or without the
trailing ``/v1``; the SDK adds the version path itself.
"""

from __future__ import annotations

from typing import Any

import anthropic

from localpilot.providers.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    ProviderCapability,
    ProviderConfig,
)


def sdk_base_url(base_url: str | None) -> str | None:
    """Strip a trailing slash and ``/v1`` so the SDK does not double it."""
    if not base_url:
        return None
    return base_url.rstrip("/").removesuffix("/v1") or None


class ClaudeProvider(LLMProvider):
    """Anthropic Claude models. Without an api_key the SDK reads ANTHROPIC_API_KEY."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    capabilities = frozenset({ProviderCapability.TOOL_USE, ProviderCapability.SYSTEM_PROMPT})

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        config = config or ProviderConfig()
        if not config.model:
            config = config.model_copy(update={"model": self.DEFAULT_MODEL})
        super().__init__(config)
        # Retries are done by LLMProvider.create_message.
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.secret(),
            base_url=sdk_base_url(config.base_url),
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        return self._client

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        system: str | None,
        tools: list[dict] | None,
        temperature: float | None,
    ) -> LLMResponse:
        request = self._build_request(messages, max_tokens, system, tools, temperature)
        return self._to_response(await self._client.messages.create(**request))

    def _build_request(
        self,
        messages: list[dict[str, Any]],
        max_tokens: int,
        system: str | None,
        tools: list[dict] | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        optional = {"system": system, "tools": tools, "temperature": temperature}
        request.update({key: value for key, value in optional.items() if value not in (None, "", [])})
        return request

    @staticmethod
    def _to_response(message: Any) -> LLMResponse:
        """Normalize an Anthropic ``Message`` into LLMResponse."""
        blocks = [b for b in map(_content_block, message.content) if b is not None]
        usage = message.usage
        return LLMResponse(
            content=blocks,
            stop_reason=message.stop_reason or "end_turn",
            model=message.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )


def _content_block(block: Any) -> ContentBlock | None:
    # Thinking and other block types are not part of the conversation we keep.
    if block.type == "text":
        return ContentBlock(text=block.text)
    if block.type == "tool_use":
        return ContentBlock(
            type="tool_use",
            tool_name=block.name,
            tool_input=dict(block.input or {}),
            tool_use_id=block.id,
        )
    return None
