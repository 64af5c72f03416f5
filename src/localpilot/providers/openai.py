"""
LocalPilot OpenAI Provider

Wraps the OpenAI chat completions API behind the unified LLMProvider
interface. Also covers OpenAI-compatible endpoints (local servers,
Azure, Together, Groq, ...) via base_url.

Conversations arrive in Anthropic message format and are converted:
assistant tool_use blocks become ``tool_calls``; each tool_result block
becomes its own ``role: tool`` message.
"""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI

from localpilot.providers.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    ProviderCapability,
    ProviderConfig,
)

_STOP_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "length": "max_tokens",
    "content_filter": "end_turn",
}


class OpenAIProvider(LLMProvider):
    """OpenAI and OpenAI-compatible chat completion endpoints."""

    DEFAULT_MODEL = "gpt-4o"

    capabilities = frozenset({ProviderCapability.TOOL_USE, ProviderCapability.SYSTEM_PROMPT})

    def __init__(self, config: ProviderConfig | None = None, client: AsyncOpenAI | None = None):
        config = config or ProviderConfig()
        if not config.model:
            config = config.model_copy(update={"model": self.DEFAULT_MODEL})
        super().__init__(config)
        self._client = client or self._create_client()

    def _create_client(self) -> AsyncOpenAI:
        kwargs: dict[str, Any] = {"timeout": self._config.timeout_seconds, "max_retries": 0}
        if self._config.api_key:
            kwargs["api_key"] = self._config.secret()
        if self._config.base_url:
            kwargs["base_url"] = self._config.base_url
        return AsyncOpenAI(**kwargs)

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        system: str | None,
        tools: list[dict] | None,
        temperature: float | None,
    ) -> LLMResponse:
        chat: list[dict[str, Any]] = [{"role": "system", "content": system}] if system else []
        for msg in messages:
            chat.extend(self._convert_message(msg))

        request: dict[str, Any] = {"model": self.model, "messages": chat, "max_tokens": max_tokens}
        if tools:
            request["tools"] = self._convert_tools(tools)
        if temperature is not None:
            request["temperature"] = temperature

        return self._to_response(await self._client.chat.completions.create(**request))

    @staticmethod
    def _convert_message(msg: dict[str, Any]) -> list[dict[str, Any]]:
        """Convert one Anthropic-style message into one or more OpenAI messages."""
        content = msg.get("content", "")
        role = msg.get("role", "user")

        if not isinstance(content, list):
            return [{"role": role, "content": str(content)}]

        if role == "user":
            converted: list[dict[str, Any]] = []
            texts: list[str] = []
            for block in content:
                if block.get("type") == "tool_result":
                    converted.append({
                        "role": "tool",
                        "tool_call_id": block.get("tool_use_id", ""),
                        "content": str(block.get("content", "")),
                    })
                elif block.get("type") == "text":
                    texts.append(block.get("text", ""))
            if texts:
                converted.append({"role": "user", "content": "\n".join(texts)})
            return converted

        text_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        for block in content:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append({
                    "id": block.get("id", ""),
                    "type": "function",
                    "function": {
                        "name": block.get("name", ""),
                        "arguments": json.dumps(block.get("input", {})),
                    },
                })
        result: dict[str, Any] = {
            "role": "assistant",
            "content": "\n".join(text_parts) if text_parts else None,
        }
        if tool_calls:
            result["tool_calls"] = tool_calls
        return [result]

    @staticmethod
    def _convert_tools(tools: list[dict]) -> list[dict]:
        """Anthropic tool schemas as OpenAI function tools."""
        functions = []
        for tool in tools:
            function = {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
            }
            functions.append({"type": "function", "function": function})
        return functions

    @staticmethod
    def _to_response(completion: Any) -> LLMResponse:
        """Normalize a chat completion into LLMResponse (first choice only)."""
        if not completion.choices:
            return LLMResponse()
        choice = completion.choices[0]
        message = choice.message

        blocks = [ContentBlock(text=message.content)] if message.content else []
        blocks.extend(_tool_use_block(call) for call in message.tool_calls or [])

        usage = completion.usage
        return LLMResponse(
            content=blocks,
            stop_reason=_STOP_REASONS.get(choice.finish_reason or "stop", "end_turn"),
            model=completion.model or "",
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


def _tool_use_block(call: Any) -> ContentBlock:
    raw = call.function.arguments or "{}"
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError:
        # Keep what the model sent; it only fails validation if the schema
        # requires properties or forbids extra ones.
        arguments = {"_raw": raw}
    if not isinstance(arguments, dict):
        arguments = {"_value": arguments}
    return ContentBlock(
        type="tool_use",
        tool_name=call.function.name,
        tool_input=arguments,
        tool_use_id=call.id,
    )
