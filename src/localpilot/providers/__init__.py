"""
LocalPilot LLM Provider Abstraction

Providers wrap different model APIs (Anthropic, OpenAI and
OpenAI-compatible endpoints) behind a common interface.

Usage:
    from localpilot.providers import create_provider

    provider = create_provider("claude", api_key="...")
    response = await provider.create_message(messages=[...])
"""

from __future__ import annotations

from localpilot.providers.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    ProviderCapability,
    ProviderConfig,
)

__all__ = [
    "ContentBlock",
    "LLMProvider",
    "LLMResponse",
    "ProviderCapability",
    "ProviderConfig",
    "create_provider",
    "infer_provider_name",
]


def infer_provider_name(base_url: str | None) -> str:
    """Pick a provider from the endpoint: Anthropic hosts use Claude, anything else OpenAI-compatible."""
    if not base_url or "anthropic.com" in base_url:
        return "claude"
    return "openai"


def create_provider(
    name: str | None = "claude",
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 60.0,
    max_retries: int = 3,
) -> LLMProvider:
    """Factory for an LLM provider by name ("claude"/"anthropic" or "openai").

    A None name is inferred from ``base_url``.
    """
    name_lower = (name or infer_provider_name(base_url)).lower()
    config = ProviderConfig(
        api_key=api_key,
        model=model or "",
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
    )

    if name_lower in ("claude", "anthropic"):
        from localpilot.providers.claude import ClaudeProvider

        return ClaudeProvider(config)
    if name_lower == "openai":
        from localpilot.providers.openai import OpenAIProvider

        return OpenAIProvider(config)
    raise ValueError(f"Unknown provider: {name}. Supported: claude, openai")
