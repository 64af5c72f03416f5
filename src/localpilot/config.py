"""
LocalPilot Configuration

Settings are plain pydantic models. from_env() reads ``LOCALPILOT_*``
environment variables and, optionally, a JSON file named by
``LOCALPILOT_CONFIG_FILE`` that lists the tool servers to launch:

    {
      "tool_servers": [
        {"name": "filesystem", "command": ["npx", "@modelcontextprotocol/server-filesystem", "~"]}
      ],
      "safe_tools": ["search_local_files", "read_file"],
      "index_roots": ["~/Documents"]
    }

Environment variables win over the file. Model credentials are passed
through opaquely and held as SecretStr; redacted() is the only view of
the config meant for printing.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from localpilot.safety.risk import DEFAULT_SAFE_TOOLS

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOCALPILOT_"


class ToolServerSpec(BaseModel):
    """How to launch one stdio tool server."""
    name: str
    command: list[str]
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None


class ModelCredentials(BaseModel):
    """Model endpoint and credentials supplied per conversation."""
    api_key: SecretStr | None = None
    base_url: str | None = None
    model: str | None = None
    provider: str | None = None


class PilotConfig(BaseModel):
    """Runtime settings for the orchestration core."""

    provider: str | None = None
    model: str | None = None
    api_key: SecretStr | None = None
    base_url: str | None = None

    tool_servers: list[ToolServerSpec] = Field(default_factory=list)
    tool_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    discovery_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    max_model_turns: int = Field(default=10, ge=1, le=100)
    max_output_chars: int = Field(default=65536, ge=1024)

    # None: an approval request never expires on its own.
    approval_timeout_seconds: float | None = Field(default=None, gt=0)
    reject_on_abandon: bool = True

    safe_tools: list[str] = Field(default_factory=lambda: sorted(DEFAULT_SAFE_TOOLS))
    index_roots: list[str] = Field(default_factory=list)

    log_level: str = "INFO"
    log_json: bool = False

    def credentials(self) -> ModelCredentials:
        """Default model credentials from configuration."""
        return ModelCredentials(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.model,
            provider=self.provider,
        )

    def redacted(self) -> dict[str, Any]:
        """Config as a dict with secrets masked."""
        data = self.model_dump(mode="json")
        data["api_key"] = "***" if self.api_key else None
        for server in data["tool_servers"]:
            server["env"] = {k: "***" for k in server.get("env", {})}
        return data

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> PilotConfig:
        """Build the config from environment variables and the optional JSON file."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}

        config_file = env.get(f"{ENV_PREFIX}CONFIG_FILE")
        if config_file:
            data.update(_load_file_config(config_file))

        api_key = (
            env.get(f"{ENV_PREFIX}API_KEY")
            or env.get("ANTHROPIC_API_KEY")
            or env.get("OPENAI_API_KEY")
        )
        if api_key:
            data["api_key"] = api_key

        for key in ("provider", "model", "base_url", "log_level"):
            value = env.get(f"{ENV_PREFIX}{key.upper()}")
            if value:
                data[key] = value

        for key in (
            "tool_timeout_seconds",
            "discovery_timeout_seconds",
            "approval_timeout_seconds",
        ):
            value = _to_float(env.get(f"{ENV_PREFIX}{key.upper()}"))
            if value is not None:
                data[key] = value

        for key in ("max_model_turns", "max_output_chars"):
            value = _to_int(env.get(f"{ENV_PREFIX}{key.upper()}"))
            if value is not None:
                data[key] = value

        for key in ("reject_on_abandon", "log_json"):
            value = _to_bool(env.get(f"{ENV_PREFIX}{key.upper()}"))
            if value is not None:
                data[key] = value

        safe_tools = env.get(f"{ENV_PREFIX}SAFE_TOOLS")
        if safe_tools:
            data["safe_tools"] = _split(safe_tools, ",")

        index_roots = env.get(f"{ENV_PREFIX}INDEX_ROOTS")
        if index_roots:
            data["index_roots"] = _split(index_roots, os.pathsep)

        return cls.model_validate(data)


def _load_file_config(path_value: str) -> dict[str, Any]:
    path = Path(path_value).expanduser()
    if not path.is_file():
        logger.warning("Config file not found: %s", path)
        return {}
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Config file unreadable: %s (%s)", path, e)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _to_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return None


def _to_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _split(value: str, sep: str) -> list[str]:
    return [part.strip() for part in value.split(sep) if part.strip()]
