"""Tests for PilotConfig loading and redaction."""

import json
import os

import pytest
from pydantic import ValidationError

from localpilot.config import ModelCredentials, PilotConfig, ToolServerSpec
from localpilot.safety.risk import DEFAULT_SAFE_TOOLS


class TestDefaults:
    def test_defaults(self):
        config = PilotConfig()
        assert config.tool_timeout_seconds == 30.0
        assert config.max_model_turns == 10
        assert config.approval_timeout_seconds is None
        assert config.reject_on_abandon is True
        assert set(config.safe_tools) == DEFAULT_SAFE_TOOLS
        assert config.tool_servers == []

    def test_bounds_enforced(self):
        with pytest.raises(ValidationError):
            PilotConfig(tool_timeout_seconds=0)
        with pytest.raises(ValidationError):
            PilotConfig(max_model_turns=0)

    def test_credentials(self):
        config = PilotConfig(api_key="sk-1", model="claude-x", provider="claude")
        credentials = config.credentials()
        assert isinstance(credentials, ModelCredentials)
        assert credentials.api_key.get_secret_value() == "sk-1"
        assert credentials.model == "claude-x"


class TestRedaction:
    def test_api_key_masked(self):
        config = PilotConfig(api_key="sk-secret")
        data = config.redacted()
        assert data["api_key"] == "***"
        assert "sk-secret" not in json.dumps(data)
        assert "sk-secret" not in repr(config)

    def test_no_api_key(self):
        assert PilotConfig().redacted()["api_key"] is None

    def test_server_env_masked(self):
        config = PilotConfig(
            tool_servers=[ToolServerSpec(name="gh", command=["gh-mcp"], env={"GITHUB_TOKEN": "ghp_x"})]
        )
        [server] = config.redacted()["tool_servers"]
        assert server["env"] == {"GITHUB_TOKEN": "***"}
        assert server["command"] == ["gh-mcp"]


class TestFromEnv:
    def test_empty_environment(self):
        config = PilotConfig.from_env({})
        assert config == PilotConfig()

    def test_values(self):
        config = PilotConfig.from_env(
            {
                "LOCALPILOT_API_KEY": "sk-env",
                "LOCALPILOT_PROVIDER": "openai",
                "LOCALPILOT_BASE_URL": "http://localhost:11434/v1",
                "LOCALPILOT_TOOL_TIMEOUT_SECONDS": "12.5",
                "LOCALPILOT_APPROVAL_TIMEOUT_SECONDS": "300",
                "LOCALPILOT_MAX_MODEL_TURNS": "4",
                "LOCALPILOT_REJECT_ON_ABANDON": "no",
                "LOCALPILOT_LOG_JSON": "true",
                "LOCALPILOT_SAFE_TOOLS": "read_file, list_directory",
                "LOCALPILOT_INDEX_ROOTS": os.pathsep.join(["/data/a", "/data/b"]),
            }
        )
        assert config.api_key.get_secret_value() == "sk-env"
        assert config.provider == "openai"
        assert config.base_url == "http://localhost:11434/v1"
        assert config.tool_timeout_seconds == 12.5
        assert config.approval_timeout_seconds == 300.0
        assert config.max_model_turns == 4
        assert config.reject_on_abandon is False
        assert config.log_json is True
        assert config.safe_tools == ["read_file", "list_directory"]
        assert config.index_roots == ["/data/a", "/data/b"]

    def test_provider_key_fallback(self):
        assert PilotConfig.from_env({"ANTHROPIC_API_KEY": "sk-ant"}).api_key.get_secret_value() == "sk-ant"
        assert PilotConfig.from_env({"OPENAI_API_KEY": "sk-oai"}).api_key.get_secret_value() == "sk-oai"

    def test_unparseable_values_ignored(self):
        config = PilotConfig.from_env(
            {
                "LOCALPILOT_TOOL_TIMEOUT_SECONDS": "soon",
                "LOCALPILOT_MAX_MODEL_TURNS": "many",
                "LOCALPILOT_REJECT_ON_ABANDON": "maybe",
            }
        )
        assert config.tool_timeout_seconds == 30.0
        assert config.max_model_turns == 10
        assert config.reject_on_abandon is True

    def test_config_file(self, tmp_path):
        path = tmp_path / "localpilot.json"
        path.write_text(
            json.dumps(
                {
                    "tool_servers": [{"name": "fs", "command": ["mcp-fs", "~"]}],
                    "safe_tools": ["read_file"],
                    "max_model_turns": 3,
                }
            )
        )
        config = PilotConfig.from_env(
            {"LOCALPILOT_CONFIG_FILE": str(path), "LOCALPILOT_MAX_MODEL_TURNS": "5"}
        )
        [server] = config.tool_servers
        assert server.name == "fs"
        assert server.command == ["mcp-fs", "~"]
        assert config.safe_tools == ["read_file"]
        # Environment wins over the file.
        assert config.max_model_turns == 5

    def test_missing_config_file(self, tmp_path):
        config = PilotConfig.from_env({"LOCALPILOT_CONFIG_FILE": str(tmp_path / "nope.json")})
        assert config.tool_servers == []

    def test_invalid_config_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        assert PilotConfig.from_env({"LOCALPILOT_CONFIG_FILE": str(path)}).tool_servers == []
