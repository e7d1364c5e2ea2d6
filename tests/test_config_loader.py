"""Tests for YAML configuration loading with env interpolation."""

import sys

import pytest

from arcollect.config_loader import load_app_config, parse_app_config, resolve_env_vars
from arcollect.models import AppConfig


class TestResolveEnvVars:
    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("ARC_TEST_MODEL", "gpt-4o-mini")
        assert resolve_env_vars("${ARC_TEST_MODEL}") == "gpt-4o-mini"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("ARC_TEST_UNSET", raising=False)
        assert resolve_env_vars("${ARC_TEST_UNSET:-15}") == "15"

    def test_unset_without_default_is_empty(self, monkeypatch):
        monkeypatch.delenv("ARC_TEST_UNSET", raising=False)
        assert resolve_env_vars("x${ARC_TEST_UNSET}y") == "xy"

    def test_embedded_in_text(self, monkeypatch):
        monkeypatch.setenv("ARC_TEST_HOST", "erp.example.com")
        assert resolve_env_vars("https://${ARC_TEST_HOST}/api") == "https://erp.example.com/api"


class TestParseAppConfig:
    def test_empty_gives_defaults(self):
        config = parse_app_config(None)
        assert config == AppConfig()
        assert config.orchestrator.max_iterations == 15
        assert config.orchestrator.max_conversation_messages == 200
        assert config.erp.demo_mode is True
        assert config.tool_server.command == [sys.executable, "-m", "arcollect.provider"]

    def test_values_are_typed(self, monkeypatch):
        monkeypatch.setenv("ARC_TEST_ITER", "7")
        config = parse_app_config(
            {
                "orchestrator": {
                    "max_iterations": "${ARC_TEST_ITER:-15}",
                    "temperature": "0.3",
                },
                "erp": {"demo_mode": "false", "timeout": "10"},
                "server": {"port": "9000"},
                "langfuse": {"public_key": "pk", "secret_key": "sk", "auth_check": "false"},
                "messaging": {"demo_mode": "false", "sender": "ar@example.com"},
            }
        )
        assert config.orchestrator.max_iterations == 7
        assert config.orchestrator.temperature == 0.3
        assert config.erp.demo_mode is False
        assert config.erp.timeout == 10
        assert config.server.port == 9000
        assert config.langfuse.is_configured
        assert config.langfuse.auth_check is False
        assert config.messaging.demo_mode is False
        assert config.messaging.sender == "ar@example.com"

    def test_empty_temperature_means_unset(self):
        config = parse_app_config({"orchestrator": {"temperature": ""}})
        assert config.orchestrator.temperature is None

    def test_tool_server_command_string_is_split(self):
        config = parse_app_config(
            {"tool_server": {"command": "/opt/venv/bin/python -m arcollect.provider", "shutdown_timeout": "2"}}
        )
        assert config.tool_server.command == ["/opt/venv/bin/python", "-m", "arcollect.provider"]
        server_config = config.tool_server.to_server_config()
        assert server_config.command == config.tool_server.command
        assert server_config.shutdown_timeout == 2.0

    def test_azure_flag(self):
        config = parse_app_config({"orchestrator": {"azure_endpoint": "https://x.openai.azure.com"}})
        assert config.orchestrator.uses_azure


class TestLoadAppConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_app_config(str(tmp_path / "absent.yaml")) == AppConfig()

    def test_load_from_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ARC_TEST_LEVEL", "DEBUG")
        path = tmp_path / "config.yaml"
        path.write_text(
            "orchestrator:\n"
            "  model: collections-gpt4o\n"
            "logging:\n"
            "  level: ${ARC_TEST_LEVEL:-INFO}\n"
        )
        config = load_app_config(str(path))
        assert config.orchestrator.model == "collections-gpt4o"
        assert config.log_level == "DEBUG"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "other.yaml"
        path.write_text("server:\n  port: 8123\n")
        monkeypatch.setenv("ARCOLLECT_CONFIG_PATH", str(path))
        assert load_app_config().server.port == 8123

    def test_invalid_number_is_value_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("orchestrator:\n  max_iterations: many\n")
        with pytest.raises(ValueError) as exc_info:
            load_app_config(str(path))
        assert str(path) in str(exc_info.value)

    def test_repository_config_loads(self):
        """The shipped config/config.yaml parses with defaults."""
        from arcollect.config_loader import DEFAULT_CONFIG_PATH

        config = load_app_config(str(DEFAULT_CONFIG_PATH))
        assert config.orchestrator.max_iterations >= 1
        assert config.tool_server.command
