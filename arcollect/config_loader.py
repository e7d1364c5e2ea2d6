"""
Configuration loader for arcollect.

Loads configuration from a YAML file with support for
environment variable interpolation.
"""

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import (
    AppConfig,
    ErpConfig,
    LangfuseConfig,
    LoggingConfig,
    MessagingConfig,
    OrchestratorConfig,
    ServerConfig,
    ToolServerSettings,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.  Unset variables without a
    default resolve to an empty string.
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_float(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    return float(value)


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _as_command(value: Any, default: list[str]) -> list[str]:
    """Accept a YAML list or a shell-style command string."""
    if value is None or value == "" or value == []:
        return list(default)
    if isinstance(value, str):
        return shlex.split(value)
    return [str(item) for item in value]


def _parse_orchestrator_config(data: dict) -> OrchestratorConfig:
    defaults = OrchestratorConfig()
    return OrchestratorConfig(
        model=data.get("model") or defaults.model,
        base_url=data.get("base_url") or "",
        api_key=data.get("api_key") or "",
        azure_endpoint=data.get("azure_endpoint") or "",
        azure_api_version=data.get("azure_api_version") or defaults.azure_api_version,
        temperature=_as_float(data.get("temperature"), defaults.temperature),
        max_iterations=_as_int(data.get("max_iterations"), defaults.max_iterations),
        max_conversation_messages=_as_int(
            data.get("max_conversation_messages"), defaults.max_conversation_messages
        ),
        user_email=data.get("user_email") or defaults.user_email,
    )


def _parse_tool_server_config(data: dict) -> ToolServerSettings:
    defaults = ToolServerSettings()
    return ToolServerSettings(
        command=_as_command(data.get("command"), defaults.command),
        shutdown_timeout=_as_float(data.get("shutdown_timeout"), defaults.shutdown_timeout),
    )


def _parse_erp_config(data: dict) -> ErpConfig:
    return ErpConfig(
        demo_mode=_as_bool(data.get("demo_mode"), True),
        api_endpoint=data.get("api_endpoint") or "",
        access_token=data.get("access_token") or "",
        timeout=_as_int(data.get("timeout"), 30),
    )


def _parse_messaging_config(data: dict) -> MessagingConfig:
    return MessagingConfig(
        demo_mode=_as_bool(data.get("demo_mode"), True),
        access_token=data.get("access_token") or "",
        sender=data.get("sender") or "",
        timeout=_as_int(data.get("timeout"), 30),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    return ServerConfig(
        host=data.get("host") or "0.0.0.0",
        port=_as_int(data.get("port"), 8000),
        reload=_as_bool(data.get("reload"), False),
    )


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    return LangfuseConfig(
        public_key=data.get("public_key") or "",
        secret_key=data.get("secret_key") or "",
        host=data.get("host") or "",
        debug=_as_bool(data.get("debug"), False),
        auth_check=_as_bool(data.get("auth_check"), True),
    )


def parse_app_config(raw: Optional[dict]) -> AppConfig:
    """Build an AppConfig from an already-loaded YAML mapping."""
    if not raw:
        return AppConfig()
    raw = _substitute_env_vars_recursive(raw)
    return AppConfig(
        version=str(raw.get("version", "1.0")),
        orchestrator=_parse_orchestrator_config(raw.get("orchestrator") or {}),
        tool_server=_parse_tool_server_config(raw.get("tool_server") or {}),
        erp=_parse_erp_config(raw.get("erp") or {}),
        messaging=_parse_messaging_config(raw.get("messaging") or {}),
        server=_parse_server_config(raw.get("server") or {}),
        logging=LoggingConfig(level=(raw.get("logging") or {}).get("level") or "INFO"),
        langfuse=_parse_langfuse_config(raw.get("langfuse") or {}),
    )


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load the application configuration.

    Args:
        path: Path to the YAML file. If None, uses ARCOLLECT_CONFIG_PATH
              or config/config.yaml next to the package.

    Returns:
        AppConfig; defaults when the file does not exist.
    """
    if path is None:
        path = os.environ.get("ARCOLLECT_CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"Config not found at {config_path}, using defaults")
        return AppConfig()

    logger.debug(f"Loading config from {config_path}")
    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    try:
        return parse_app_config(raw_config)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e
