"""
Configuration models for arcollect.

Defines dataclasses for the unified YAML configuration file.
"""

import sys
from dataclasses import dataclass, field
from typing import Optional

from ..rpc.client import ToolServerConfig


@dataclass
class OrchestratorConfig:
    """Configuration for the model-driven orchestration loop."""
    model: str = "gpt-4o"
    base_url: str = ""
    api_key: str = ""
    azure_endpoint: str = ""
    azure_api_version: str = "2025-01-01-preview"
    temperature: Optional[float] = None
    max_iterations: int = 15
    max_conversation_messages: int = 200
    user_email: str = "your-email@example.com"

    @property
    def uses_azure(self) -> bool:
        return bool(self.azure_endpoint)


@dataclass
class ToolServerSettings:
    """How the orchestrator launches the tool provider process."""
    command: list[str] = field(
        default_factory=lambda: [sys.executable, "-m", "arcollect.provider"]
    )
    shutdown_timeout: float = 5.0

    def to_server_config(self) -> ToolServerConfig:
        return ToolServerConfig(
            command=list(self.command),
            shutdown_timeout=self.shutdown_timeout,
        )


@dataclass
class ErpConfig:
    """Configuration for the ERP data source used by the provider."""
    demo_mode: bool = True
    api_endpoint: str = ""
    access_token: str = ""
    timeout: int = 30


@dataclass
class MessagingConfig:
    """Configuration for outbound email and Teams messages."""
    demo_mode: bool = True
    access_token: str = ""
    sender: str = ""
    timeout: int = 30


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    auth_check verifies the keys against the server once at startup.
    """
    public_key: str = ""
    secret_key: str = ""
    host: str = ""
    debug: bool = False
    auth_check: bool = True

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml.
    """
    version: str = "1.0"
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    tool_server: ToolServerSettings = field(default_factory=ToolServerSettings)
    erp: ErpConfig = field(default_factory=ErpConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        return self.logging.level
