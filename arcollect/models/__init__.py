"""
Data models for arcollect.
"""

from .config import (
    OrchestratorConfig,
    ToolServerSettings,
    ErpConfig,
    MessagingConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)

__all__ = [
    "OrchestratorConfig",
    "ToolServerSettings",
    "ErpConfig",
    "MessagingConfig",
    "ServerConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
]
