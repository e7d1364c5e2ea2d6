"""
Configuration management for arcollect.

Loads a .env file (python-dotenv), then the YAML configuration, whose
values interpolate environment variables with sensible defaults for local
development.
"""

from dotenv import load_dotenv

from .config_loader import load_app_config
from .models import AppConfig

load_dotenv()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return load_app_config()


# Global config instance
config = get_config()
