"""
Pytest configuration and fixtures for arcollect tests.
"""

import os
import sys
from pathlib import Path

import pytest

from arcollect.rpc import ToolServerConfig
from arcollect.tracing import client as tracing_client

REPO_ROOT = Path(__file__).resolve().parent.parent
FAKE_PROVIDER = Path(__file__).resolve().parent / "fixtures" / "fake_provider.py"


def _child_env(**extra: str) -> dict[str, str]:
    pythonpath = os.pathsep.join(
        p for p in (str(REPO_ROOT), os.environ.get("PYTHONPATH", "")) if p
    )
    return {
        "PYTHONPATH": pythonpath,
        "ARCOLLECT_CONFIG_PATH": str(REPO_ROOT / "config" / "config.yaml"),
        "ERP_DEMO_MODE": "true",
        "MESSAGING_DEMO_MODE": "true",
        "LOG_LEVEL": "WARNING",
        **extra,
    }


@pytest.fixture
def provider_config() -> ToolServerConfig:
    """Launch the real provider in demo mode."""
    return ToolServerConfig(
        command=[sys.executable, "-m", "arcollect.provider"],
        env=_child_env(),
        cwd=str(REPO_ROOT),
        shutdown_timeout=5.0,
    )


@pytest.fixture
def fake_provider_config(tmp_path):
    """Factory for misbehaving providers, see fixtures/fake_provider.py."""

    def make(mode: str, shutdown_timeout: float = 5.0) -> ToolServerConfig:
        return ToolServerConfig(
            command=[sys.executable, str(FAKE_PROVIDER), mode, str(tmp_path / "marker")],
            env=_child_env(),
            shutdown_timeout=shutdown_timeout,
        )

    return make


@pytest.fixture(autouse=True)
def reset_tracing_client():
    """Tracing stays disabled unless a test initializes it."""
    tracing_client._tracing_client = None
    yield
    tracing_client._tracing_client = None
