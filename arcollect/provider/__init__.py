"""
Tool provider: the ERP and messaging tools served over stdio JSON-RPC.

Run as a child process of the orchestrator:

    python -m arcollect.provider
"""

from .erp_backend import DemoErpBackend, DynamicsErpBackend, create_backend
from .erp_tools import build_registry
from .messaging import DemoOutbox, GraphOutbox, create_outbox
from .registry import ToolDefinition, ToolRegistry
from .server import StdioToolServer

__all__ = [
    "DemoErpBackend",
    "DynamicsErpBackend",
    "create_backend",
    "build_registry",
    "DemoOutbox",
    "GraphOutbox",
    "create_outbox",
    "ToolDefinition",
    "ToolRegistry",
    "StdioToolServer",
]
