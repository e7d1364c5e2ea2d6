"""
Langfuse tracing integration for arcollect.

Provides observability for model calls, tool executions and conversation turns.
"""

from .client import (
    TracingClient,
    flush_tracing,
    init_tracing_client,
    resolve_host,
    get_tracing_client,
    shutdown_tracing,
)
from .context import (
    TracingContext,
    SpanContext,
    GenerationContext,
)

__all__ = [
    "TracingClient",
    "flush_tracing",
    "init_tracing_client",
    "resolve_host",
    "get_tracing_client",
    "shutdown_tracing",
    "TracingContext",
    "SpanContext",
    "GenerationContext",
]
