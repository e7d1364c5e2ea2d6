"""
Per-turn tracing context using Langfuse SDK v3.

One TracingContext covers one user turn: a root span for the turn, a
generation per model call and a span per tool call.  Children receive an
explicit trace context so nesting is correct regardless of OTEL state.
When tracing is disabled every method is a cheap no-op.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


def _start_observation(trace_context: Optional[TraceContext], **kwargs) -> tuple[Any, Any]:
    """Enter a Langfuse observation; returns (context manager, observation)."""
    client = get_tracing_client()
    if not client or not client.client:
        return None, None
    manager = client.client.start_as_current_observation(trace_context=trace_context, **kwargs)
    return manager, manager.__enter__()


@dataclass
class TracingContext:
    """Trace for one conversation turn."""

    execution_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _context_manager: Any = field(default=None, repr=False)
    _root_span: Any = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)

    def __post_init__(self):
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "conversation_turn",
        query: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled:
            return
        try:
            trace_metadata = {"execution_id": self.execution_id, **(metadata or {})}
            self._context_manager, self._root_span = _start_observation(
                None,
                as_type="span",
                name=name,
                input={"query": query} if query else None,
                metadata=trace_metadata,
            )
            if self._root_span is not None:
                self._root_span.update_trace(user_id=self.user_id, session_id=self.session_id)
            self._start_time = time.time()
        except Exception as e:
            logger.warning(f"[{self.execution_id}] Failed to start trace: {e}")
            self._root_span = None

    def end_trace(
        self,
        output: Optional[str] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled or not self._root_span:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            self._root_span.update(
                output=output,
                metadata={"status": status, "duration_ms": round(duration_ms, 2), **(metadata or {})},
            )
            if self._context_manager:
                self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end trace: {e}")
        finally:
            self._root_span = None
            self._context_manager = None

    def get_trace_context(self) -> Optional[TraceContext]:
        trace_id = getattr(self._root_span, "trace_id", None)
        span_id = getattr(self._root_span, "id", None)
        if not trace_id or not span_id:
            return None
        return TraceContext(trace_id=trace_id, parent_span_id=span_id)

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[dict] = None,
    ) -> Generator["SpanContext", None, None]:
        span_ctx = SpanContext(
            name=name,
            enabled=self._enabled,
            metadata=metadata,
            input=input,
            _trace_context=self.get_trace_context(),
        )
        try:
            span_ctx.start()
            yield span_ctx
        finally:
            span_ctx.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator["GenerationContext", None, None]:
        gen_ctx = GenerationContext(
            name=name,
            model=model,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            model_parameters=model_parameters,
            _trace_context=self.get_trace_context(),
        )
        try:
            gen_ctx.start()
            yield gen_ctx
        finally:
            gen_ctx.end()


@dataclass
class SpanContext:
    """A tracing span (tool call, turn phase)."""

    name: str
    enabled: bool = False
    metadata: Optional[dict] = None
    input: Optional[dict] = None
    _context_manager: Any = field(default=None, repr=False)
    _span: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[dict] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)

    def start(self) -> None:
        if not self.enabled:
            return
        try:
            self._start_time = time.time()
            self._context_manager, self._span = _start_observation(
                self._trace_context,
                as_type="span",
                name=self.name,
                metadata=self.metadata,
                input=self.input,
            )
        except Exception as e:
            logger.warning(f"Failed to start span '{self.name}': {e}")
            self._span = None

    def end(self) -> None:
        if not self.enabled or not self._span:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            update_kwargs: dict[str, Any] = {
                "metadata": {"status": self._status, "duration_ms": round(duration_ms, 2)}
            }
            if self._output:
                update_kwargs["output"] = self._output
            self._span.update(**update_kwargs)
            if self._context_manager:
                self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end span '{self.name}': {e}")

    def set_output(self, output: dict) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status


@dataclass
class GenerationContext:
    """A model call."""

    name: str
    model: str
    enabled: bool = False
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    model_parameters: Optional[dict] = None
    _context_manager: Any = field(default=None, repr=False)
    _generation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _usage: Optional[dict] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)

    def start(self) -> None:
        if not self.enabled:
            return
        try:
            self._start_time = time.time()
            self._context_manager, self._generation = _start_observation(
                self._trace_context,
                as_type="generation",
                name=self.name,
                model=self.model,
                input=self.input,
                metadata=self.metadata,
                model_parameters=self.model_parameters,
            )
        except Exception as e:
            logger.warning(f"Failed to start generation '{self.name}': {e}")
            self._generation = None

    def end(self) -> None:
        if not self.enabled or not self._generation:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            update_kwargs: dict[str, Any] = {
                "metadata": {"status": self._status, "duration_ms": round(duration_ms, 2)}
            }
            if self._output is not None:
                update_kwargs["output"] = self._output
            if self._usage:
                update_kwargs["usage_details"] = self._usage
            self._generation.update(**update_kwargs)
            if self._context_manager:
                self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end generation '{self.name}': {e}")

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        self._usage = {}
        if prompt_tokens is not None:
            self._usage["input"] = prompt_tokens
        if completion_tokens is not None:
            self._usage["output"] = completion_tokens
        if total_tokens is not None:
            self._usage["total"] = total_tokens

    def set_status(self, status: str) -> None:
        self._status = status
