"""
Tool Registry - single source of truth for the provider's tools.

Each tool is defined once at provider startup with its name, description,
argument model and handler.  The argument model publishes the
``inputSchema`` and validates incoming arguments before the handler runs.
Whether a tool writes anything is advertised as the ``readOnlyHint``
annotation, which the orchestrator reads to report side effects.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from ..rpc.messages import ToolDescriptor, ToolResult

logger = logging.getLogger(__name__)


class NoArguments(BaseModel):
    """Argument model for tools that take no parameters."""


@dataclass(frozen=True)
class ToolDefinition:
    """Metadata for a tool - defined once, used everywhere."""

    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], Any]
    side_effecting: bool = False

    @property
    def input_schema(self) -> dict:
        schema = self.args_model.model_json_schema()
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        schema.pop("title", None)
        return schema

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            annotations={"readOnlyHint": not self.side_effecting},
        )


class ToolRegistry:
    """Catalog of tools plus the dispatch boundary for ``tools/call``."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        handler: Callable[[Any], Any],
        args_model: Optional[type[BaseModel]] = None,
        side_effecting: bool = False,
    ) -> ToolDefinition:
        """Register a tool with its metadata."""
        if not name:
            raise ValueError("Tool name must not be empty")
        if name in self._tools:
            raise ValueError(f"Tool already registered: '{name}'")
        tool = ToolDefinition(
            name=name,
            description=description,
            args_model=args_model or NoArguments,
            handler=handler,
            side_effecting=side_effecting,
        )
        self._tools[name] = tool
        logger.info(f"Registered tool: {name}")
        return tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool by name."""
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[ToolDescriptor]:
        """All descriptors, in registration order."""
        return [tool.descriptor() for tool in self._tools.values()]

    def call_tool(self, name: str, arguments: Optional[dict] = None) -> ToolResult:
        """
        Look up, validate and run a tool.

        Never raises: unknown names, invalid arguments and handler failures
        all come back as ``isError`` results so the provider keeps serving.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.error(f"Unknown tool: '{name}'. Available: {self.names()}")

        try:
            args = tool.args_model.model_validate(arguments or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            return ToolResult.error(f"Invalid arguments for '{name}': {problems}")

        try:
            result = tool.handler(args)
        except Exception as e:
            logger.exception(f"Tool '{name}' failed")
            return ToolResult.error(str(e) or e.__class__.__name__)

        try:
            return ToolResult.text(result)
        except (TypeError, ValueError) as e:
            logger.error(f"Tool '{name}' returned a non-serializable result: {e}")
            return ToolResult.error(f"Tool '{name}' returned a non-serializable result")
