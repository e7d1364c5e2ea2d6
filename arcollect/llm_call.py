"""
Model client for the collections orchestrator.

Wraps the OpenAI SDK's async Chat Completions API with function calling:
- OpenAI or any OpenAI-compatible endpoint (``base_url``)
- Azure OpenAI when an Azure endpoint is configured
"""

import logging
from typing import Optional

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from .config import config
from .errors import ModelError
from .models import OrchestratorConfig
from .orchestration.conversation import AssistantTurn, ToolCallIntent
from .tracing import TracingContext

logger = logging.getLogger(__name__)


class LLMClient:
    """Chat completion client that returns text and tool requests."""

    def __init__(
        self,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = orchestrator_config or config.orchestrator
        self.model = self.config.model
        self._client = client or self._create_client()

    def _create_client(self) -> AsyncOpenAI:
        if self.config.uses_azure:
            logger.debug(f"Using Azure OpenAI at {self.config.azure_endpoint}")
            return AsyncAzureOpenAI(
                azure_endpoint=self.config.azure_endpoint,
                api_key=self.config.api_key or None,
                api_version=self.config.azure_api_version,
            )
        return AsyncOpenAI(
            base_url=self.config.base_url or None,
            api_key=self.config.api_key or "not-needed",  # local endpoints skip auth
        )

    async def complete(
        self,
        messages: list[dict],
        tools: Optional[list[dict]] = None,
        tracing_context: Optional[TracingContext] = None,
        name: str = "orchestrator_call",
    ) -> AssistantTurn:
        """
        Run one model call.

        Args:
            messages: Chat Completions messages (history so far).
            tools: OpenAI function tool definitions; ``tool_choice`` is auto.
            tracing_context: Wraps the call in a Langfuse generation when given.
            name: Generation name for tracing.

        Raises:
            ModelError: The SDK call failed or returned no choices.
        """
        create_kwargs: dict = {"model": self.model, "messages": messages}
        if tools:
            create_kwargs["tools"] = tools
            create_kwargs["tool_choice"] = "auto"
        if self.config.temperature is not None:
            create_kwargs["temperature"] = self.config.temperature

        if tracing_context is None:
            return await self._create(create_kwargs)

        with tracing_context.generation(
            name=name,
            model=self.model,
            input=messages,
            model_parameters={"temperature": self.config.temperature},
        ) as gen:
            try:
                turn = await self._create(create_kwargs)
            except ModelError:
                gen.set_status("error")
                raise
            gen.set_output(
                {
                    "content": (turn.content or "")[:2000],
                    "tool_calls": [tc.name for tc in turn.tool_calls],
                }
            )
            if turn.usage:
                gen.set_usage(**turn.usage)
            return turn

    async def _create(self, create_kwargs: dict) -> AssistantTurn:
        try:
            response = await self._client.chat.completions.create(**create_kwargs)
        except openai.OpenAIError as e:
            logger.error(f"Model call failed: {e}")
            raise ModelError(f"Model call failed: {e}") from e

        if not response.choices:
            raise ModelError("Model returned no choices")

        message = response.choices[0].message
        tool_calls = [
            ToolCallIntent(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
            )
            for tc in (message.tool_calls or [])
        ]
        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return AssistantTurn(content=message.content, tool_calls=tool_calls, usage=usage)
