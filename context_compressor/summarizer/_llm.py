"""Language-generation collaborators used by the summarizer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from context_compressor.summarizer._prompts import SYSTEM_PROMPT
from context_compressor.summarizer.models import SummarizationError

if TYPE_CHECKING:
    from context_compressor.config import LLMConfig

LOGGER = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Prompt text in, free-form text out. May raise on failure."""

    async def __call__(self, prompt: str) -> str: ...


class OpenAITextGenerator:
    """Text generator backed by any OpenAI-compatible chat endpoint."""

    def __init__(self, config: LLMConfig) -> None:
        """Store the connection settings; the agent is built lazily."""
        self.config = config
        self._agent = None

    def _get_agent(self):  # noqa: ANN202
        if self._agent is None:
            from pydantic_ai import Agent  # noqa: PLC0415
            from pydantic_ai.models.openai import OpenAIChatModel  # noqa: PLC0415
            from pydantic_ai.providers.openai import OpenAIProvider  # noqa: PLC0415
            from pydantic_ai.settings import ModelSettings  # noqa: PLC0415

            provider = OpenAIProvider(
                api_key=self.config.api_key,
                base_url=self.config.openai_base_url,
                http_client=httpx.AsyncClient(timeout=self.config.timeout),
            )
            model = OpenAIChatModel(
                model_name=self.config.model,
                provider=provider,
                settings=ModelSettings(
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    timeout=self.config.timeout,
                ),
            )
            self._agent = Agent(model=model, system_prompt=SYSTEM_PROMPT, output_type=str)
        return self._agent

    async def __call__(self, prompt: str) -> str:
        """Run the prompt and return the raw reply text.

        Raises:
            SummarizationError: If the endpoint or model fails.

        """
        agent = self._get_agent()
        LOGGER.debug(
            "Requesting summary from %s (%s)",
            self.config.model,
            self.config.openai_base_url,
        )
        try:
            result = await agent.run(prompt)
        except Exception as e:
            msg = f"Summarization request failed: {e}"
            raise SummarizationError(msg) from e
        return result.output


class UnavailableGenerator:
    """Generator for deployments without a language-generation endpoint.

    Every call fails, so the summarizer always takes its fallback path.
    """

    async def __call__(self, prompt: str) -> str:  # noqa: ARG002
        """Always raise :class:`SummarizationError`."""
        msg = "No language-generation endpoint configured"
        raise SummarizationError(msg)
