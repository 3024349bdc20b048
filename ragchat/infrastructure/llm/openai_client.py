import logging
from typing import AsyncIterator, Sequence

import openai
from openai import AsyncOpenAI

from ragchat.core.errors import ExternalServiceError, ServiceErrorKind
from ragchat.core.models.document import SearchResult
from ragchat.core.services.search_service import format_context
from .errors import to_service_error

logger = logging.getLogger(__name__)

CONTEXT_PROMPT = """CONTEXT:
{context}

{prompt}"""


class OpenAICompatibleClient:
    """LLM client for any OpenAI-compatible chat completions API (OpenAI, Ollama, vLLM)."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "ollama",
        model: str = "qwen2.5:7b",
        max_tokens: int = 1024,
        temperature: float = 0.1,
        timeout: float = 120.0,
    ):
        """Initialize client.

        Args:
            base_url: API URL.
            api_key: API key (any non-empty value for Ollama).
            model: Model name.
            max_tokens: Max response tokens.
            temperature: Sampling temperature.
            timeout: HTTP timeout in seconds.
        """
        self._client = AsyncOpenAI(
            base_url=base_url, api_key=api_key, timeout=timeout, max_retries=1
        )
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    def _build_messages(
        self,
        prompt: str,
        history: list[dict] | None,
        system: str | None,
    ) -> list[dict]:
        messages: list[dict] = []
        if system:
            messages.append({"role": "system", "content": system})
        if history:
            messages.extend(history)
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate(
        self,
        prompt: str,
        context: Sequence[SearchResult] | None = None,
        history: list[dict] | None = None,
        system: str | None = None,
    ) -> str:
        """Generate a complete response.

        Args:
            prompt: User prompt.
            context: Retrieved chunks, rendered ahead of the prompt.
            history: Chat history.
            system: System prompt.

        Returns:
            Response text.

        Raises:
            ExternalServiceError: API call failed or returned no choices.
        """
        if context:
            prompt = CONTEXT_PROMPT.format(context=format_context(context), prompt=prompt)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_messages(prompt, history, system),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except openai.OpenAIError as e:
            logger.error(f"[llm] Request failed: {e}")
            raise to_service_error("llm", e) from e

        if not response.choices:
            raise ExternalServiceError(
                "llm", ServiceErrorKind.MALFORMED_RESPONSE, "response has no choices"
            )
        return response.choices[0].message.content or ""

    async def chat_stream(
        self,
        prompt: str,
        history: list[dict] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream chat response.

        Yields:
            Response tokens.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_messages(prompt, history, system),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                stream=True,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            logger.error(f"[llm] Stream error: {e}")
            raise to_service_error("llm", e) from e
