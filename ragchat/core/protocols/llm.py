"""LLM protocol for dependency injection."""
from typing import AsyncIterator, Protocol, Sequence, runtime_checkable

from ..models.document import SearchResult


@runtime_checkable
class LLMProtocol(Protocol):
    """Protocol for the answer generator.

    Used for RAG answers, relevance judgments and history summaries.
    """

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
            context: Retrieved chunks (optional).
            history: Chat history (optional).
            system: System prompt (optional).

        Returns:
            Response text.

        Raises:
            ExternalServiceError: Generator call failed.
        """
        ...

    def chat_stream(
        self,
        prompt: str,
        history: list[dict] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream response tokens.

        Args:
            prompt: User prompt (context already embedded).
            history: Chat history (optional).
            system: System prompt (optional).

        Yields:
            Response tokens.
        """
        ...
