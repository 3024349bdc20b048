"""Reranker protocol for dependency injection."""
from typing import Protocol, runtime_checkable

from ..models.document import SearchResult


@runtime_checkable
class RerankerProtocol(Protocol):
    """Protocol for post-retrieval filtering strategies."""

    name: str

    async def rerank(
        self,
        candidates: list[SearchResult],
        question: str,
    ) -> list[SearchResult]:
        """Filter candidates for the question.

        Never adds candidates and never reorders survivors.

        Args:
            candidates: Candidates sorted by descending similarity.
            question: User question.

        Returns:
            Surviving candidates with dense ranks.
        """
        ...
