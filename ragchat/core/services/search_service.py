"""Search service - retrieval and reranking."""

import asyncio
import logging
from typing import Optional, Sequence

from ..errors import ConfigurationError, EmptyIndexError, ExternalServiceError
from ..models.document import (
    FileType,
    SearchResponse,
    SearchResult,
    make_preview,
    with_dense_ranks,
)
from ..models.rag import RerankingComparison
from ..protocols.reranker import RerankerProtocol
from ..protocols.vector_store import VectorStoreProtocol
from ..strategies.reranking import NoFilterStrategy
from .embedding_service import EmbeddingService

logger = logging.getLogger(__name__)


class SearchService:
    """Retriever: embeds the question, queries the index, applies a strategy."""

    def __init__(
        self,
        embeddings: EmbeddingService,
        vector_store: VectorStoreProtocol,
        strategy: Optional[RerankerProtocol] = None,
        top_k: int = 5,
        oversample_factor: int = 3,
        preview_length: int = 200,
    ):
        """Initialize search service.

        Args:
            embeddings: Embedding service.
            vector_store: Vector index.
            strategy: Default reranking strategy.
            top_k: Number of results to return.
            oversample_factor: Candidates fetched per returned result.
            preview_length: Max preview characters.
        """
        if top_k <= 0:
            raise ConfigurationError(f"top_k must be positive, got {top_k}")
        if oversample_factor < 1:
            raise ConfigurationError(
                f"oversample_factor must be >= 1, got {oversample_factor}"
            )
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._strategy = strategy or NoFilterStrategy()
        self._top_k = top_k
        self._oversample_factor = oversample_factor
        self._preview_length = preview_length

    @property
    def strategy(self) -> RerankerProtocol:
        return self._strategy

    async def retrieve(
        self,
        question: str,
        top_k: Optional[int] = None,
        file_type: Optional[FileType] = None,
    ) -> list[SearchResult]:
        """Fetch reranking candidates for a question.

        Returns up to ``top_k * oversample_factor`` candidates sorted by
        similarity. An empty index or an empty filter result gives [].
        """
        top_k = top_k or self._top_k
        query_embedding = await self._embeddings.embed_query(question)

        try:
            hits = await asyncio.to_thread(
                self._vector_store.query, query_embedding, top_k * self._oversample_factor
            )
        except EmptyIndexError:
            logger.info("Search on empty index, no candidates")
            return []

        results = [
            SearchResult(
                chunk=chunk,
                similarity=similarity,
                rank=i,
                preview=make_preview(chunk.content, self._preview_length),
            )
            for i, (chunk, similarity) in enumerate(hits, 1)
        ]

        if file_type is not None:
            results = [r for r in results if r.chunk.metadata.file_type == file_type]

        return with_dense_ranks(results)

    async def search(
        self,
        question: str,
        strategy: Optional[RerankerProtocol] = None,
        top_k: Optional[int] = None,
        file_type: Optional[FileType] = None,
    ) -> SearchResponse:
        """Search documents with reranking.

        Args:
            question: Search query.
            strategy: Override reranking strategy.
            top_k: Override number of results.
            file_type: Keep only chunks of this type.

        Returns:
            Search response with results, context, and sources.
        """
        top_k = top_k or self._top_k
        strategy = strategy or self._strategy

        candidates = await self.retrieve(question, top_k, file_type)
        results = await strategy.rerank(candidates, question)
        results = with_dense_ranks(results[:top_k])

        logger.info(
            f"Search [{strategy.name}]: {len(candidates)} candidates → "
            f"{len(results)}/{top_k} docs for '{question[:50]}...'"
        )

        return SearchResponse(
            results=results,
            context=format_context(results),
            sources=self._get_unique_sources(results),
        )

    async def compare(
        self,
        question: str,
        strategies: Sequence[RerankerProtocol],
        top_k: Optional[int] = None,
    ) -> RerankingComparison:
        """Run several strategies on the same candidate set."""
        top_k = top_k or self._top_k
        candidates = await self.retrieve(question, top_k)
        comparison = RerankingComparison(question=question, candidates=candidates)

        for strategy in strategies:
            try:
                results = await strategy.rerank(list(candidates), question)
            except ExternalServiceError as e:
                comparison.errors[strategy.name] = e.user_message
                continue
            comparison.results[strategy.name] = with_dense_ranks(results[:top_k])

        return comparison

    def _get_unique_sources(self, results: list[SearchResult]) -> list[str]:
        """Get unique source filenames."""
        seen = set()
        sources = []
        for r in results:
            if r.chunk.file_name not in seen:
                seen.add(r.chunk.file_name)
                sources.append(r.chunk.file_name)
        return sources


def format_context(results: Sequence[SearchResult]) -> str:
    """Format results as numbered sources for the LLM."""
    if not results:
        return ""

    parts = []
    for i, r in enumerate(results, 1):
        parts.append(
            f"[Source {i}: {r.chunk.file_name} - relevance {r.similarity:.1%}]\n"
            f"{r.chunk.content.strip()}"
        )

    return "\n\n---\n\n".join(parts)
