"""Tests for the search service."""

import pytest

from conftest import make_chunk, make_results
from ragchat.core.errors import ConfigurationError, ExternalServiceError, ServiceErrorKind
from ragchat.core.models.document import FileType
from ragchat.core.services.embedding_service import EmbeddingService
from ragchat.core.services.search_service import SearchService, format_context
from ragchat.core.strategies.reranking import NoFilterStrategy, RerankingStrategy, ThresholdStrategy
from ragchat.infrastructure.vector_stores.memory_store import InMemoryVectorIndex

DOCS = [
    ("docs/retry.md", "The retry policy uses exponential backoff between attempts."),
    ("docs/cache.md", "The cache evicts the least recently used entries first."),
    ("src/RetryPolicy.swift", "struct RetryPolicy { let maxAttempts: Int; let backoff: Double }"),
    ("docs/logging.md", "Logging writes structured records to standard output."),
    ("docs/auth.md", "Authentication uses short lived tokens and refresh tokens."),
    ("docs/deploy.md", "Deployment runs in containers behind a load balancer."),
]


class FailingStrategy(RerankingStrategy):
    name = "failing"

    async def rerank(self, candidates, question):
        raise ExternalServiceError("llm", ServiceErrorKind.UNAVAILABLE)


@pytest.fixture
def embeddings(fake_embedder) -> EmbeddingService:
    return EmbeddingService(fake_embedder, query_prefix="", passage_prefix="")


@pytest.fixture
def index(fake_embedder) -> InMemoryVectorIndex:
    idx = InMemoryVectorIndex()
    for i, (path, text) in enumerate(DOCS):
        idx.insert(make_chunk(text, path, i), fake_embedder.vector_for(text))
    return idx


class TestRetrieve:

    @pytest.mark.asyncio
    async def test_best_match_first(self, embeddings, index):
        service = SearchService(embeddings, index)
        results = await service.retrieve("retry policy with exponential backoff")

        assert results[0].chunk.file_path == "docs/retry.md"
        assert [r.rank for r in results] == list(range(1, len(results) + 1))
        sims = [r.similarity for r in results]
        assert sims == sorted(sims, reverse=True)

    @pytest.mark.asyncio
    async def test_oversamples_candidates(self, embeddings, index):
        service = SearchService(embeddings, index, top_k=2, oversample_factor=2)
        assert len(await service.retrieve("retry")) == 4

    @pytest.mark.asyncio
    async def test_empty_index_gives_no_candidates(self, embeddings):
        service = SearchService(embeddings, InMemoryVectorIndex())
        assert await service.retrieve("anything") == []

    @pytest.mark.asyncio
    async def test_file_type_filter(self, embeddings, index):
        service = SearchService(embeddings, index, top_k=5)
        results = await service.retrieve("retry policy", file_type=FileType.SOURCE)

        assert [r.chunk.file_name for r in results] == ["RetryPolicy.swift"]
        assert results[0].rank == 1

    @pytest.mark.asyncio
    async def test_previews(self, embeddings, index):
        service = SearchService(embeddings, index, preview_length=20)
        results = await service.retrieve("cache")
        assert all(len(r.preview) <= 23 for r in results)

    @pytest.mark.parametrize("kwargs", [{"top_k": 0}, {"oversample_factor": 0}])
    def test_rejects_bad_config(self, embeddings, index, kwargs):
        with pytest.raises(ConfigurationError):
            SearchService(embeddings, index, **kwargs)


class TestSearch:

    @pytest.mark.asyncio
    async def test_truncates_to_top_k(self, embeddings, index):
        service = SearchService(embeddings, index, top_k=2)
        response = await service.search("retry policy")

        assert len(response.results) == 2
        assert [r.rank for r in response.results] == [1, 2]
        assert response.context.startswith("[Source 1: ")
        assert response.sources == [r.chunk.file_name for r in response.results]

    @pytest.mark.asyncio
    async def test_strategy_override(self, embeddings, index):
        service = SearchService(embeddings, index, top_k=5, strategy=NoFilterStrategy())
        response = await service.search("retry policy", strategy=ThresholdStrategy(0.99))
        assert response.results == []
        assert response.context == ""
        assert response.sources == []

    @pytest.mark.asyncio
    async def test_compare_runs_all_strategies_on_same_candidates(self, embeddings, index):
        service = SearchService(embeddings, index, top_k=3)
        comparison = await service.compare(
            "retry policy",
            [NoFilterStrategy(), ThresholdStrategy(0.99), FailingStrategy()],
        )

        assert len(comparison.candidates) == len(DOCS)
        assert len(comparison.results["none"]) == 3
        assert comparison.results["threshold"] == []
        assert "failing" in comparison.errors
        summary = comparison.summary()
        assert summary["none"]["count"] == 3
        assert summary["threshold"]["min_similarity"] is None
        assert "error" in summary["failing"]


def test_format_context_numbers_sources():
    results = make_results(0.91, 0.5)
    context = format_context(results)
    blocks = context.split("\n\n---\n\n")

    assert len(blocks) == 2
    assert blocks[0].startswith("[Source 1: guide.md - relevance 91.0%]")
    assert blocks[1].endswith("chunk 2 content")
    assert format_context([]) == ""
