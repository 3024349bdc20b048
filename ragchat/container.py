import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from .config.settings import Settings
from .core.errors import ConfigurationError
from .core.protocols.llm import LLMProtocol
from .core.strategies.reranking import (
    AdaptiveStrategy,
    LLMJudgedStrategy,
    NoFilterStrategy,
    RerankingStrategy,
    ThresholdStrategy,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRATEGY_NAMES = ("none", "threshold", "adaptive", "llm")


@dataclass
class Container:
    _factories: dict[type, Callable[[], Any]] = field(default_factory=dict)
    _singletons: dict[type, Any] = field(default_factory=dict)
    _singleton_flags: set[type] = field(default_factory=set)

    def register(
        self, interface: type[T], factory: Callable[[], T], singleton: bool = False
    ) -> None:
        """Register factory for interface.

        Args:
            interface: Interface type.
            factory: Factory function.
            singleton: Whether to cache instance.
        """
        self._factories[interface] = factory
        if singleton:
            self._singleton_flags.add(interface)

    def override(self, interface: type[T], instance: T) -> None:
        """Pin an instance, e.g. a fake collaborator in tests."""
        self._singletons[interface] = instance

    def resolve(self, interface: type[T]) -> T:
        if interface in self._singletons:
            return self._singletons[interface]

        if interface not in self._factories:
            raise KeyError(f"No factory registered for {interface}")

        instance = self._factories[interface]()

        if interface in self._singleton_flags:
            self._singletons[interface] = instance

        return instance

    def reset(self) -> None:
        """Reset singletons (for testing)."""
        self._singletons.clear()


def build_strategy(
    name: str, settings: Settings, llm: Optional[LLMProtocol] = None
) -> RerankingStrategy:
    """Create a reranking strategy by name from settings."""
    if name == "none":
        return NoFilterStrategy()
    if name == "threshold":
        return ThresholdStrategy(settings.rerank_threshold)
    if name == "adaptive":
        return AdaptiveStrategy(
            rule=settings.adaptive_rule,
            floor=settings.adaptive_floor,
            std_factor=settings.adaptive_std_factor,
            min_gap=settings.adaptive_min_gap,
        )
    if name == "llm":
        if llm is None:
            raise ConfigurationError("llm strategy needs an LLM client")
        return LLMJudgedStrategy(
            llm,
            concurrency=settings.llm_rerank_concurrency,
            timeout=settings.llm_rerank_timeout,
            fail_open=settings.llm_rerank_fail_open,
        )
    raise ConfigurationError(
        f"Unknown rerank strategy {name!r}, expected one of {', '.join(STRATEGY_NAMES)}"
    )


def configure_container(settings: Settings) -> Container:
    """Build a container with all dependencies.

    Args:
        settings: Application settings.

    Returns:
        New container; nothing is shared between containers.
    """
    from .core.protocols.embedder import EmbedderProtocol
    from .core.protocols.reranker import RerankerProtocol
    from .core.protocols.vector_store import VectorStoreProtocol
    from .core.services.chat_service import ChatService
    from .core.services.chunker import ChunkingConfig
    from .core.services.citation_service import CitationEnforcer
    from .core.services.compression_service import HistoryCompressionService
    from .core.services.embedding_service import EmbeddingService
    from .core.services.ingest_service import IngestService
    from .core.services.rag_service import RAGService
    from .core.services.search_service import SearchService
    from .infrastructure.document_loaders import CompositeLoader
    from .infrastructure.llm.openai_client import OpenAICompatibleClient
    from .infrastructure.vector_stores.memory_store import InMemoryVectorIndex

    container = Container()

    def make_embedder():
        if settings.embedding_provider == "openai":
            from .infrastructure.embeddings.openai_embedder import OpenAIEmbedder

            return OpenAIEmbedder(
                settings.embedding_model,
                base_url=settings.llm_base_url,
                api_key=settings.llm_api_key,
                timeout=settings.embedding_timeout,
            )
        if settings.embedding_provider == "sentence-transformers":
            from .infrastructure.embeddings.sentence_transformer import (
                SentenceTransformerEmbedder,
            )

            return SentenceTransformerEmbedder(settings.embedding_model)
        raise ConfigurationError(
            f"Unknown embedding provider: {settings.embedding_provider!r}"
        )

    # e5 models expect query/passage prefixes; API embedders do not
    e5_prefixes = settings.embedding_provider == "sentence-transformers"

    container.register(EmbedderProtocol, make_embedder, singleton=True)

    container.register(VectorStoreProtocol, InMemoryVectorIndex, singleton=True)

    container.register(
        LLMProtocol,
        lambda: OpenAICompatibleClient(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        ),
        singleton=True,
    )

    container.register(
        EmbeddingService,
        lambda: EmbeddingService(
            container.resolve(EmbedderProtocol),
            batch_size=settings.embedding_batch_size,
            cache_size=settings.embedding_cache_size,
            timeout=settings.embedding_timeout,
            query_prefix="query: " if e5_prefixes else "",
            passage_prefix="passage: " if e5_prefixes else "",
        ),
        singleton=True,
    )

    container.register(
        RerankerProtocol,
        lambda: build_strategy(
            settings.rerank_strategy, settings, container.resolve(LLMProtocol)
        ),
        singleton=True,
    )

    container.register(
        SearchService,
        lambda: SearchService(
            embeddings=container.resolve(EmbeddingService),
            vector_store=container.resolve(VectorStoreProtocol),
            strategy=container.resolve(RerankerProtocol),
            top_k=settings.rag_top_k,
            oversample_factor=settings.rag_oversample_factor,
            preview_length=settings.rag_preview_length,
        ),
        singleton=True,
    )

    container.register(
        CitationEnforcer,
        lambda: CitationEnforcer(settings.citation_pass_threshold),
        singleton=True,
    )

    container.register(
        RAGService,
        lambda: RAGService(
            search_service=container.resolve(SearchService),
            llm=container.resolve(LLMProtocol),
            enforcer=container.resolve(CitationEnforcer),
            timeout=settings.llm_timeout,
        ),
        singleton=True,
    )

    container.register(
        HistoryCompressionService,
        lambda: HistoryCompressionService(
            summarizer=container.resolve(LLMProtocol),
            token_budget=settings.history_token_budget,
            fold_fraction=settings.history_fold_fraction,
            min_recent_messages=settings.history_min_recent_messages,
            timeout=settings.llm_timeout,
        ),
        singleton=True,
    )

    container.register(
        IngestService,
        lambda: IngestService(
            embeddings=container.resolve(EmbeddingService),
            vector_store=container.resolve(VectorStoreProtocol),
            loader=CompositeLoader(),
            docs_path=settings.docs_path,
            prose_config=ChunkingConfig(settings.chunk_size, settings.chunk_overlap),
            code_config=ChunkingConfig.for_code(
                settings.code_chunk_size, settings.code_chunk_overlap
            ),
            batch_size=settings.embedding_batch_size,
        ),
        singleton=True,
    )

    container.register(
        ChatService,
        lambda: ChatService(
            llm=container.resolve(LLMProtocol),
            compressor=container.resolve(HistoryCompressionService),
            rag=container.resolve(RAGService),
            overflow_policy=settings.history_overflow_policy,
        ),
        singleton=True,
    )

    logger.debug("Container configured")
    return container
