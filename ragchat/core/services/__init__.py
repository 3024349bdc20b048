"""Core business services."""
from .chunker import ChunkingConfig, TextChunker
from .embedding_service import EmbeddingService
from .search_service import SearchService
from .citation_service import CitationEnforcer
from .compression_service import HistoryCompressionService
from .rag_service import RAGService
from .chat_service import ChatService, Conversation
from .ingest_service import IngestService

__all__ = [
    "ChunkingConfig",
    "TextChunker",
    "EmbeddingService",
    "SearchService",
    "CitationEnforcer",
    "HistoryCompressionService",
    "RAGService",
    "ChatService",
    "Conversation",
    "IngestService",
]
