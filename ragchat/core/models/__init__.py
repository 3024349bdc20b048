"""Domain models."""
from .document import (
    ChunkMetadata,
    DocumentChunk,
    FileType,
    IndexStatistics,
    SearchResponse,
    SearchResult,
    TextChunk,
)
from .chat import ChatMessage
from .compression import (
    CompressedConversationHistory,
    CompressionStats,
    ConversationSummary,
)
from .rag import (
    CitationValidation,
    ParsedAnswer,
    RAGComparison,
    RAGResponse,
    RerankingComparison,
)
from .tool import ContentType, ToolContent, ToolResult, ToolValue, ValueKind

__all__ = [
    "ChunkMetadata",
    "DocumentChunk",
    "FileType",
    "IndexStatistics",
    "SearchResponse",
    "SearchResult",
    "TextChunk",
    "ChatMessage",
    "CompressedConversationHistory",
    "CompressionStats",
    "ConversationSummary",
    "CitationValidation",
    "ParsedAnswer",
    "RAGComparison",
    "RAGResponse",
    "RerankingComparison",
    "ContentType",
    "ToolContent",
    "ToolResult",
    "ToolValue",
    "ValueKind",
]
