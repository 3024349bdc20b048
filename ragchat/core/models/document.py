"""Document domain models."""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

PREVIEW_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileType(str, Enum):
    """Kind of document a chunk was cut from."""
    SOURCE = "source"
    MARKDOWN = "markdown"
    TEXT = "text"
    PDF = "pdf"
    DOCUMENT = "document"
    RESOURCE = "resource"

    @classmethod
    def parse(cls, value: str) -> "FileType":
        try:
            return cls(value)
        except ValueError:
            return cls.TEXT


@dataclass(frozen=True)
class ChunkMetadata:
    """Chunk metadata."""
    file_type: FileType
    token_count: int
    language: Optional[str] = None
    start_position: int = 0
    end_position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_type": self.file_type.value,
            "token_count": self.token_count,
            "language": self.language,
            "start_position": self.start_position,
            "end_position": self.end_position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChunkMetadata":
        return cls(
            file_type=FileType.parse(data.get("file_type", "text")),
            token_count=int(data.get("token_count", 0)),
            language=data.get("language"),
            start_position=int(data.get("start_position", 0)),
            end_position=int(data.get("end_position", 0)),
        )


@dataclass(frozen=True)
class TextChunk:
    """Chunk payload before it gets an id and an embedding."""
    content: str
    index: int
    start_position: int
    end_position: int
    token_estimate: int


@dataclass(frozen=True)
class DocumentChunk:
    """Document chunk for indexing. Never mutated after creation."""
    file_path: str
    file_name: str
    content: str
    chunk_index: int
    metadata: ChunkMetadata
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_source_code(self) -> bool:
        return self.metadata.file_type == FileType.SOURCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "content": self.content,
            "chunk_index": self.chunk_index,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentChunk":
        return cls(
            id=data["id"],
            file_path=data.get("file_path", ""),
            file_name=data.get("file_name", ""),
            content=data["content"],
            chunk_index=int(data.get("chunk_index", 0)),
            metadata=ChunkMetadata.from_dict(data.get("metadata", {})),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utcnow(),
        )


def make_preview(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Collapse whitespace and cut to max_length characters."""
    cleaned = " ".join(content.split())
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "..."
    return cleaned


@dataclass(frozen=True)
class SearchResult:
    """Search result from vector index. Recomputed per query."""
    chunk: DocumentChunk
    similarity: float
    rank: int
    preview: str = ""

    @property
    def file_name(self) -> str:
        return self.chunk.file_name


def with_dense_ranks(results: list[SearchResult]) -> list[SearchResult]:
    """Re-number ranks 1..N in list order."""
    return [
        r if r.rank == i else replace(r, rank=i)
        for i, r in enumerate(results, 1)
    ]


@dataclass
class SearchResponse:
    """Search response for presentation layer."""
    results: list[SearchResult]
    context: str
    sources: list[str]


@dataclass
class IndexStatistics:
    """Indexing counters. Only ingestion mutates them; clear resets."""
    total_documents: int = 0
    total_chunks: int = 0
    processing_time: float = 0.0
    indexed_files: list[str] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)

    def add_success(self, file: str, chunks: int) -> None:
        self.total_documents += 1
        self.total_chunks += chunks
        self.indexed_files.append(file)

    def add_failure(self, file: str) -> None:
        self.failed_files.append(file)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_documents": self.total_documents,
            "total_chunks": self.total_chunks,
            "processing_time": self.processing_time,
            "indexed_files": list(self.indexed_files),
            "failed_files": list(self.failed_files),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexStatistics":
        return cls(
            total_documents=int(data.get("total_documents", 0)),
            total_chunks=int(data.get("total_chunks", 0)),
            processing_time=float(data.get("processing_time", 0.0)),
            indexed_files=list(data.get("indexed_files", [])),
            failed_files=list(data.get("failed_files", [])),
        )
