"""Text chunker - splits documents into overlapping, size-bounded chunks."""

import logging
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

from ..errors import ConfigurationError
from ..models.document import ChunkMetadata, DocumentChunk, FileType, TextChunk
from ..tokens import estimate_tokens

logger = logging.getLogger(__name__)

PARAGRAPH_SEARCH_WINDOW = 200
SENTENCE_SEARCH_WINDOW = 100

_SENTENCE_END = re.compile(r"[.!?]\s")

SOURCE_LANGUAGES = {
    ".py": "python",
    ".swift": "swift",
    ".js": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".kt": "kotlin",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".sh": "shell",
    ".sql": "sql",
    ".json": "json",
    ".xml": "xml",
    ".html": "html",
    ".css": "css",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}

_FILE_TYPES = {
    ".md": FileType.MARKDOWN,
    ".markdown": FileType.MARKDOWN,
    ".txt": FileType.TEXT,
    ".rst": FileType.TEXT,
    ".pdf": FileType.PDF,
    ".docx": FileType.DOCUMENT,
}


def detect_file_type(path: str) -> FileType:
    """Map a file extension to a chunk file type."""
    suffix = PurePath(path).suffix.lower()
    if suffix in SOURCE_LANGUAGES:
        return FileType.SOURCE
    return _FILE_TYPES.get(suffix, FileType.TEXT)


def detect_language(path: str) -> Optional[str]:
    return SOURCE_LANGUAGES.get(PurePath(path).suffix.lower())


@dataclass(frozen=True)
class ChunkingConfig:
    """Chunking parameters.

    chunk_size is measured in characters, overlap is a fraction of it.
    """
    chunk_size: int = 1000
    overlap: float = 0.2
    respect_paragraphs: bool = True
    respect_sentences: bool = True

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 <= self.overlap < 1:
            raise ConfigurationError(f"overlap must be in [0, 1), got {self.overlap}")

    @property
    def overlap_size(self) -> int:
        return int(self.overlap * self.chunk_size)

    @classmethod
    def for_code(cls, chunk_size: int = 3000, overlap: float = 0.15) -> "ChunkingConfig":
        """Larger chunks that keep functions together; blank lines still split."""
        return cls(
            chunk_size=chunk_size,
            overlap=overlap,
            respect_paragraphs=True,
            respect_sentences=False,
        )


class TextChunker:
    """Splits text into overlapping chunks that cover it without gaps.

    Consecutive chunks share exactly ``config.overlap_size`` characters, so
    dropping that prefix from every chunk but the first and concatenating
    gives back the original text.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self._config = config or ChunkingConfig()

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def chunk_text(self, text: str) -> list[TextChunk]:
        """Split text into chunks with overlap.

        Args:
            text: Text to chunk.

        Returns:
            Ordered chunks.
        """
        if not text:
            return []

        size = self._config.chunk_size
        overlap = self._config.overlap_size
        length = len(text)

        chunks: list[TextChunk] = []
        start = 0

        while True:
            target_end = min(start + size, length)
            end = target_end
            if target_end < length:
                end = self._find_break(text, start, target_end)

            content = text[start:end]
            chunks.append(
                TextChunk(
                    content=content,
                    index=len(chunks),
                    start_position=start,
                    end_position=end,
                    token_estimate=estimate_tokens(content),
                )
            )

            if end >= length:
                break
            start = end - overlap

        return chunks

    def chunk_document(
        self,
        text: str,
        file_path: str,
        file_type: Optional[FileType] = None,
        language: Optional[str] = None,
    ) -> list[DocumentChunk]:
        """Split a document into chunks with metadata and fresh ids."""
        file_type = file_type or detect_file_type(file_path)
        language = language or detect_language(file_path)
        file_name = PurePath(file_path).name

        chunks = [
            DocumentChunk(
                file_path=file_path,
                file_name=file_name,
                content=tc.content,
                chunk_index=tc.index,
                metadata=ChunkMetadata(
                    file_type=file_type,
                    token_count=tc.token_estimate,
                    language=language,
                    start_position=tc.start_position,
                    end_position=tc.end_position,
                ),
            )
            for tc in self.chunk_text(text)
        ]
        logger.debug(f"Chunked {file_name}: {len(text)} chars -> {len(chunks)} chunks")
        return chunks

    def _find_break(self, text: str, start: int, target_end: int) -> int:
        """Pull the chunk end back to a paragraph or sentence boundary.

        A chunk must stay longer than the overlap, otherwise the next one
        would not advance.
        """
        min_end = start + self._config.overlap_size + 1

        if self._config.respect_paragraphs:
            lo = max(start, target_end - PARAGRAPH_SEARCH_WINDOW)
            pos = text.rfind("\n\n", lo, target_end)
            if pos != -1 and pos + 2 >= min_end:
                return pos + 2

        if self._config.respect_sentences:
            lo = max(start, target_end - SENTENCE_SEARCH_WINDOW)
            last = None
            for match in _SENTENCE_END.finditer(text, lo, target_end):
                last = match
            if last is not None and last.end() >= min_end:
                return last.end()

        return target_end
