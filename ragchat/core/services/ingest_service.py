"""Ingest service - document indexing."""

import asyncio
import hashlib
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

from ..errors import ExternalServiceError
from ..models.document import FileType, IndexStatistics
from ..models.tool import ToolResult
from ..protocols.vector_store import VectorStoreProtocol
from .chunker import ChunkingConfig, TextChunker, detect_file_type
from .embedding_service import EmbeddingService

logger = logging.getLogger(__name__)

SKIP_DIRS = {
    ".git",
    ".svn",
    ".hg",
    ".idea",
    ".vscode",
    "__pycache__",
    ".venv",
    "venv",
    "node_modules",
    "build",
    "dist",
    "DerivedData",
    ".build",
    "Pods",
}

ProgressCallback = Callable[[str, int, int], None]


class DocumentLoader(Protocol):
    def supports(self, file_path: Path) -> bool: ...

    def load(self, file_path: Path) -> Optional[str]: ...


class IngestService:
    """Service for indexing documents into the vector index."""

    def __init__(
        self,
        embeddings: EmbeddingService,
        vector_store: VectorStoreProtocol,
        loader: DocumentLoader,
        docs_path: str = "./docs",
        prose_config: Optional[ChunkingConfig] = None,
        code_config: Optional[ChunkingConfig] = None,
        batch_size: int = 64,
    ):
        """Initialize ingest service.

        Args:
            embeddings: Embedding service.
            vector_store: Vector index.
            loader: Document loader.
            docs_path: Default documents folder.
            prose_config: Chunking for text, markdown, PDF and DOCX.
            code_config: Chunking for source code.
            batch_size: Chunks per embedding call.
        """
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._loader = loader
        self._docs_path = Path(docs_path)
        self._prose_chunker = TextChunker(prose_config or ChunkingConfig())
        self._code_chunker = TextChunker(code_config or ChunkingConfig.for_code())
        self._batch_size = max(1, batch_size)
        self._file_hashes: dict[str, str] = {}

    @property
    def file_hashes(self) -> dict[str, str]:
        """Content hash per indexed file path."""
        return dict(self._file_hashes)

    def restore_hashes(self, hashes: dict[str, str]) -> None:
        self._file_hashes = dict(hashes)

    def _compute_hash(self, content: str) -> str:
        """Compute content hash."""
        return hashlib.md5(content.encode()).hexdigest()[:12]

    def _chunker_for(self, file_type: FileType) -> TextChunker:
        return self._code_chunker if file_type == FileType.SOURCE else self._prose_chunker

    def discover(self, root: Optional[Path] = None) -> list[Path]:
        """Supported files under root, skipping VCS and build folders."""
        root = Path(root or self._docs_path)
        if root.is_file():
            return [root] if self._loader.supports(root) else []

        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if d not in SKIP_DIRS and not d.startswith(".")
            )
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if self._loader.supports(path):
                    files.append(path)
        return files

    async def run(
        self,
        path: Optional[str] = None,
        force: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> IndexStatistics:
        """Index documents.

        Args:
            path: Folder or file; the configured docs path by default.
            force: Re-index files whose content did not change.
            progress: Called with (file name, processed, total) per file.

        Returns:
            Index statistics after the run.
        """
        root = Path(path) if path else self._docs_path
        if not root.exists():
            logger.error(f"Docs path not found: {root}")
            return self._vector_store.statistics()

        start = time.perf_counter()
        files = self.discover(root)
        logger.info(f"Found {len(files)} files in {root}")

        indexed = 0
        for processed, file_path in enumerate(files, start=1):
            if progress:
                progress(file_path.name, processed, len(files))
            if await self._index_file(file_path, force):
                indexed += 1

        elapsed = time.perf_counter() - start
        self._vector_store.record_processing_time(elapsed)
        logger.info(f"Indexing complete: {indexed}/{len(files)} files in {elapsed:.2f}s")
        return self._vector_store.statistics()

    async def _index_file(self, file_path: Path, force: bool) -> bool:
        key = str(file_path)
        content = await asyncio.to_thread(self._loader.load, file_path)
        if not content or not content.strip():
            logger.warning(f"No text extracted from {file_path.name}")
            self._vector_store.record_failure(key)
            return False

        file_hash = self._compute_hash(content)
        if not force and self._file_hashes.get(key) == file_hash:
            logger.debug(f"Skip unchanged: {file_path.name}")
            return False

        try:
            count = await self.index_text(content, key)
        except ExternalServiceError as e:
            logger.error(f"Failed to index {file_path.name}: {e.user_message}")
            self._vector_store.record_failure(key)
            return False

        self._file_hashes[key] = file_hash
        return count > 0

    async def index_text(
        self,
        text: str,
        file_path: str,
        file_type: Optional[FileType] = None,
        language: Optional[str] = None,
    ) -> int:
        """Chunk, embed and load one document, replacing older chunks of it.

        Returns:
            Number of chunks indexed.

        Raises:
            ExternalServiceError: Embedding failed; the index is unchanged.
        """
        file_type = file_type or detect_file_type(file_path)
        chunks = self._chunker_for(file_type).chunk_document(
            text, file_path, file_type=file_type, language=language
        )
        chunks = [c for c in chunks if c.content.strip()]
        if not chunks:
            return 0

        vectors = []
        for i in range(0, len(chunks), self._batch_size):
            batch = chunks[i : i + self._batch_size]
            vectors.extend(await self._embeddings.embed_passages([c.content for c in batch]))

        # Embed everything first so a failure leaves the old chunks in place
        await asyncio.to_thread(
            self._vector_store.replace_file, file_path, list(zip(chunks, vectors))
        )
        logger.info(f"Indexed {len(chunks)} chunks from {Path(file_path).name}")
        return len(chunks)

    async def index_tool_result(self, result: ToolResult, uri: Optional[str] = None) -> int:
        """Index text fetched by a tool call, e.g. a resource read.

        Raises:
            ValueError: The tool call failed or returned no text.
        """
        if result.is_error:
            raise ValueError(f"Tool {result.tool_name} returned an error: {result.text[:200]}")

        text = result.text
        if not text.strip():
            raise ValueError(f"Tool {result.tool_name} returned no text content")

        uri = uri or next((c.uri for c in result.content if c.uri), None)
        file_path = uri or f"tool://{result.tool_name}"
        return await self.index_text(text, file_path, file_type=FileType.RESOURCE)
