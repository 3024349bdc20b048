import json
import logging
from pathlib import Path

import numpy as np

from ragchat.core.models.document import DocumentChunk, IndexStatistics
from ragchat.infrastructure.vector_stores.memory_store import InMemoryVectorIndex
from .conversation_store import atomic_file, write_atomic

logger = logging.getLogger(__name__)

CHUNKS_FILE = "chunks.json"
VECTORS_FILE = "vectors.npy"


class IndexSnapshotStore:
    """Saves an in-memory index as chunks JSON plus a vectors .npy matrix."""

    def __init__(self, directory: str = "./data/index"):
        self._directory = Path(directory)

    def exists(self) -> bool:
        return (self._directory / CHUNKS_FILE).exists() and (
            self._directory / VECTORS_FILE
        ).exists()

    def save(self, index: InMemoryVectorIndex, file_hashes: dict[str, str] | None = None) -> int:
        """Write a consistent snapshot. Returns the number of chunks saved."""
        chunks, vectors = index.entries()
        self._directory.mkdir(parents=True, exist_ok=True)

        with atomic_file(self._directory / VECTORS_FILE, "wb") as f:
            np.save(f, vectors)
        payload = {
            "dimension": index.dimension,
            "chunks": [c.to_dict() for c in chunks],
            "statistics": index.statistics().to_dict(),
            "file_hashes": file_hashes or {},
        }
        write_atomic(self._directory / CHUNKS_FILE, json.dumps(payload, ensure_ascii=False))

        logger.info(f"Saved index snapshot: {len(chunks)} chunks to {self._directory}")
        return len(chunks)

    def load(self, index: InMemoryVectorIndex) -> dict[str, str]:
        """Replace index contents with the snapshot.

        Returns:
            File content hashes stored with the snapshot.

        Raises:
            ValueError: Chunk and vector counts disagree.
        """
        payload = json.loads((self._directory / CHUNKS_FILE).read_text(encoding="utf-8"))
        vectors = np.load(self._directory / VECTORS_FILE)
        chunks = [DocumentChunk.from_dict(c) for c in payload.get("chunks", [])]

        if len(chunks) != len(vectors):
            raise ValueError(
                f"Corrupt index snapshot: {len(chunks)} chunks vs {len(vectors)} vectors"
            )

        index.replace_all(
            zip(chunks, vectors), IndexStatistics.from_dict(payload.get("statistics", {}))
        )

        logger.info(f"Loaded index snapshot: {len(chunks)} chunks from {self._directory}")
        return dict(payload.get("file_hashes", {}))
