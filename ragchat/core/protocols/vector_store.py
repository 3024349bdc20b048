"""Vector store protocol for dependency injection."""
from typing import Iterable, Protocol, runtime_checkable

import numpy as np

from ..models.document import DocumentChunk, IndexStatistics


@runtime_checkable
class VectorStoreProtocol(Protocol):
    """Protocol for vector storage."""

    def insert(self, chunk: DocumentChunk, embedding: np.ndarray) -> None:
        """Add or replace the entry for chunk.id."""
        ...

    def bulk_load(self, items: Iterable[tuple[DocumentChunk, np.ndarray]]) -> int:
        """Add many entries at once, atomically for readers.

        Returns:
            Number of entries written.
        """
        ...

    def query(
        self, embedding: np.ndarray, k: int = 5
    ) -> list[tuple[DocumentChunk, float]]:
        """Nearest neighbours by cosine similarity, best first.

        Raises:
            EmptyIndexError: Index holds no chunks.
        """
        ...

    def remove_file(self, file_path: str) -> int:
        """Remove all chunks of a file. Returns removed count."""
        ...

    def replace_file(
        self, file_path: str, items: Iterable[tuple[DocumentChunk, np.ndarray]]
    ) -> int:
        """Swap all chunks of a file for new ones, atomically for readers."""
        ...

    def clear(self) -> None:
        """Remove everything and reset statistics."""
        ...

    def count(self) -> int:
        """Get chunk count."""
        ...

    def statistics(self) -> IndexStatistics:
        """Get a copy of the indexing statistics."""
        ...

    def record_processing_time(self, seconds: float) -> None:
        """Add ingestion wall time to the statistics."""
        ...

    def record_failure(self, file_path: str) -> None:
        """Note a file that could not be indexed."""
        ...
