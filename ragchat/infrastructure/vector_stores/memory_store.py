import logging
import threading
from collections import Counter
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

import numpy as np

from ragchat.core.errors import ConfigurationError, EmptyIndexError
from ragchat.core.models.document import DocumentChunk, IndexStatistics

logger = logging.getLogger(__name__)

_INITIAL_CAPACITY = 64


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either is a zero vector."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, -1.0, 1.0))


def cosine_similarities(
    query: np.ndarray, matrix: np.ndarray, norms: Optional[np.ndarray] = None
) -> np.ndarray:
    """Cosine similarity of query against every row; zero rows score 0.0."""
    query = np.asarray(query, dtype=np.float64).ravel()
    if norms is None:
        norms = np.linalg.norm(matrix, axis=1)
    denom = norms * np.linalg.norm(query)
    dots = matrix @ query
    sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(sims, -1.0, 1.0)


class _ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryVectorIndex:
    """Vector index held in a numpy matrix with a linear-scan top-k query.

    Rows keep insertion order; replacing a chunk id keeps its row, so ties
    in similarity resolve to the earlier inserted chunk.
    """

    def __init__(self, dimension: Optional[int] = None):
        """Initialize index.

        Args:
            dimension: Embedding size. Inferred from the first insert if omitted.
        """
        self._lock = _ReadWriteLock()
        self._dimension = dimension
        self._chunks: list[DocumentChunk] = []
        self._positions: dict[str, int] = {}
        self._vectors: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._documents: set[str] = set()
        self._stats = IndexStatistics()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _ensure_capacity(self, needed: int) -> None:
        if self._vectors is None:
            capacity = max(_INITIAL_CAPACITY, needed)
            self._vectors = np.zeros((capacity, self._dimension), dtype=np.float64)
            self._norms = np.zeros(capacity, dtype=np.float64)
            return

        capacity = self._vectors.shape[0]
        if needed <= capacity:
            return
        while capacity < needed:
            capacity *= 2
        vectors = np.zeros((capacity, self._dimension), dtype=np.float64)
        norms = np.zeros(capacity, dtype=np.float64)
        size = len(self._chunks)
        vectors[:size] = self._vectors[:size]
        norms[:size] = self._norms[:size]
        self._vectors, self._norms = vectors, norms

    def _as_vector(self, embedding: np.ndarray) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float64).ravel()
        if self._dimension is None:
            self._dimension = vector.shape[0]
        if vector.shape[0] != self._dimension:
            raise ConfigurationError(
                f"Embedding dimension mismatch: expected {self._dimension}, got {vector.shape[0]}"
            )
        return vector

    def _write(self, chunk: DocumentChunk, vector: np.ndarray) -> bool:
        """Store one entry. Caller holds the write lock. True if it was new."""
        position = self._positions.get(chunk.id)
        is_new = position is None
        if is_new:
            position = len(self._chunks)
            self._ensure_capacity(position + 1)
            self._chunks.append(chunk)
            self._positions[chunk.id] = position
        else:
            self._chunks[position] = chunk

        self._vectors[position] = vector
        self._norms[position] = np.linalg.norm(vector)
        return is_new

    def _record(self, new_chunks: list[DocumentChunk]) -> None:
        for file_path, count in Counter(c.file_path for c in new_chunks).items():
            if file_path in self._documents:
                self._stats.total_chunks += count
            else:
                self._documents.add(file_path)
                self._stats.add_success(file_path, count)

    def insert(self, chunk: DocumentChunk, embedding: np.ndarray) -> None:
        """Add or replace the entry for chunk.id."""
        with self._lock.write():
            if self._write(chunk, self._as_vector(embedding)):
                self._record([chunk])

    def bulk_load(self, items: Iterable[tuple[DocumentChunk, np.ndarray]]) -> int:
        """Add many entries; readers see none or all of them."""
        items = list(items)
        if not items:
            return 0

        with self._lock.write():
            new_chunks = self._load_locked(items)

        logger.debug(f"Bulk loaded {len(items)} chunks ({len(new_chunks)} new)")
        return len(items)

    def _load_locked(
        self, items: list[tuple[DocumentChunk, np.ndarray]]
    ) -> list[DocumentChunk]:
        # Validate every vector before the first write
        prepared = [(chunk, self._as_vector(emb)) for chunk, emb in items]
        self._ensure_capacity(len(self._chunks) + len(prepared))
        new_chunks = [chunk for chunk, vector in prepared if self._write(chunk, vector)]
        self._record(new_chunks)
        return new_chunks

    def replace_file(
        self, file_path: str, items: Iterable[tuple[DocumentChunk, np.ndarray]]
    ) -> int:
        """Swap all chunks of a file for new ones in one step.

        Readers see either the old chunks or the new ones, never neither.
        """
        items = list(items)
        with self._lock.write():
            for chunk, emb in items:
                self._as_vector(emb)
            removed = self._remove_locked(file_path)
            self._load_locked(items)

        logger.info(f"Replaced {removed} chunks of {file_path} with {len(items)}")
        return len(items)

    def replace_all(
        self,
        items: Iterable[tuple[DocumentChunk, np.ndarray]],
        statistics: Optional[IndexStatistics] = None,
    ) -> int:
        """Replace the whole index, e.g. from a snapshot.

        Saved processing time and failed files carry over from ``statistics``.
        """
        items = list(items)
        vectors = [np.asarray(emb, dtype=np.float64).ravel() for _, emb in items]
        if len({v.shape[0] for v in vectors}) > 1:
            raise ConfigurationError("Embedding dimensions differ within the snapshot")

        with self._lock.write():
            self._reset_locked()
            if vectors:
                self._dimension = vectors[0].shape[0]
            self._load_locked([(chunk, v) for (chunk, _), v in zip(items, vectors)])
            if statistics is not None:
                self._stats.processing_time = statistics.processing_time
                for failed in statistics.failed_files:
                    self._stats.add_failure(failed)

        return len(items)

    def query(
        self, embedding: np.ndarray, k: int = 5
    ) -> list[tuple[DocumentChunk, float]]:
        """Search by embedding.

        Raises:
            EmptyIndexError: Index holds no chunks.
        """
        if k <= 0:
            raise ConfigurationError(f"k must be positive, got {k}")

        with self._lock.read():
            size = len(self._chunks)
            if size == 0:
                raise EmptyIndexError("Vector index is empty")

            query = self._as_vector(embedding)
            sims = cosine_similarities(query, self._vectors[:size], self._norms[:size])

            if k < size:
                # Keep every index tied with the k-th best so ties resolve by position
                kth = np.partition(-sims, k - 1)[k - 1]
                candidates = np.flatnonzero(-sims <= kth)
            else:
                candidates = np.arange(size)

            order = candidates[np.lexsort((candidates, -sims[candidates]))][:k]
            return [(self._chunks[i], float(sims[i])) for i in order]

    def _remove_locked(self, file_path: str) -> int:
        keep = [i for i, c in enumerate(self._chunks) if c.file_path != file_path]
        removed = len(self._chunks) - len(keep)
        if removed == 0:
            return 0

        self._chunks = [self._chunks[i] for i in keep]
        self._positions = {c.id: i for i, c in enumerate(self._chunks)}
        if keep:
            self._vectors[: len(keep)] = self._vectors[keep]
            self._norms[: len(keep)] = self._norms[keep]
        return removed

    def remove_file(self, file_path: str) -> int:
        """Remove all chunks of a file."""
        with self._lock.write():
            removed = self._remove_locked(file_path)

        if removed:
            logger.info(f"Removed {removed} chunks of {file_path}")
        return removed

    def _reset_locked(self) -> None:
        self._chunks = []
        self._positions = {}
        self._vectors = None
        self._norms = None
        self._documents = set()
        self._stats = IndexStatistics()

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        with self._lock.write():
            self._reset_locked()
        logger.info("Vector index cleared")

    def count(self) -> int:
        with self._lock.read():
            return len(self._chunks)

    def chunks(self) -> list[DocumentChunk]:
        with self._lock.read():
            return list(self._chunks)

    def entries(self) -> tuple[list[DocumentChunk], np.ndarray]:
        """Consistent copy of all chunks and their vectors."""
        with self._lock.read():
            size = len(self._chunks)
            if self._vectors is None:
                return [], np.zeros((0, self._dimension or 0))
            return list(self._chunks), self._vectors[:size].copy()

    def record_processing_time(self, seconds: float) -> None:
        with self._lock.write():
            self._stats.processing_time += seconds

    def record_failure(self, file_path: str) -> None:
        with self._lock.write():
            self._stats.add_failure(file_path)

    def statistics(self) -> IndexStatistics:
        with self._lock.read():
            return IndexStatistics.from_dict(self._stats.to_dict())
