"""Embedding service - caching and batching in front of the embedder."""

import asyncio
import logging
from collections import OrderedDict

import numpy as np

from ..errors import ExternalServiceError, ServiceErrorKind
from ..protocols.embedder import EmbedderProtocol

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Wraps an embedder with an LRU cache, batching and a per-call timeout."""

    def __init__(
        self,
        embedder: EmbedderProtocol,
        batch_size: int = 64,
        cache_size: int = 2048,
        timeout: float = 30.0,
        query_prefix: str = "query: ",
        passage_prefix: str = "passage: ",
    ):
        """Initialize embedding service.

        Args:
            embedder: Embedding backend.
            batch_size: Max texts per embedder call.
            cache_size: Max cached vectors (0 disables the cache).
            timeout: Seconds allowed per embedder call.
            query_prefix: Prefix for questions (e5-style models).
            passage_prefix: Prefix for document chunks.
        """
        self._embedder = embedder
        self._batch_size = max(1, batch_size)
        self._cache_size = cache_size
        self._timeout = timeout
        self._query_prefix = query_prefix
        self._passage_prefix = passage_prefix
        self._cache: OrderedDict[str, np.ndarray] = OrderedDict()

    @property
    def model_name(self) -> str:
        return getattr(self._embedder, "model_name", "unknown")

    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a search question."""
        vectors = await self._embed([self._query_prefix + self._validate(text)])
        return vectors[0]

    async def embed_passages(self, texts: list[str]) -> np.ndarray:
        """Embed document chunks, one row per text."""
        return await self._embed([self._passage_prefix + self._validate(t) for t in texts])

    def _validate(self, text: str) -> str:
        if not text or not text.strip():
            raise ExternalServiceError(
                "embedder", ServiceErrorKind.INVALID_INPUT, "cannot embed empty text"
            )
        return text

    async def _embed(self, texts: list[str]) -> np.ndarray:
        found: dict[str, np.ndarray] = {}
        for text in texts:
            if text in self._cache:
                found[text] = self._cache[text]
                self._cache.move_to_end(text)

        missing = list(dict.fromkeys(t for t in texts if t not in found))
        for i in range(0, len(missing), self._batch_size):
            batch = missing[i : i + self._batch_size]
            vectors = await self._call(batch)
            for text, vector in zip(batch, vectors):
                found[text] = vector
                self._remember(text, vector)

        if missing:
            logger.debug(
                f"Embedded {len(missing)} texts ({len(texts) - len(missing)} cached)"
            )

        return np.vstack([found[t] for t in texts])

    async def _call(self, batch: list[str]) -> np.ndarray:
        try:
            vectors = await asyncio.wait_for(self._embedder.embed(batch), self._timeout)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                "embedder",
                ServiceErrorKind.TIMEOUT,
                f"no response within {self._timeout:.0f}s",
            ) from e

        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim != 2 or vectors.shape[0] != len(batch):
            raise ExternalServiceError(
                "embedder",
                ServiceErrorKind.MALFORMED_RESPONSE,
                f"expected {len(batch)} vectors, got shape {vectors.shape}",
            )
        return vectors

    def _remember(self, text: str, vector: np.ndarray) -> None:
        if self._cache_size <= 0:
            return
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
