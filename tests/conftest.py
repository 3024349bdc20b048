"""Pytest configuration and shared fixtures for the test suite."""

import asyncio
import hashlib
import re
from typing import Callable, Optional, Union

import numpy as np
import pytest

from ragchat.core.models.document import (
    ChunkMetadata,
    DocumentChunk,
    FileType,
    SearchResult,
)
from ragchat.core.services.chunker import detect_file_type

EMBEDDING_DIM = 64

_WORD = re.compile(r"\w+")


class FakeEmbedder:
    """Deterministic bag-of-words embedder.

    Each word lands in a bucket picked by its md5, so texts sharing words
    get similar vectors. ``vectors`` pins exact vectors for given texts.
    """

    model_name = "fake-embedder"

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None, dim: int = EMBEDDING_DIM):
        self.vectors = vectors or {}
        self.dim = dim
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> np.ndarray:
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float64)
        vector = np.zeros(self.dim)
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dim
            vector[bucket] += 1.0
        return vector

    async def embed(self, texts: list[str]) -> np.ndarray:
        self.calls.append(list(texts))
        return np.vstack([self.vector_for(t) for t in texts])


Reply = Union[str, Exception, Callable[[str, Optional[str]], str]]


class FakeLLM:
    """Scripted answer generator.

    ``replies`` are consumed in order; the last one repeats. A reply may be
    a string, an exception to raise, or a callable of (prompt, system).
    """

    def __init__(self, *replies: Reply, delay: float = 0.0):
        self.replies = list(replies) or ["ok"]
        self.delay = delay
        self.calls: list[dict] = []

    def _next(self) -> Reply:
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def generate(self, prompt, context=None, history=None, system=None) -> str:
        self.calls.append(
            {"prompt": prompt, "context": context, "history": history, "system": system}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self._next()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt, system)
        return reply

    async def chat_stream(self, prompt, history=None, system=None):
        reply = await self.generate(prompt, history=history, system=system)
        for word in reply.split(" "):
            yield word + " "


def make_chunk(
    content: str,
    file_path: str = "docs/guide.md",
    chunk_index: int = 0,
    file_type: Optional[FileType] = None,
    chunk_id: Optional[str] = None,
) -> DocumentChunk:
    file_type = file_type or detect_file_type(file_path)
    kwargs = {"id": chunk_id} if chunk_id else {}
    return DocumentChunk(
        file_path=file_path,
        file_name=file_path.rsplit("/", 1)[-1],
        content=content,
        chunk_index=chunk_index,
        metadata=ChunkMetadata(file_type=file_type, token_count=max(1, len(content) // 4)),
        **kwargs,
    )


def make_results(*similarities: float, file_path: str = "docs/guide.md") -> list[SearchResult]:
    """Candidates with the given similarities, ranked in the given order."""
    return [
        SearchResult(
            chunk=make_chunk(f"chunk {i} content", file_path=file_path, chunk_index=i),
            similarity=s,
            rank=i,
        )
        for i, s in enumerate(similarities, 1)
    ]


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()
