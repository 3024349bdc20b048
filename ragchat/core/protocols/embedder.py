"""Embedder protocol for dependency injection."""
from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class EmbedderProtocol(Protocol):
    """Protocol for embedding service."""

    model_name: str

    async def embed(self, texts: list[str]) -> np.ndarray:
        """Encode texts to embeddings.

        Args:
            texts: Texts to encode.

        Returns:
            2D array, one row per text.

        Raises:
            ExternalServiceError: Embedding call failed.
        """
        ...
