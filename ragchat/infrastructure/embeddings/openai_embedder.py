import logging

import numpy as np
import openai
from openai import AsyncOpenAI

from ragchat.core.errors import ExternalServiceError, ServiceErrorKind
from ragchat.infrastructure.llm.errors import to_service_error

logger = logging.getLogger(__name__)


class OpenAIEmbedder:
    """Embedder backed by an OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
    ):
        self.model_name = model_name
        self._client = AsyncOpenAI(
            base_url=base_url, api_key=api_key, timeout=timeout, max_retries=1
        )

    async def embed(self, texts: list[str]) -> np.ndarray:
        try:
            response = await self._client.embeddings.create(
                model=self.model_name, input=texts
            )
        except openai.OpenAIError as e:
            logger.error(f"[embeddings] Request failed: {e}")
            raise to_service_error("embedder", e) from e

        if len(response.data) != len(texts):
            raise ExternalServiceError(
                "embedder",
                ServiceErrorKind.MALFORMED_RESPONSE,
                f"expected {len(texts)} embeddings, got {len(response.data)}",
            )
        # Items carry their input position; order is not guaranteed
        ordered = sorted(response.data, key=lambda item: item.index)
        return np.array([item.embedding for item in ordered], dtype=np.float64)
