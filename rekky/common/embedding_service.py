"""
Embedding Service

Turns text into 1536-wide vectors via the OpenAI embeddings API.
No retries here: the embedding queue owns retry policy for the write path,
and the read path surfaces failures as "search unavailable".
"""

import logging
import math
from numbers import Real
from typing import List, Optional, Sequence

import numpy as np

from .errors import EmbeddingServiceError, InvalidVectorError

logger = logging.getLogger("rekky.common.embedding_service")

EMBEDDING_DIMENSIONS = 1536
DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"


def validate_embedding(vector: Sequence[float], dimensions: int = EMBEDDING_DIMENSIONS) -> bool:
    """Check a vector has exactly ``dimensions`` finite real components"""
    if vector is None or isinstance(vector, (str, bytes)):
        return False
    try:
        if len(vector) != dimensions:
            return False
    except TypeError:
        return False
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, Real):
            return False
        if not math.isfinite(value):
            return False
    return True


class EmbeddingService:
    """
    Embedding client for Rekky.

    Wraps ``openai.OpenAI().embeddings``. A missing API key leaves the
    service unavailable rather than failing at construction, so the rest of
    the application can still start.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        timeout: float = 30.0,
        client=None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize embedding service.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            dimensions: Expected vector width
            timeout: Per-request timeout in seconds
            client: Pre-built OpenAI-compatible client (tests, proxies)
            base_url: Alternative OpenAI-compatible endpoint
        """
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._client = client

        if self._client is not None:
            return
        if not api_key:
            logger.info("Embedding API key not provided, embedding service unavailable")
            return
        try:
            from openai import OpenAI

            kwargs = {"api_key": api_key, "timeout": timeout}
            if base_url:
                kwargs["base_url"] = base_url
            self._client = OpenAI(**kwargs)
        except Exception as e:
            logger.warning("Failed to initialize OpenAI embedding client: %s", e)

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._client is not None

    def _request(self, texts: List[str]) -> List[List[float]]:
        if not self.is_available:
            raise EmbeddingServiceError("Embedding service is not configured (missing API key)")

        import openai

        try:
            response = self._client.embeddings.create(
                input=texts,
                model=self.model,
                timeout=self.timeout,
            )
        except openai.APIError as exc:
            raise EmbeddingServiceError(f"Embedding API error: {exc}") from exc
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding request failed: {exc}") from exc

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise InvalidVectorError(
                f"Expected {len(texts)} embeddings, service returned {len(data)}"
            )

        vectors = []
        for item in data:
            vector = list(item.embedding)
            if not validate_embedding(vector, self.dimensions):
                raise InvalidVectorError(
                    f"Service returned an invalid vector (width {len(vector)}, expected {self.dimensions})"
                )
            vectors.append(vector)
        return vectors

    def embed(self, text: str) -> List[float]:
        """
        Generate the embedding for a single text.

        Raises:
            ValueError: if text is blank
            EmbeddingServiceError: on upstream failure or missing key
            InvalidVectorError: if the returned vector is malformed
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        return self._request([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for many texts in one request.

        Blank texts are skipped, so the result may be shorter than the input.
        """
        cleaned = [t for t in texts if t and t.strip()]
        if not cleaned:
            return []
        return self._request(cleaned)

    @staticmethod
    def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
        """
        Compute cosine similarity between two vectors.

        Returns 0.0 if either vector has zero norm.
        """
        v1 = np.asarray(vec1, dtype=float)
        v2 = np.asarray(vec2, dtype=float)

        if v1.shape != v2.shape:
            raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

        norm = float(np.linalg.norm(v1) * np.linalg.norm(v2))
        if norm == 0.0:
            return 0.0
        return float(np.dot(v1, v2) / norm)
