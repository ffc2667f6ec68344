"""
Embedder module for generating OpenAI embeddings and scoring them.

Wraps the embeddings endpoint behind `EmbeddingClient`: single queries,
batches of document lines (one `EmbeddingBatch` per call) and cosine
similarity of a query vector against every vector of a list of batches.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np
from openai import AsyncOpenAI

from app import config
from app.openai_errors import rate_limit_retry

logger = logging.getLogger(__name__)

EmbeddingVector = List[float]


class EmbeddingCountMismatchError(Exception):
    """Raised when the provider returns a different number of vectors than inputs."""
    pass


@dataclass
class EmbeddingBatch:
    """Vectors for one batch of lines, stamped with the time they were computed.

    Attributes:
        vectors: One vector per source line, in line order.
        source_last_modified: The batch is stale once the originating
                              document is modified after this time.
    """
    vectors: List[EmbeddingVector]
    source_last_modified: datetime

    def __len__(self) -> int:
        return len(self.vectors)


def _get_openai_client() -> AsyncOpenAI:
    """Get an AsyncOpenAI client using the configured API key.

    Returns:
        AsyncOpenAI client instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    api_key = config.OPENAI_API_KEY
    if not api_key:
        raise ValueError("OPENAI_API_KEY not found in environment or app.config")

    return AsyncOpenAI(api_key=api_key)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError("Vectors must have the same length")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # Floating point error can push parallel vectors just past the bounds
    return max(-1.0, min(1.0, similarity))


def compare_to_all(query: Sequence[float], batches: Sequence[EmbeddingBatch]) -> List[float]:
    """Score the query against every vector of every batch.

    The result is flattened in batch order, then within-batch order, so that
    result[i] belongs to the i-th line of the concatenated batch inputs.
    """
    return [
        cosine_similarity(vector, query)
        for batch in batches
        for vector in batch.vectors
    ]


class EmbeddingClient:
    """Remote embedding model wrapper.

    Args:
        client: Optional pre-existing AsyncOpenAI client. Created lazily
                from app.config when omitted.
        model: Embedding model name. Defaults to config.EMBEDDING_MODEL.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or config.EMBEDDING_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = _get_openai_client()
        return self._client

    @rate_limit_retry
    async def _create(self, texts):
        return await self.client.embeddings.create(model=self.model, input=texts)

    async def embed_query(self, text: str) -> EmbeddingVector:
        """Generate an embedding for a single query string."""
        response = await self._create(text)
        return list(response.data[0].embedding)

    async def embed_batch(self, lines: Sequence[str]) -> EmbeddingBatch:
        """Generate embeddings for a batch of lines in a single request.

        Args:
            lines: Text lines to embed.

        Returns:
            EmbeddingBatch with exactly one vector per line.

        Raises:
            EmbeddingCountMismatchError: If the provider returns a different
                                         number of vectors than lines.
        """
        response = await self._create(list(lines))

        vectors = [list(item.embedding) for item in response.data]
        if len(vectors) != len(lines):
            raise EmbeddingCountMismatchError(
                f"Expected {len(lines)} embeddings, got {len(vectors)}"
            )

        usage = getattr(response, "usage", None)
        logger.info(
            f"[EMBEDDER] Generated {len(vectors)} embeddings ({self.model}), "
            f"usage: {getattr(usage, 'total_tokens', '?')} tokens"
        )
        return EmbeddingBatch(vectors=vectors, source_last_modified=datetime.now(timezone.utc))

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    @staticmethod
    def compare_to_all(query: Sequence[float], batches: Sequence[EmbeddingBatch]) -> List[float]:
        return compare_to_all(query, batches)
