"""
Chunker module for turning document lines into embedding batches.

`ChunkBatcher` splits a document's lines into size-bounded batches and
embeds each one. A failed batch is retried with half the batch size, on
the assumption that failures correlate with payload size (rate limits,
request length limits). When even a single line cannot be embedded the
loop stops and the batches produced so far are returned.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from app import config
from .embedder import EmbeddingBatch, EmbeddingClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextChunk:
    """One retrievable line of document text.

    Attributes:
        source_path: Path of the document the line came from.
        line: The text itself.
        ordinal: Position of the line within its document.
    """
    source_path: str
    line: str
    ordinal: int


def to_chunks(source_path: str, lines: Sequence[str]) -> List[TextChunk]:
    """Wrap a document's lines as ordered TextChunks."""
    return [TextChunk(source_path=source_path, line=line, ordinal=i) for i, line in enumerate(lines)]


class ChunkBatcher:
    """Embeds lines in batches of at most `max_batch_size`, halving on failure.

    Args:
        embedding_client: Client used to embed each batch.
        max_batch_size: Upper bound on lines per request.
                        Defaults to config.EMBEDDING_MAX_BATCH_SIZE.
    """

    def __init__(self, embedding_client: EmbeddingClient, max_batch_size: Optional[int] = None):
        self.embedding_client = embedding_client
        self.max_batch_size = config.EMBEDDING_MAX_BATCH_SIZE if max_batch_size is None else max_batch_size
        if self.max_batch_size < 1:
            raise ValueError(f"max_batch_size must be at least 1, got {self.max_batch_size}")

    async def compute_embeddings(self, lines: Sequence[str]) -> List[EmbeddingBatch]:
        """Embed all lines, in order, as a list of batches.

        Args:
            lines: Document lines to embed.

        Returns:
            Batches covering a prefix of `lines` in order. The prefix is the
            whole input unless embedding failed at batch size 1.
        """
        batches: List[EmbeddingBatch] = []
        position = 0
        total = len(lines)
        batch_size = min(self.max_batch_size, total)

        while position < total:
            current_batch = list(lines[position:position + batch_size])
            try:
                batch = await self.embedding_client.embed_batch(current_batch)
            except Exception as e:
                if batch_size == 1:
                    logger.error(
                        f"[CHUNKER] Failed to calculate embeddings with batch size 1 "
                        f"at line {position} of {total}: {e}"
                    )
                    break
                batch_size = max(1, batch_size // 2)
                logger.warning(
                    f"[CHUNKER] Embedding batch failed ({type(e).__name__}), "
                    f"retrying with batch size {batch_size}"
                )
                continue

            batches.append(batch)
            position += len(current_batch)
            batch_size = min(self.max_batch_size, total - position)
            logger.debug(f"[CHUNKER] Embedded {position}/{total} lines in {len(batches)} batches")

        return batches
