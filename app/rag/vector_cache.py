"""
Content-addressed cache of document embedding batches.

Embeddings are durable derived data: an entry is keyed by
(container, document) and only recomputed when the document has been
modified after the cached batches were produced, or when recomputation is
forced. Lookup goes through the in-process CacheStore first, then the
optional durable VectorStore.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .cache_store import CacheStore
from .chunk_store import VectorStore
from .chunker import ChunkBatcher
from .embedder import EmbeddingBatch

logger = logging.getLogger(__name__)


def make_cache_key(container_key: str, document_key: str) -> str:
    """Derive the cache key for a (container, document) pair."""
    base = f"{container_key}|{document_key}"
    return "embeddings:" + hashlib.sha1(base.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC so they compare with stamped batches
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_stale(batches: Sequence[EmbeddingBatch], source_last_modified: Optional[datetime]) -> bool:
    """True if there are no batches or the document changed after they were computed."""
    if not batches:
        return True
    if source_last_modified is None:
        return False
    return _as_utc(batches[0].source_last_modified) < _as_utc(source_last_modified)


class VectorCache:
    """Get-or-compute access to embedding batches per document.

    Args:
        cache: Shared in-process cache.
        batcher: Computes batches on a miss.
        vector_store: Optional durable store consulted after the cache.
    """

    def __init__(self, cache: CacheStore, batcher: ChunkBatcher, vector_store: Optional[VectorStore] = None):
        self.cache = cache
        self.batcher = batcher
        self.vector_store = vector_store

    def _lookup(self, key: str) -> Optional[List[EmbeddingBatch]]:
        batches = self.cache.get(key)
        if batches is not None:
            return batches

        if self.vector_store is None:
            return None

        try:
            batches = self.vector_store.load(key)
        except Exception as e:
            logger.warning(f"[VECTOR_CACHE] Vector store lookup failed for {key}: {e}")
            return None

        if batches:
            self.cache.set(key, batches)
        return batches

    async def get_or_compute(
        self,
        container_key: str,
        document_key: str,
        lines: Sequence[str],
        source_last_modified: Optional[datetime] = None,
        force: bool = False,
    ) -> List[EmbeddingBatch]:
        """Return embedding batches for a document, computing them if needed.

        Args:
            container_key: Location the document lives in (site, folder, drive).
            document_key: Document identity within the container.
            lines: The document's text lines, used on recompute.
            source_last_modified: The document's current modification time.
            force: Recompute even if fresh batches are cached (explicit re-indexing).

        Returns:
            Batches covering the document's lines in order (possibly a prefix
            if embedding degraded, possibly empty).
        """
        key = make_cache_key(container_key, document_key)

        if not force:
            cached = self._lookup(key)
            if cached is not None and not is_stale(cached, source_last_modified):
                logger.debug(f"[VECTOR_CACHE] Hit for {document_key}")
                return cached

        logger.info(f"[VECTOR_CACHE] Computing embeddings for {document_key} ({len(lines)} lines)")
        batches = await self.batcher.compute_embeddings(lines)
        if not batches:
            logger.warning(f"[VECTOR_CACHE] No embeddings produced for {document_key}")
            return batches

        self.cache.set(key, batches)
        if self.vector_store is not None:
            try:
                self.vector_store.save(key, batches)
            except Exception as e:
                logger.warning(f"[VECTOR_CACHE] Failed to persist embeddings for {document_key}: {e}")

        return batches

    def invalidate(self, container_key: str, document_key: str) -> None:
        """Drop cached and persisted batches for a document."""
        key = make_cache_key(container_key, document_key)
        self.cache.remove(key)
        if self.vector_store is not None:
            self.vector_store.delete(key)
