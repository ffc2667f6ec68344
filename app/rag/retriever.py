"""
Retriever module for semantic chunk retrieval at query time.

Embeds the user query once, expands the conversation's document sources
into files, scores every line of every file against the query (computing
or reusing embeddings through the VectorCache) and returns the globally
top-ranked lines.

Sources are written as `<container>/<path>`: the first segment names the
container (site, drive, top-level folder), the rest is a file or folder
inside it. A bare container name means the whole container.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from app import config
from app.document_store import DocumentStore, FileInfo, is_file_source
from .embedder import EmbeddingClient, EmbeddingVector, compare_to_all
from .vector_cache import VectorCache

logger = logging.getLogger(__name__)


@dataclass
class ScoredChunk:
    """One document line ranked against a query."""
    source_path: str
    text: str
    score: float


def split_source(source: str) -> Tuple[str, str]:
    """Split `<container>/<path>` into its container and path parts."""
    container, _, path = source.strip("/").partition("/")
    return container, path


def join_source(container: str, path: str) -> str:
    return f"{container}/{path}" if path else container


class Retriever:
    """Ranks document lines from a set of sources against a query.

    Args:
        document_store: Repository the sources live in.
        vector_cache: Embedding batches per document.
        embedding_client: Embeds the query.
        top_n: Maximum number of chunks returned. Defaults to config.RETRIEVAL_TOP_N.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        vector_cache: VectorCache,
        embedding_client: EmbeddingClient,
        top_n: Optional[int] = None,
    ):
        self.document_store = document_store
        self.vector_cache = vector_cache
        self.embedding_client = embedding_client
        self.top_n = config.RETRIEVAL_TOP_N if top_n is None else top_n

    async def retrieve(
        self,
        query: str,
        sources: Iterable[str],
        force_vector_generation: bool = False,
    ) -> List[ScoredChunk]:
        """Retrieve the top-N document lines for a query.

        Args:
            query: Text to rank lines against (usually the last user message).
            sources: File or folder sources, `<container>/<path>`.
            force_vector_generation: Generate embeddings for documents that have
                                     none cached. Fresh cached embeddings are
                                     reused; `index(force=True)` recomputes them.

        Returns:
            ScoredChunks sorted by descending score, ties in discovery order.
        """
        sources = list(dict.fromkeys(sources))
        if not sources:
            return []

        if force_vector_generation:
            logger.info(f"[RETRIEVER] Vector generation requested for {len(sources)} sources")

        query_vector = await self.embedding_client.embed_query(query)
        files = await self._expand_sources(sources)
        if not files:
            logger.warning(f"[RETRIEVER] No supported files found in {len(sources)} sources")
            return []

        per_file = await asyncio.gather(*(
            self._score_file(container, info, query_vector)
            for container, info in files
        ))

        merged = [chunk for chunks in per_file for chunk in chunks]
        merged.sort(key=lambda chunk: chunk.score, reverse=True)
        top_results = merged[:self.top_n]

        logger.info(
            f"[RETRIEVER] Ranked {len(merged)} lines from {len(files)} files, "
            f"returning {len(top_results)} for query: {query[:80]}"
        )
        return top_results

    async def index(self, sources: Iterable[str], force: bool = False) -> int:
        """Precompute embeddings for every file in the sources.

        Returns:
            Number of files that have embeddings afterwards.
        """
        files = await self._expand_sources(list(dict.fromkeys(sources)))
        indexed = await asyncio.gather(*(
            self._index_file(container, info, force) for container, info in files
        ))
        count = sum(indexed)
        logger.info(f"[RETRIEVER] Indexed {count} of {len(files)} files")
        return count

    async def _index_file(self, container: str, info: FileInfo, force: bool) -> bool:
        try:
            lines = await self.document_store.get_text(container, info.path)
            if not lines:
                return False
            batches = await self.vector_cache.get_or_compute(
                container, info.path, lines, source_last_modified=info.last_modified, force=force,
            )
            return bool(batches)
        except Exception as e:
            logger.error(f"[RETRIEVER] Failed to index {join_source(container, info.path)}: {e}")
            return False

    async def _expand_sources(self, sources: List[str]) -> List[Tuple[str, FileInfo]]:
        """Resolve sources to (container, FileInfo) pairs, deduplicated in source order."""
        expanded = await asyncio.gather(*(self._expand_source(source) for source in sources))

        seen = set()
        files = []
        for entries in expanded:
            for container, info in entries:
                identity = (container, info.path)
                if identity in seen:
                    continue
                seen.add(identity)
                files.append((container, info))
        return files

    async def _expand_source(self, source: str) -> List[Tuple[str, FileInfo]]:
        container, path = split_source(source)
        try:
            if is_file_source(path):
                info = await self.document_store.get_file_info(container, path)
                if info is None:
                    logger.warning(f"[RETRIEVER] File not found: {source}")
                    return []
                return [(container, info)]

            infos = await self.document_store.list_supported_files(container, path)
            return [(container, info) for info in infos]
        except Exception as e:
            logger.error(f"[RETRIEVER] Failed to expand source {source}: {e}")
            return []

    async def _score_file(
        self,
        container: str,
        info: FileInfo,
        query_vector: EmbeddingVector,
    ) -> List[ScoredChunk]:
        source_path = join_source(container, info.path)
        try:
            lines = await self.document_store.get_text(container, info.path)
            if not lines:
                return []

            batches = await self.vector_cache.get_or_compute(
                container,
                info.path,
                lines,
                source_last_modified=info.last_modified,
            )
            if not batches:
                return []

            scores = compare_to_all(query_vector, batches)
        except Exception as e:
            logger.error(f"[RETRIEVER] Skipping {source_path}: {e}")
            return []

        if len(scores) != len(lines):
            logger.warning(
                f"[RETRIEVER] {source_path}: {len(scores)} vectors for {len(lines)} lines, "
                f"scoring the covered lines only"
            )

        return [
            ScoredChunk(source_path=source_path, text=line, score=score)
            for line, score in zip(lines, scores)
        ]
