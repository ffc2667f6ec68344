"""
ChromaDB persistent storage for computed embedding batches.

Durable second level behind the in-process CacheStore: embeddings survive
process restarts and are only recomputed when the source document changes.
Each vector is stored as one record tagged with its cache key, batch number
and position so that batches can be rebuilt in their original order. Chroma
keeps embeddings as float32, so the exact vector is also stored as the
record's JSON document and `load` rebuilds batches from that.
"""

import json
import logging
import os
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from app import config
from .embedder import EmbeddingBatch

logger = logging.getLogger(__name__)

COLLECTION_NAME = "document_embedding_batches"


def get_chroma_client(persist_dir: str = None):
    """Get a persistent ChromaDB client.

    Args:
        persist_dir: Directory for persistent storage.
                     Defaults to config.VECTOR_STORE_DIR.

    Returns:
        ChromaDB PersistentClient instance.
    """
    import chromadb

    persist_dir = persist_dir or config.VECTOR_STORE_DIR
    os.makedirs(persist_dir, exist_ok=True)
    return chromadb.PersistentClient(path=persist_dir)


class VectorStore:
    """Embedding batches persisted in a ChromaDB collection, addressed by cache key.

    Args:
        client: Optional pre-existing ChromaDB client.
        persist_dir: Directory for persistent storage (used if client is None).
    """

    def __init__(self, client=None, persist_dir: str = None):
        self._client = client
        self._persist_dir = persist_dir
        self._collection = None

    @property
    def collection(self):
        if self._collection is None:
            if self._client is None:
                self._client = get_chroma_client(self._persist_dir)
            self._collection = self._client.get_or_create_collection(
                name=COLLECTION_NAME,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    def load(self, key: str) -> Optional[List[EmbeddingBatch]]:
        """Rebuild the stored batches for key.

        Returns:
            Batches in their original order, or None if nothing is stored.
        """
        results = self.collection.get(
            where={"cache_key": key},
            include=["documents", "metadatas"],
        )
        ids = results.get("ids") or []
        if not ids:
            return None

        grouped: Dict[int, list] = defaultdict(list)
        stamps: Dict[int, str] = {}
        documents = results["documents"]
        for i, metadata in enumerate(results["metadatas"]):
            batch_number = int(metadata["batch"])
            grouped[batch_number].append((int(metadata["position"]), json.loads(documents[i])))
            stamps[batch_number] = metadata["source_last_modified"]

        batches = []
        for batch_number in sorted(grouped):
            rows = sorted(grouped[batch_number], key=lambda row: row[0])
            batches.append(EmbeddingBatch(
                vectors=[vector for _, vector in rows],
                source_last_modified=datetime.fromisoformat(stamps[batch_number]),
            ))

        logger.debug(f"[CHUNK_STORE] Loaded {len(batches)} batches for {key}")
        return batches

    def save(self, key: str, batches: List[EmbeddingBatch]) -> int:
        """Replace the stored batches for key.

        Returns:
            Number of vectors stored.
        """
        self.delete(key)

        count = 0
        for batch_number, batch in enumerate(batches):
            if not batch.vectors:
                continue
            stamp = batch.source_last_modified.isoformat()
            self.collection.add(
                ids=[f"{key}:{batch_number}:{position}" for position in range(len(batch.vectors))],
                embeddings=batch.vectors,
                documents=[json.dumps(vector) for vector in batch.vectors],
                metadatas=[
                    {
                        "cache_key": key,
                        "batch": batch_number,
                        "position": position,
                        "source_last_modified": stamp,
                    }
                    for position in range(len(batch.vectors))
                ],
            )
            count += len(batch.vectors)

        logger.info(f"[CHUNK_STORE] Stored {count} vectors in {len(batches)} batches for {key}")
        return count

    def delete(self, key: str) -> None:
        self.collection.delete(where={"cache_key": key})

    def get_collection_info(self) -> Dict[str, object]:
        """Get information about the current collection."""
        try:
            return {
                "name": COLLECTION_NAME,
                "count": self.collection.count(),
                "metadata": self.collection.metadata,
            }
        except Exception as e:
            return {"name": COLLECTION_NAME, "count": 0, "error": str(e)}
