#!/usr/bin/env python3
"""
Tests for ChromaDB persistence of embedding batches
"""
import asyncio
from datetime import datetime, timezone

import chromadb
import pytest

from app.rag.cache_store import CacheStore
from app.rag.chunk_store import VectorStore
from app.rag.chunker import ChunkBatcher
from app.rag.embedder import EmbeddingBatch
from app.rag.vector_cache import VectorCache

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return VectorStore(client=chromadb.PersistentClient(path=str(tmp_path / "chroma")))


def test_save_and_load_preserves_batch_order(store):
    batches = [
        EmbeddingBatch(vectors=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], source_last_modified=STAMP),
        EmbeddingBatch(vectors=[[0.0, 0.0, 1.0]], source_last_modified=STAMP),
    ]

    assert store.save("embeddings:abc", batches) == 3
    loaded = store.load("embeddings:abc")

    assert [b.vectors for b in loaded] == [b.vectors for b in batches]
    assert loaded[0].source_last_modified == STAMP


def test_load_unknown_key(store):
    assert store.load("embeddings:missing") is None


def test_save_replaces_and_delete_removes(store):
    store.save("k", [EmbeddingBatch(vectors=[[1.0, 0.0], [0.0, 1.0]], source_last_modified=STAMP)])
    store.save("k", [EmbeddingBatch(vectors=[[0.5, 0.5]], source_last_modified=STAMP)])

    assert [b.vectors for b in store.load("k")] == [[[0.5, 0.5]]]

    store.delete("k")
    assert store.load("k") is None
    assert store.get_collection_info()["count"] == 0


def test_round_trip_keeps_full_precision(store):
    vectors = [[0.1234567890123, 0.987654321], [-0.3333333333333333, 1e-12]]
    store.save("k", [EmbeddingBatch(vectors=vectors, source_last_modified=STAMP)])

    assert store.load("k")[0].vectors == vectors


def test_cache_backed_by_store_returns_identical_vectors(store, fake_embeddings):
    client = fake_embeddings(vectors={"alpha": [0.1234567890123, 0.987654321]})

    def fresh_cache():
        return VectorCache(CacheStore(), ChunkBatcher(client), vector_store=store)

    first = asyncio.run(fresh_cache().get_or_compute("site", "a.txt", ["alpha"], STAMP))
    second = asyncio.run(fresh_cache().get_or_compute("site", "a.txt", ["alpha"], STAMP))

    assert len(client.batch_calls) == 1
    assert second[0].vectors == first[0].vectors == [[0.1234567890123, 0.987654321]]
