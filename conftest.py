"""Shared test doubles for the document chat tests."""
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from app.chat_client import ChatResult
from app.document_store import DocumentStore, FileInfo
from app.models.chat_models import Message, Role
from app.rag.embedder import EmbeddingBatch

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def unit_vector(similarity: float) -> List[float]:
    """2-d unit vector whose cosine with [1, 0] equals `similarity`."""
    return [similarity, math.sqrt(max(0.0, 1.0 - similarity * similarity))]


class FakeEmbeddingClient:
    """Embeds known texts from a lookup table; unknown texts map to [0, 1]."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, fail_above: Optional[int] = None,
                 fail_lines=(), stamp: datetime = STAMP):
        self.vectors = vectors or {}
        self.fail_above = fail_above
        self.fail_lines = set(fail_lines)
        self.stamp = stamp
        self.batch_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    async def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        return self.vectors.get(text, [1.0, 0.0])

    async def embed_batch(self, lines) -> EmbeddingBatch:
        lines = list(lines)
        self.batch_calls.append(lines)
        if self.fail_above is not None and len(lines) > self.fail_above:
            raise RuntimeError("payload too large")
        if self.fail_lines.intersection(lines):
            raise RuntimeError("cannot embed line")
        return EmbeddingBatch(
            vectors=[self.vectors.get(line, [0.0, 1.0]) for line in lines],
            source_last_modified=self.stamp,
        )


class InMemoryDocumentStore(DocumentStore):
    """Documents held in a dict: {container: {path: (lines, last_modified)}}."""

    def __init__(self, documents=None, broken=()):
        self.documents = documents or {}
        self.broken = set(broken)
        self.text_calls: List[str] = []

    async def list_supported_files(self, container, folder):
        files = self.documents.get(container, {})
        prefix = folder.strip("/") + "/" if folder else ""
        return [
            FileInfo(path=path, last_modified=modified)
            for path, (_, modified) in files.items()
            if path.startswith(prefix)
        ]

    async def get_text(self, container, path):
        self.text_calls.append(path)
        if path in self.broken:
            raise IOError(f"cannot read {path}")
        return list(self.documents.get(container, {}).get(path, ([], None))[0])

    async def get_file_info(self, container, path):
        entry = self.documents.get(container, {}).get(path)
        if entry is None:
            return None
        return FileInfo(path=path, last_modified=entry[1])


class ScriptedChatClient:
    """Returns queued ChatResults and records every attempt."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def complete_chat(self, system_context, temperature, messages, functions=None, model=None):
        self.calls.append({
            "system_context": system_context,
            "temperature": temperature,
            "messages": [Message(role=m.role, content=m.content) for m in messages],
            "functions": functions,
            "model": model,
        })
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def ok(content: str = "answer") -> ChatResult:
    return ChatResult.ok(Message(role=Role.ASSISTANT, content=content))


def too_large() -> ChatResult:
    return ChatResult.context_too_large(RuntimeError("context_length_exceeded"))


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingClient


@pytest.fixture
def memory_documents():
    return InMemoryDocumentStore


@pytest.fixture
def scripted_chat():
    return ScriptedChatClient


@pytest.fixture
def chat_results():
    """Factories for OK and context-too-large results."""
    return ok, too_large


@pytest.fixture
def unit():
    return unit_vector
