#!/usr/bin/env python3
"""
Tests for retrieval-grounded chat, chat naming and prompt suggestions
"""
import asyncio
from datetime import datetime, timezone

import pytest

from app.chat_client import ChatResult
from app.chat_driver import AdaptiveChatDriver, ChatCouldNotCompleteError
from app.chat_service import CHAT_NAME_PROMPT, PREDICT_PROMPT, ChatService, parse_suggestions
from app.conversation_store import ConversationNotFoundError, ConversationStore
from app.models.chat_models import Conversation, Message, Role, SystemPrompt
from app.rag.cache_store import CacheStore
from app.rag.chunker import ChunkBatcher
from app.rag.retriever import Retriever
from app.rag.vector_cache import VectorCache

MODIFIED = datetime(2023, 12, 1, tzinfo=timezone.utc)


@pytest.fixture
def build(fake_embeddings, memory_documents, scripted_chat, unit, tmp_path):
    def _build(results, with_store=False):
        embeddings = fake_embeddings(vectors={
            "Refunds within 30 days": unit(0.91),
            "Opening hours 9-5": unit(0.40),
        })
        documents = memory_documents({
            "handbook": {"refunds.txt": (["Opening hours 9-5", "Refunds within 30 days"], MODIFIED)},
        })
        retriever = Retriever(
            documents,
            VectorCache(CacheStore(), ChunkBatcher(embeddings)),
            embeddings,
            top_n=10,
        )
        chat = scripted_chat(results)
        store = ConversationStore(str(tmp_path / "conversations.db")) if with_store else None
        service = ChatService(retriever, AdaptiveChatDriver(chat, shrink_delay=0), store)
        return service, chat, embeddings
    return _build


def _conversation(sources, *messages):
    return Conversation(
        system_prompt=SystemPrompt(prompt="Answer from the documents. "),
        messages=list(messages),
        sources=sources,
    )


def test_parse_suggestions():
    assert parse_suggestions('{"prompts": ["a", "b"]}').prompts == ["a", "b"]
    assert parse_suggestions('{"prompts": [{"prompt": "a"}, " b ", ""]}').prompts == ["a", "b"]
    assert parse_suggestions("Sure! Here are some ideas").prompts == []
    assert parse_suggestions(None).prompts == []
    assert parse_suggestions('["a"]').prompts == []


def test_chat_grounds_answer_in_sources(build, chat_results):
    ok, _ = chat_results
    service, chat, embeddings = build([ok("30 days.")])

    reply = asyncio.run(service.chat(_conversation(
        ["handbook/refunds.txt"],
        Message(role=Role.USER, content="hello"),
        Message(role=Role.ASSISTANT, content="hi"),
        Message(role=Role.USER, content="refund policy"),
    )))

    assert reply.content == "30 days."
    assert embeddings.query_calls == ["refund policy"]
    assert chat.calls[0]["system_context"] == (
        "Answer from the documents. handbook/refunds.txt Refunds within 30 days Opening hours 9-5"
    )


def test_chat_without_sources_skips_retrieval(build, chat_results):
    ok, _ = chat_results
    service, chat, embeddings = build([ok()])

    asyncio.run(service.chat(_conversation([], Message(role=Role.USER, content="hi"))))

    assert embeddings.query_calls == []
    assert chat.calls[0]["system_context"] == "Answer from the documents. "


def test_stored_conversation_round_trip(build, chat_results):
    ok, _ = chat_results
    service, chat, _ = build([ok("Refunds within 30 days.")], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. "), ["handbook"])

    reply = asyncio.run(service.chat_in_conversation(conversation_id, "refund policy"))

    assert reply.content == "Refunds within 30 days."
    history = store.load_conversation(conversation_id).messages
    assert [(m.role, m.content) for m in history] == [
        (Role.USER, "refund policy"),
        (Role.ASSISTANT, "Refunds within 30 days."),
    ]
    assert "Refunds within 30 days" in chat.calls[0]["system_context"]


def test_unknown_conversation(build, chat_results):
    ok, _ = chat_results
    service, _, _ = build([ok()], with_store=True)

    with pytest.raises(ConversationNotFoundError):
        asyncio.run(service.chat_in_conversation(99, "hi"))


def test_chat_name(build, chat_results):
    ok, _ = chat_results
    service, chat, embeddings = build([ok('"Refund questions"\n')], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. ", model="test-chat"), ["handbook"])
    store.append_message(conversation_id, Message(role=Role.USER, content="refund policy"))

    name = asyncio.run(service.get_chat_name(conversation_id))

    assert name == "Refund questions"
    call = chat.calls[0]
    assert call["system_context"] == CHAT_NAME_PROMPT
    assert call["temperature"] == 0.0
    assert call["model"] == "test-chat"
    assert embeddings.query_calls == []


def test_prompt_suggestions(build, chat_results):
    ok, _ = chat_results
    service, chat, _ = build([ok('{"prompts": ["How do I return an item?", "Is shipping free?"]}')], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. "))
    store.append_message(conversation_id, Message(role=Role.USER, content="refund policy"))

    suggestions = asyncio.run(service.get_prompt_suggestions(conversation_id))

    assert suggestions.prompts == ["How do I return an item?", "Is shipping free?"]
    assert chat.calls[0]["system_context"] == PREDICT_PROMPT


def test_helpers_need_history(build, chat_results):
    ok, _ = chat_results
    service, _, _ = build([ok()], with_store=True)
    conversation_id = service.get_store().create_conversation(SystemPrompt(prompt="Answer. "))

    with pytest.raises(ValueError):
        asyncio.run(service.get_chat_name(conversation_id))


def test_index_sources(build, chat_results):
    ok, _ = chat_results
    service, _, embeddings = build([ok()])

    assert asyncio.run(service.index_sources(["handbook"])) == 1
    assert len(embeddings.batch_calls) == 1


def test_failed_turn_leaves_history_unchanged(build, chat_results):
    _, too_large = chat_results
    service, chat, _ = build([too_large()], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. "))

    for _ in range(2):
        with pytest.raises(ChatCouldNotCompleteError):
            asyncio.run(service.chat_in_conversation(conversation_id, "x"))

    assert store.load_conversation(conversation_id).messages == []


def test_provider_error_leaves_history_unchanged(build):
    service, _, _ = build([ChatResult.fatal(RuntimeError("upstream unavailable"))], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. "))
    store.append_message(conversation_id, Message(role=Role.USER, content="earlier question"))

    with pytest.raises(RuntimeError):
        asyncio.run(service.chat_in_conversation(conversation_id, "refund policy"))

    assert [m.content for m in store.load_conversation(conversation_id).messages] == ["earlier question"]


def test_stored_user_message_keeps_full_text_after_shrinking(build, chat_results):
    ok, too_large = chat_results
    service, chat, _ = build([too_large(), ok("short answer")], with_store=True)
    store = service.get_store()
    conversation_id = store.create_conversation(SystemPrompt(prompt="Answer. "))

    asyncio.run(service.chat_in_conversation(conversation_id, "abcdefgh"))

    assert chat.calls[1]["messages"][0].content == "abcd"
    assert [m.content for m in store.load_conversation(conversation_id).messages] == ["abcdefgh", "short answer"]
