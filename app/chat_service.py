"""
Chat service: retrieval-grounded chat over stored or ad-hoc conversations.

Wires the Retriever and the AdaptiveChatDriver together and adds the
conversation-level helpers exposed over HTTP: continuing a stored
conversation, naming a chat, predicting the user's next prompts and
precomputing embeddings for document sources.
"""
import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .chat_driver import AdaptiveChatDriver, EmptyConversationError
from .conversation_store import ConversationStore
from .models.chat_models import Conversation, Message, Role, Suggestions, SystemPrompt
from .rag.retriever import Retriever, ScoredChunk

logger = logging.getLogger(__name__)

CHAT_NAME_PROMPT = (
    "Make up a name for this chat. Use at most 1-4 words. "
    "Reply with only the name and add no other text."
)

PREDICT_PROMPT = (
    "Predict the next chat prompt the user will want to use in this chat. Give 5 options. "
    'Format your answer as JSON and add no other text: {"prompts": []}'
)


def parse_suggestions(content: Optional[str]) -> Suggestions:
    """Parse a `{"prompts": [...]}` reply. Invalid replies yield no suggestions."""
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError:
        logger.warning(f"[CHAT_SERVICE] Suggestions reply is not JSON: {(content or '')[:100]}")
        return Suggestions()

    prompts = data.get("prompts", []) if isinstance(data, dict) else []
    result = []
    for item in prompts:
        # Models answer with either plain strings or {"prompt": "..."} objects
        if isinstance(item, dict):
            item = item.get("prompt")
        if isinstance(item, str) and item.strip():
            result.append(item.strip())
    return Suggestions(prompts=result)


class ChatService:
    """Retrieval-grounded chat.

    Args:
        retriever: Ranks document lines for the last user message.
        driver: Runs the shrink-retry completion loop.
        conversation_store: Optional persistence for stored conversations.
    """

    def __init__(
        self,
        retriever: Retriever,
        driver: AdaptiveChatDriver,
        conversation_store: Optional[ConversationStore] = None,
    ):
        self.retriever = retriever
        self.driver = driver
        self.conversation_store = conversation_store

    async def chat(self, conversation: Conversation) -> Message:
        """Answer a conversation, grounded in its sources when it has any."""
        ranked: List[ScoredChunk] = []
        last_user = conversation.last_user_message()
        if conversation.sources and last_user is not None and last_user.content:
            ranked = await self.retriever.retrieve(
                last_user.content,
                conversation.sources,
                force_vector_generation=conversation.system_prompt.force_vector_generation,
            )

        return await self.driver.complete(conversation, ranked)

    def get_store(self) -> ConversationStore:
        if self.conversation_store is None:
            raise RuntimeError("No conversation store configured")
        return self.conversation_store

    async def chat_in_conversation(self, conversation_id: int, content: str) -> Message:
        """Answer a new user message in a stored conversation.

        The user message and the reply are stored together once the chat
        succeeds; a failed turn leaves the stored history unchanged.
        """
        store = self.get_store()
        conversation = store.load_conversation(conversation_id)
        user_message = Message(role=Role.USER, content=content, created=datetime.now(timezone.utc))
        # The driver may shorten the in-memory copy; the stored message keeps the full text
        conversation.messages.append(replace(user_message))

        reply = await self.chat(conversation)

        store.append_message(conversation_id, user_message)
        store.append_message(conversation_id, reply)
        return reply

    async def _ask_about(self, conversation_id: int, instruction: str) -> Message:
        """Run an instruction over a stored conversation's history without retrieval."""
        stored = self.get_store().load_conversation(conversation_id)
        history = [replace(m) for m in stored.messages if m.role != Role.SYSTEM]
        if not history:
            raise EmptyConversationError(f"Conversation {conversation_id} has no messages")

        conversation = Conversation(
            system_prompt=SystemPrompt(prompt=instruction, temperature=0.0, model=stored.system_prompt.model),
            messages=history,
        )
        return await self.driver.complete(conversation, [])

    async def get_chat_name(self, conversation_id: int) -> str:
        """Generate a short name (1-4 words) for a stored conversation."""
        reply = await self._ask_about(conversation_id, CHAT_NAME_PROMPT)
        return (reply.content or "").strip().strip('"').strip()

    async def get_prompt_suggestions(self, conversation_id: int) -> Suggestions:
        """Predict the user's next prompts for a stored conversation."""
        reply = await self._ask_about(conversation_id, PREDICT_PROMPT)
        return parse_suggestions(reply.content)

    async def index_sources(self, sources: Iterable[str], force: bool = False) -> int:
        """Precompute embeddings for document sources. Returns files indexed."""
        return await self.retriever.index(sources, force=force)
