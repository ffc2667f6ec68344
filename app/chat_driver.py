"""
Context assembly and the adaptive shrink-retry chat driver.

The driver assembles the system context from ranked chunks and attempts a
chat completion. When the model reports that the request does not fit its
context window, the request is shrunk and attempted again:

1. While more than one ranked chunk remains, keep the higher-scored half.
2. Then drop the oldest non-system messages from the history.
3. Then halve the most recent user message (by UTF-8 byte length).

Every step strictly shrinks the request, so the loop is bounded. When
nothing can be shrunk any further the driver raises
`ChatCouldNotCompleteError`. Errors other than context length are raised
unchanged without retrying.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from . import config
from .chat_client import ChatClient, ChatOutcome
from .models.chat_models import Conversation, Message
from .rag.retriever import ScoredChunk
from .utils.message_shortener import can_halve, halve_utf8, shorten_history, utf8_length

logger = logging.getLogger(__name__)


class ChatCouldNotCompleteError(Exception):
    """Raised when a chat request still exceeds the context after every reduction."""
    pass


class EmptyConversationError(ValueError):
    """Raised when a chat is requested for a conversation without messages."""
    pass


class ContextAssembler:
    """Builds the system context string sent ahead of the conversation."""

    @staticmethod
    def build_context_query(chunks: Sequence[ScoredChunk]) -> str:
        """Distinct source paths (rank order) followed by chunk texts (rank order)."""
        if not chunks:
            return ""
        sources = list(dict.fromkeys(chunk.source_path for chunk in chunks))
        return " ".join(sources) + " " + " ".join(chunk.text for chunk in chunks)

    @classmethod
    def build_system_context(cls, system_prompt: str, chunks: Sequence[ScoredChunk]) -> str:
        return system_prompt + cls.build_context_query(chunks)


class AdaptiveChatDriver:
    """Drives a chat completion, shrinking the request on context-length failures.

    Args:
        chat_client: Client used for each attempt.
        shrink_delay: Seconds to wait between attempts.
                      Defaults to config.SHRINK_DELAY_SECONDS.
    """

    def __init__(self, chat_client: ChatClient, shrink_delay: Optional[float] = None):
        self.chat_client = chat_client
        self.shrink_delay = config.SHRINK_DELAY_SECONDS if shrink_delay is None else shrink_delay

    async def complete(self, conversation: Conversation, ranked_chunks: Sequence[ScoredChunk]) -> Message:
        """Run the shrink-retry loop for one conversation.

        Args:
            conversation: The conversation to answer. Its message history is
                          trimmed in place if shrinking reaches the history.
            ranked_chunks: Retrieved context, best first.

        Returns:
            The reply message.

        Raises:
            EmptyConversationError: If the conversation has no messages.
            ChatCouldNotCompleteError: If the request cannot be shrunk further.
            Exception: Any non context-length error from the chat provider.
        """
        if not conversation.messages:
            raise EmptyConversationError("Conversation has no messages")

        chunks: List[ScoredChunk] = list(ranked_chunks)
        prompt = conversation.system_prompt
        attempt = 0

        while True:
            attempt += 1
            system_context = ContextAssembler.build_system_context(prompt.prompt, chunks)
            result = await self.chat_client.complete_chat(
                system_context,
                prompt.temperature,
                conversation.messages,
                functions=conversation.functions,
                model=prompt.model,
            )

            if result.outcome == ChatOutcome.OK:
                if attempt > 1:
                    logger.info(f"[CHAT_DRIVER] Completed after {attempt} attempts ({len(chunks)} chunks)")
                return result.message

            if result.outcome == ChatOutcome.FATAL:
                raise result.error

            chunks = self._shrink(conversation, chunks, attempt)
            await asyncio.sleep(self.shrink_delay)

    def _shrink(self, conversation: Conversation, chunks: List[ScoredChunk], attempt: int) -> List[ScoredChunk]:
        """Apply the next reduction and return the chunks to use for the next attempt."""
        if len(chunks) > 1:
            logger.warning(
                f"[CHAT_DRIVER] Attempt {attempt}: context too large, "
                f"halving ranked chunks {len(chunks)} -> {len(chunks) // 2}"
            )
            return chunks[:len(chunks) // 2]

        if shorten_history(conversation.messages):
            logger.warning(
                f"[CHAT_DRIVER] Attempt {attempt}: context too large, "
                f"dropped oldest history ({len(conversation.messages)} messages left)"
            )
            return chunks

        last_user = conversation.last_user_message()
        if last_user is not None and can_halve(last_user.content):
            before = utf8_length(last_user.content)
            last_user.content = halve_utf8(last_user.content)
            logger.warning(
                f"[CHAT_DRIVER] Attempt {attempt}: context too large, "
                f"shortened last user message {before} -> {utf8_length(last_user.content)} bytes"
            )
            return chunks

        logger.error(f"[CHAT_DRIVER] Attempt {attempt}: chat history could not be shortened further")
        raise ChatCouldNotCompleteError("The chat history is empty or could not be shortened further.")
