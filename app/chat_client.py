"""
Chat completion client.

Sends one chat completion request (system context + message history +
optional function catalogue) and reports the outcome as a `ChatResult`
instead of raising: the caller decides what to do with a request that did
not fit the model's context window.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from . import config
from .models.chat_models import FunctionCall, FunctionDefinition, Message, Role
from .openai_errors import is_context_length_exceeded

logger = logging.getLogger(__name__)


class ChatOutcome(Enum):
    OK = "ok"
    CONTEXT_TOO_LARGE = "context_too_large"
    FATAL = "fatal"


@dataclass
class ChatResult:
    """Outcome of one completion attempt.

    Exactly one of `message` (OK) or `error` (CONTEXT_TOO_LARGE, FATAL) is set.
    """
    outcome: ChatOutcome
    message: Optional[Message] = None
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, message: Message) -> "ChatResult":
        return cls(ChatOutcome.OK, message=message)

    @classmethod
    def context_too_large(cls, error: Exception) -> "ChatResult":
        return cls(ChatOutcome.CONTEXT_TOO_LARGE, error=error)

    @classmethod
    def fatal(cls, error: Exception) -> "ChatResult":
        return cls(ChatOutcome.FATAL, error=error)


def message_to_payload(message: Message) -> Dict[str, Any]:
    """Convert a Message to the chat completions wire format."""
    payload: Dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.name:
        payload["name"] = message.name
    if message.function_call is not None:
        payload["function_call"] = {
            "name": message.function_call.name,
            "arguments": message.function_call.arguments,
        }
    return payload


def function_to_payload(function: FunctionDefinition) -> Dict[str, Any]:
    return {
        "name": function.name,
        "description": function.description,
        "parameters": function.parameters,
    }


def message_from_response(reply) -> Message:
    """Map a chat completion choice message back to a Message."""
    function_call = None
    raw_call = getattr(reply, "function_call", None)
    if raw_call is not None:
        function_call = FunctionCall(name=raw_call.name, arguments=raw_call.arguments)

    return Message(
        role=Role(getattr(reply, "role", None) or Role.ASSISTANT.value),
        content=reply.content,
        function_call=function_call,
    )


class ChatClient:
    """Remote chat-completion model wrapper.

    Args:
        client: Optional pre-existing AsyncOpenAI client. Created lazily
                from app.config when omitted.
        model: Default model. Defaults to config.CHAT_MODEL.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or config.CHAT_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY not found in environment or app.config")
            self._client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
        return self._client

    async def complete_chat(
        self,
        system_context: str,
        temperature: float,
        messages: Sequence[Message],
        functions: Optional[List[FunctionDefinition]] = None,
        model: Optional[str] = None,
    ) -> ChatResult:
        """Request one completion.

        Args:
            system_context: System prompt plus retrieved context.
            temperature: Sampling temperature.
            messages: Conversation history, oldest first.
            functions: Optional function catalogue offered to the model.
            model: Optional model override.

        Returns:
            ChatResult with the reply, or the classified error.
        """
        payload = [{"role": Role.SYSTEM.value, "content": system_context}]
        payload.extend(message_to_payload(m) for m in messages)

        request: Dict[str, Any] = {
            "model": model or self.model,
            "temperature": temperature,
            "messages": payload,
        }
        if functions:
            request["functions"] = [function_to_payload(f) for f in functions]

        try:
            response = await self.client.chat.completions.create(**request)
        except Exception as e:
            if is_context_length_exceeded(e):
                logger.warning(f"[CHAT] Context length exceeded ({len(system_context):,} chars of context)")
                return ChatResult.context_too_large(e)
            logger.error(f"[CHAT] Completion failed [{type(e).__name__}]: {e}")
            return ChatResult.fatal(e)

        if not response.choices:
            return ChatResult.fatal(ValueError("Chat completion returned no choices"))

        return ChatResult.ok(message_from_response(response.choices[0].message))
