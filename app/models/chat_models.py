"""Conversation data model shared by the retrieval and chat layers.

Defines the `Role` enum and the dataclasses that describe a conversation:
its system prompt, message history, document sources and optional function
catalogue. The message history is mutable; the chat driver trims it in
place while shrinking a request that does not fit the model's context.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(Enum):
    """Author of a chat message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


@dataclass
class FunctionCall:
    """Function invocation requested by the model.

    Attributes:
        name: Name of the function from the catalogue.
        arguments: JSON-encoded arguments as produced by the model.
    """
    name: str
    arguments: str


@dataclass
class FunctionDefinition:
    """Function catalogue entry offered to the model."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class Message:
    """One chat message.

    Attributes:
        role: Author of the message.
        content: Text content; None for pure function-call replies.
        name: Function name for `function` role messages.
        function_call: Function invocation requested by the assistant.
        created: Creation time when known (persisted messages).
    """
    role: Role
    content: Optional[str] = None
    name: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    created: Optional[datetime] = None


@dataclass
class SystemPrompt:
    prompt: str
    temperature: float = 0.7
    model: Optional[str] = None
    force_vector_generation: bool = False


@dataclass
class Conversation:
    """A chat request: prompt, history, document sources and functions.

    Sources are kept in the order given with duplicates removed.
    """
    system_prompt: SystemPrompt
    messages: List[Message] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    functions: Optional[List[FunctionDefinition]] = None

    def __post_init__(self):
        self.sources = list(dict.fromkeys(self.sources))

    def last_user_message(self) -> Optional[Message]:
        """Return the most recent user message, if any."""
        for message in reversed(self.messages):
            if message.role == Role.USER:
                return message
        return None


@dataclass
class Suggestions:
    """Predicted next prompts for a conversation."""
    prompts: List[str] = field(default_factory=list)
