"""
Helpers for shrinking chat history when a request exceeds the model's context.
"""
from typing import List

from app.models.chat_models import Message, Role


def utf8_length(text: str) -> int:
    return len(text.encode("utf-8"))


def halve_utf8(text: str) -> str:
    """
    Keep the leading half of a string, measured in UTF-8 bytes.

    Never splits a multi-byte character: a character straddling the cut is
    dropped, so the result is at most half the original byte length.
    """
    encoded = text.encode("utf-8")
    return encoded[:len(encoded) // 2].decode("utf-8", errors="ignore")


def can_halve(text: str) -> bool:
    """Check if a message is long enough to be halved"""
    return utf8_length(text or "") > 1


def shorten_history(messages: List[Message]) -> bool:
    """
    Drop the oldest message after the system prompt, in place.

    A leading system message is always kept. If the message that becomes the
    oldest is an assistant reply, it is dropped too so the history still opens
    with a user turn.

    Args:
        messages: Chat history, oldest first

    Returns:
        True if the history was shortened, False if it cannot be shortened further
    """
    if not messages:
        return False

    start = 1 if messages[0].role == Role.SYSTEM else 0
    if len(messages) <= start + 1:
        return False

    del messages[start]
    if len(messages) > start + 1 and messages[start].role == Role.ASSISTANT:
        del messages[start]
    return True
