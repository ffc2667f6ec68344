"""
OpenAI error classification and rate-limit retry policy.

Classifies provider errors into the categories the chat and embedding
layers act on:

- Context length exceeded: the request does not fit the model's context
  window. Drives the chat driver's shrink protocol; never retried as-is.
- Rate limited: HTTP 429 / quota pressure. Retried a bounded number of
  times with exponential wait before surfacing to the caller.
- Everything else: surfaced unchanged.
"""
import logging

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

# Retry configuration for rate-limited calls
RATE_LIMIT_MAX_ATTEMPTS = 3
RATE_LIMIT_MIN_WAIT = 1  # seconds
RATE_LIMIT_MAX_WAIT = 10  # seconds

# ============================================================================
# ERROR CODES AND PATTERNS
# ============================================================================

CONTEXT_LENGTH_ERROR_CODES = {
    "context_length_exceeded",
    "string_above_max_length",
}

CONTEXT_LENGTH_ERROR_PATTERNS = [
    "context_length_exceeded",
    "maximum context length",
    "context window",
    "reduce the length of the messages",
]

RATE_LIMIT_ERROR_PATTERNS = [
    "rate limit",
    "rate_limit",
    "too many requests",
]


def is_context_length_exceeded(error: Exception) -> bool:
    """
    Determines if an error means the request exceeded the model's context.

    Args:
        error: The exception raised by the provider call

    Returns:
        True if the request should be shrunk and attempted again
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.lower() in CONTEXT_LENGTH_ERROR_CODES:
        return True

    error_str = str(error).lower()
    return any(pattern in error_str for pattern in CONTEXT_LENGTH_ERROR_PATTERNS)


def is_rate_limited(error: Exception) -> bool:
    """Check if error is a rate limit (retryable after a wait)."""
    error_str = str(error).lower()
    # Quota exhaustion also reports 429 but will not recover within our wait window
    if "insufficient_quota" in error_str or getattr(error, "code", None) == "insufficient_quota":
        return False
    if getattr(error, "status_code", None) == 429:
        return True
    if "ratelimit" in type(error).__name__.lower():
        return True
    return any(pattern in error_str for pattern in RATE_LIMIT_ERROR_PATTERNS)


rate_limit_retry = retry(
    stop=stop_after_attempt(RATE_LIMIT_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=RATE_LIMIT_MIN_WAIT, max=RATE_LIMIT_MAX_WAIT),
    retry=retry_if_exception(is_rate_limited),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
