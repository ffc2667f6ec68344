"""
In-process key/value cache with optional per-entry expiry.

Used as a memoization layer in front of expensive embedding calls. Values are stored and replaced whole; expired
entries behave as missing and are evicted when read.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: Optional[float] = None


class CacheStore:
    """Thread-safe dictionary cache with last-writer-wins semantics per key.

    Args:
        clock: Callable returning the current time in seconds.
               Defaults to time.time.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                logger.debug(f"[CACHE] Expired entry removed: {key}")
                return None
            return entry.value

    def set(self, key: str, value: Any, expires_in: Optional[timedelta] = None) -> None:
        """Store value under key, replacing any previous entry.

        Args:
            key: Cache key.
            value: Value to store.
            expires_in: Optional lifetime. None keeps the entry until removed.
        """
        expires_at = None
        if expires_in is not None:
            expires_at = self._clock() + expires_in.total_seconds()
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired_keys = [
                k for k, v in self._entries.items()
                if v.expires_at is not None and v.expires_at <= now
            ]
            for key in expired_keys:
                del self._entries[key]
        if expired_keys:
            logger.info(f"[CACHE] Cleaned up {len(expired_keys)} expired entries")
        return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
