"""Cache-aside response cache for generated answers.

Keys are derived from the session id and the normalized question, so the
same question asked twice in one session maps to one entry. The cache is
advisory: backend failures are logged and behave as misses.
"""

from __future__ import annotations

import hashlib
import re
import time
import unicodedata
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis

from chat_orchestrator.log import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


class CacheBackend(ABC):
    """Minimal key/value store with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    async def close(self) -> None:
        return None


class NullCacheBackend(CacheBackend):
    """Always misses. Used when no cache is configured or reachable."""

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """Process-local cache with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Redis-backed cache shared across processes."""

    def __init__(self, url: str):
        self._client = aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def close(self) -> None:
        await self._client.aclose()


def normalize_question(text: str) -> str:
    """Canonical form of a question for key derivation."""
    text = unicodedata.normalize("NFKC", text).casefold()
    return _WHITESPACE.sub(" ", text).strip()


class ResponseCache:
    """Cache-aside lookups of assistant answers keyed by (session, question)."""

    def __init__(self, backend: CacheBackend, ttl_seconds: int = 3600, key_prefix: str = "ai:chat"):
        self._backend = backend
        self._ttl = ttl_seconds
        self._prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return not isinstance(self._backend, NullCacheBackend)

    def derive_key(self, session_id: str, question: str) -> str:
        digest = hashlib.sha256(normalize_question(question).encode("utf-8")).hexdigest()
        return f"{self._prefix}:{session_id}:{digest}"

    async def get(self, session_id: str, question: str) -> Optional[str]:
        key = self.derive_key(session_id, question)
        try:
            cached = await self._backend.get(key)
        except Exception as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

        logger.debug("cache_hit" if cached is not None else "cache_miss", key=key)
        return cached

    async def set(self, session_id: str, question: str, text: str) -> None:
        if not text:
            return
        key = self.derive_key(session_id, question)
        try:
            await self._backend.set(key, text, self._ttl)
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return
        logger.debug("cache_stored", key=key, text_length=len(text))

    async def close(self) -> None:
        await self._backend.close()
