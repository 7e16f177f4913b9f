"""Single-slot persistence for the bearer token.

The session manager only ever needs one value: the last token handed out by
the API, so a reload can resume the session without a fresh login. ``get``
returns ``None`` when nothing is stored, never an empty string.
"""

from __future__ import annotations

from typing import Optional, Protocol, Dict
import threading

import redis

from connector.config import settings
from connector.obs.logger import log_event


class TokenStore(Protocol):
    def get(self) -> Optional[str]: ...

    def set(self, token: str) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """In-process token slot. Survives manager restarts, not process restarts."""

    def __init__(self, key: str = None):
        self.key = key or settings.TOKEN_STORAGE_KEY
        self._lock = threading.Lock()
        self._data: Dict[str, str] = {}

    def get(self) -> Optional[str]:
        with self._lock:
            return self._data.get(self.key) or None

    def set(self, token: str) -> None:
        with self._lock:
            self._data[self.key] = token

    def clear(self) -> None:
        with self._lock:
            self._data.pop(self.key, None)


class RedisTokenStore:
    def __init__(self, redis_url: str = None, key: str = None,
                 ttl_seconds: int = None, client: "redis.Redis" = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.key = key or settings.TOKEN_STORAGE_KEY
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.REDIS_TOKEN_TTL_SECONDS
        self.client = client or redis.from_url(self.redis_url, decode_responses=True)
        self._fallback = MemoryTokenStore(key=self.key)

        # Test connection
        try:
            self.client.ping()
        except redis.ConnectionError:
            # Fall back to in-memory if Redis is not available
            self.client = None
            log_event("token_store_fallback", level="WARNING", redis_url=self.redis_url)

    def get(self) -> Optional[str]:
        if self.client is None:
            return self._fallback.get()
        try:
            value = self.client.get(self.key)
        except redis.RedisError as e:
            log_event("token_store_error", level="WARNING", op="get", error=str(e))
            return self._fallback.get()
        return value or None

    def set(self, token: str) -> None:
        if self.client is None:
            self._fallback.set(token)
            return
        try:
            if self.ttl_seconds:
                self.client.setex(self.key, self.ttl_seconds, token)
            else:
                self.client.set(self.key, token)
        except redis.RedisError as e:
            log_event("token_store_error", level="WARNING", op="set", error=str(e))
            self._fallback.set(token)

    def clear(self) -> None:
        # Clear both slots so a token saved during an outage cannot resurface
        self._fallback.clear()
        if self.client is None:
            return
        try:
            self.client.delete(self.key)
        except redis.RedisError as e:
            log_event("token_store_error", level="WARNING", op="clear", error=str(e))
