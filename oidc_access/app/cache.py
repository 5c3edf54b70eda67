"""
User-info cache contract and an in-process implementation.
"""

import threading
from typing import Optional, Protocol

from cachetools import TTLCache

from .models import UserInfo


class UserInfoCache(Protocol):
    """Keyed store of user profiles supplied by the host application.

    The engine does not coalesce concurrent population for the same
    subject; implementations that need exactly-once fetches do it here.
    """

    async def get(self, user_id: str) -> Optional[UserInfo]:
        ...

    async def set(self, user_id: str, userinfo: UserInfo) -> None:
        ...


class InMemoryUserInfoCache:
    """Per-process cache with a bounded size and a time-to-live."""

    def __init__(self, maxsize: int = 1024, ttl: float = 300.0):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    async def get(self, user_id: str) -> Optional[UserInfo]:
        with self._lock:
            return self._cache.get(user_id)

    async def set(self, user_id: str, userinfo: UserInfo) -> None:
        with self._lock:
            self._cache[user_id] = userinfo

    async def delete(self, user_id: str) -> None:
        with self._lock:
            self._cache.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
