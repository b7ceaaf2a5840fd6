"""Per-user mutual exclusion for point and ladder mutations."""

from __future__ import annotations

import asyncio
import weakref


class UserLocks:
    """Hands out one ``asyncio.Lock`` per user id.

    Locks are held weakly, so a user's lock disappears once no task is
    holding or waiting on it.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock
