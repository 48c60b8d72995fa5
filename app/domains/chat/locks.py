"""In-process serialization of requests against one conversation."""

import asyncio
import weakref
from uuid import UUID


class ConversationLockRegistry:
    """One ``asyncio.Lock`` per conversation, shared by every service instance.

    Locks are held weakly: once no request references a conversation's lock it
    is dropped from the registry.
    """

    _locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def get(cls, conversation_id: UUID | str) -> asyncio.Lock:
        key = str(conversation_id)
        lock = cls._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            cls._locks[key] = lock
        return lock

    @classmethod
    def clear(cls) -> None:
        cls._locks.clear()
