"""
Table of live active messages.

One entry per posted interactive message. All mutation of an entry happens
while holding that message's lock, so two events on the same message are
strictly ordered while events on different messages never wait on each other.
"""

import asyncio
import time
import weakref
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from active_message import ActiveMessage, MessageIdentity


DEFAULT_TIMEOUT = 60.0


@dataclass
class ActiveMessageEntry:
    message: MessageIdentity
    instance: ActiveMessage
    owner_id: Optional[int]  # None: anyone may use the controls
    expires_after: float
    created_at: float
    last_interaction_at: float
    lock: asyncio.Lock = field(repr=False, default=None)
    closed: bool = False

    def is_owner(self, user_id: int) -> bool:
        return self.owner_id is None or self.owner_id == user_id

    def is_expired(self, now: float) -> bool:
        return now - self.last_interaction_at > self.expires_after


class ActiveMessageRegistry:
    def __init__(self, clock: Callable[[], float] = time.monotonic, default_timeout: float = DEFAULT_TIMEOUT):
        self.clock = clock
        self.default_timeout = default_timeout
        self._entries: Dict[MessageIdentity, ActiveMessageEntry] = {}
        # A lock lives as long as an entry or a waiter references it
        self._locks: "weakref.WeakValueDictionary[MessageIdentity, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, message: MessageIdentity):
        return message in self._entries

    def lock_for(self, message: MessageIdentity) -> asyncio.Lock:
        lock = self._locks.get(message)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[message] = lock
        return lock

    async def begin(
        self,
        instance: ActiveMessage,
        message: MessageIdentity,
        owner_id: Optional[int],
        ttl: Optional[float] = None,
    ) -> ActiveMessageEntry:
        """Start tracking `instance`. An existing entry for the message is closed first."""
        lock = self.lock_for(message)
        async with lock:
            previous = self._entries.get(message)
            if previous is not None:
                await self._close(previous)

            now = self.clock()
            entry = ActiveMessageEntry(
                message=message,
                instance=instance,
                owner_id=owner_id,
                expires_after=ttl if ttl is not None else self.default_timeout,
                created_at=now,
                last_interaction_at=now,
                lock=lock,
            )
            self._entries[message] = entry
            return entry

    def get(self, message: MessageIdentity) -> Optional[ActiveMessageEntry]:
        """Raw lookup, including entries that are past their deadline."""
        return self._entries.get(message)

    def lookup(self, message: MessageIdentity) -> Optional[ActiveMessageEntry]:
        entry = self._entries.get(message)
        if entry is None or entry.closed or entry.is_expired(self.clock()):
            return None
        return entry

    def touch(self, message: MessageIdentity) -> None:
        entry = self._entries.get(message)
        if entry is not None:
            entry.last_interaction_at = self.clock()

    def remove(self, message: MessageIdentity) -> Optional[ActiveMessageEntry]:
        """Stop tracking the message. Returns the entry on the first call only."""
        entry = self._entries.pop(message, None)
        if entry is None or entry.closed:
            return None
        entry.closed = True
        return entry

    async def close(self, message: MessageIdentity) -> Optional[ActiveMessageEntry]:
        """Remove the entry and let its instance release resources. Caller holds the lock."""
        entry = self._entries.get(message)
        if entry is None:
            return None
        await self._close(entry)
        return entry

    async def _close(self, entry: ActiveMessageEntry) -> None:
        try:
            await entry.instance.on_close()
        except Exception as e:
            print(f"[WARNING] Failed to close active message {entry.message.message_id}: {e}")
        self.remove(entry.message)

    def entries(self) -> List[ActiveMessageEntry]:
        return list(self._entries.values())

    def expired(self, now: Optional[float] = None) -> List[ActiveMessageEntry]:
        now = self.clock() if now is None else now
        return [entry for entry in self._entries.values() if entry.is_expired(now)]
