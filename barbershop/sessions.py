# barbershop/sessions.py
"""In-memory conversation state keyed by chat identity.

Each stored session owns an inactivity timer and a last-activity time.
``touch`` refreshes both, ``delete`` cancels the timer. When the timer fires,
the session is removed and ``on_expire`` is awaited with the identity and the
state it held.

State lives in this process only. Running several instances needs an external
session store behind the same interface.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[str, Any], Awaitable[None]]


class IdentityLocks:
    """One asyncio lock per identity, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, identity: str):
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._users[identity] = self._users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[identity] -= 1
            if not self._users[identity]:
                del self._users[identity]
                del self._locks[identity]

    def __contains__(self, identity: str) -> bool:
        return identity in self._locks


@dataclass
class _Entry:
    state: Any
    timer: Optional[asyncio.Task] = None
    last_activity: float = 0.0


class SessionStore:
    def __init__(
        self,
        timeout_seconds: float,
        locks: IdentityLocks,
        on_expire: Optional[ExpireCallback] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._locks = locks
        self._on_expire = on_expire
        self._entries: Dict[str, _Entry] = {}

    def set_expire_callback(self, callback: ExpireCallback) -> None:
        self._on_expire = callback

    def get(self, identity: str) -> Optional[Any]:
        entry = self._entries.get(identity)
        return entry.state if entry else None

    def put(self, identity: str, state: Any) -> None:
        entry = self._entries.get(identity)
        if entry is None:
            self._entries[identity] = _Entry(state=state)
        else:
            entry.state = state
        self.touch(identity)

    def touch(self, identity: str) -> None:
        """Restart the inactivity timer; a no-op for identities without a session."""
        entry = self._entries.get(identity)
        if entry is None:
            return
        self._cancel_timer(entry)
        entry.last_activity = time.monotonic()
        entry.timer = asyncio.create_task(self._watch(identity))

    def idle_seconds(self, identity: str) -> Optional[float]:
        """Seconds since the last touch, or None without a session."""
        entry = self._entries.get(identity)
        if entry is None:
            return None
        return time.monotonic() - entry.last_activity

    def delete(self, identity: str) -> Optional[Any]:
        entry = self._entries.pop(identity, None)
        if entry is None:
            return None
        self._cancel_timer(entry)
        return entry.state

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        timers = [entry.timer for entry in self._entries.values() if entry.timer]
        for timer in timers:
            timer.cancel()
        self._entries.clear()
        await asyncio.gather(*timers, return_exceptions=True)

    @staticmethod
    def _cancel_timer(entry: _Entry) -> None:
        current = asyncio.current_task()
        if entry.timer is not None and entry.timer is not current:
            entry.timer.cancel()
        entry.timer = None

    async def _watch(self, identity: str) -> None:
        await asyncio.sleep(self.timeout_seconds)
        me = asyncio.current_task()
        async with self._locks.hold(identity):
            entry = self._entries.get(identity)
            # a later touch or delete replaced this timer while we waited
            if entry is None or entry.timer is not me:
                return
            entry.timer = None
            del self._entries[identity]
            logger.info(
                "Session for %s closed after %.0fs of inactivity",
                identity,
                time.monotonic() - entry.last_activity,
            )
            if self._on_expire is not None:
                try:
                    await self._on_expire(identity, entry.state)
                except Exception:
                    logger.exception("Expiry callback failed for %s", identity)
