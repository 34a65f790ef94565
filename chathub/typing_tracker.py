"""Ephemeral "is typing" state with server-driven expiry.

Each (user, channel) pair is either idle or typing.  A typing pair holds one
scheduled expiry handle; refreshing or stopping cancels that exact handle,
so a stale expiry can never fire after a later refresh.

Timers come from an injectable ``call_later(delay, callback)`` which must
return an object with ``cancel()``.  The default is the running event
loop's ``call_later``; tests pass a fake scheduler driven by a fake clock.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .session_registry import SessionRegistry
from .ws_constants import MSG_TYPING_START, MSG_TYPING_STOP

logger = logging.getLogger(__name__)

TYPING_TIMEOUT = float(os.environ.get("CHATHUB_TYPING_TIMEOUT", "3.0"))  # seconds

TypingKey = tuple[str, str]  # (user_id, channel_id)


@dataclass
class TypingEntry:
    user_id: str
    channel_id: str
    username: str
    handle: Any = None
    generation: int = 0


def _loop_call_later(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


def _broadcast_task_done_callback(task: asyncio.Task):
    """Log exceptions from background broadcasts instead of silently swallowing."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Typing stop broadcast failed: %s", exc, exc_info=exc)


class TypingTracker:
    def __init__(
        self,
        registry: SessionRegistry,
        *,
        timeout: float = TYPING_TIMEOUT,
        call_later: Callable[[float, Callable[[], None]], Any] | None = None,
    ):
        self.registry = registry
        self.timeout = timeout
        self._call_later = call_later or _loop_call_later
        self._active: dict[TypingKey, TypingEntry] = {}
        # typing_stop broadcasts queued by expiry and not yet sent
        self._pending_stops: dict[TypingKey, asyncio.Future] = {}

    def is_typing(self, user_id: str, channel_id: str) -> bool:
        return (user_id, channel_id) in self._active

    def typing_in(self, channel_id: str) -> list[TypingEntry]:
        return [e for e in self._active.values() if e.channel_id == channel_id]

    def _arm(self, entry: TypingEntry) -> None:
        if entry.handle is not None:
            entry.handle.cancel()
        entry.generation += 1
        key = (entry.user_id, entry.channel_id)
        generation = entry.generation
        entry.handle = self._call_later(
            self.timeout, lambda: self._expire(key, entry, generation)
        )

    def _remove(self, key: TypingKey) -> TypingEntry | None:
        entry = self._active.pop(key, None)
        if entry is not None and entry.handle is not None:
            entry.handle.cancel()
            entry.handle = None
        return entry

    async def _broadcast_stop(self, entry: TypingEntry) -> None:
        await self.registry.broadcast(
            {"type": MSG_TYPING_STOP, "channelId": entry.channel_id, "odId": entry.user_id},
            exclude=entry.user_id,
        )

    async def start(self, user_id: str, channel_id: str, username: str) -> bool:
        """Mark the pair as typing and (re)arm its expiry.

        Only the idle -> typing transition is broadcast; a refresh just
        restarts the timer.  Returns True if ``typing_start`` went out.
        """
        key = (user_id, channel_id)
        # An expiry's typing_stop must reach clients before a new typing_start.
        pending = self._pending_stops.get(key)
        if pending is not None and not pending.done():
            await asyncio.wait({pending})

        entry = self._active.get(key)
        if entry is not None:
            self._arm(entry)
            return False

        entry = TypingEntry(user_id=user_id, channel_id=channel_id, username=username)
        self._active[key] = entry
        self._arm(entry)
        await self.registry.broadcast(
            {
                "type": MSG_TYPING_START,
                "channelId": channel_id,
                "odId": user_id,
                "username": username,
            },
            exclude=user_id,
        )
        return True

    async def stop(self, user_id: str, channel_id: str) -> bool:
        """Move the pair to idle.  Stopping an idle pair is a no-op."""
        entry = self._remove((user_id, channel_id))
        if entry is None:
            return False
        await self._broadcast_stop(entry)
        return True

    def _expire(self, key: TypingKey, entry: TypingEntry, generation: int) -> None:
        # Only the most recently armed timer of a still-active entry counts.
        if self._active.get(key) is not entry or entry.generation != generation:
            return
        self._active.pop(key)
        entry.handle = None
        logger.debug("Typing expired for user %s in channel %s", *key)
        task = asyncio.ensure_future(self._broadcast_stop(entry))
        self._pending_stops[key] = task
        task.add_done_callback(_broadcast_task_done_callback)
        task.add_done_callback(lambda t: self._stop_sent(key, t))

    def _stop_sent(self, key: TypingKey, task: asyncio.Future) -> None:
        if self._pending_stops.get(key) is task:
            del self._pending_stops[key]

    async def clear_user(self, user_id: str) -> int:
        """Stop every typing entry for a departing user."""
        keys = [k for k in self._active if k[0] == user_id]
        for key in keys:
            await self.stop(*key)
        return len(keys)

    def shutdown(self) -> None:
        """Cancel all pending expiries without broadcasting."""
        for entry in self._active.values():
            if entry.handle is not None:
                entry.handle.cancel()
        self._active.clear()
        for task in self._pending_stops.values():
            task.cancel()
        self._pending_stops.clear()
