"""Per-sender sliding-window rate limiting for chat messages."""

import os
import time
from collections import defaultdict

RATE_LIMIT = int(os.environ.get("CHATHUB_RATE_LIMIT", "5"))            # max messages
RATE_WINDOW = float(os.environ.get("CHATHUB_RATE_WINDOW", "5.0"))      # per this many seconds


class RateLimitExceeded(Exception):
    """Raised when a sender has used up their message allowance."""

    def __init__(self, message: str = "Too many messages. Please slow down."):
        super().__init__(message)
        self.message = message


class SlidingWindowRateLimiter:
    def __init__(self, limit: int = RATE_LIMIT, window: float = RATE_WINDOW):
        self.limit = limit
        self.window = window
        # sender id -> monotonic timestamps of accepted messages
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def check(self, sender_id: str) -> None:
        """Record one message for *sender_id*, or raise RateLimitExceeded."""
        self.prune()
        now = time.monotonic()
        cutoff = now - self.window
        recent = [t for t in self._attempts[sender_id] if t > cutoff]
        if len(recent) >= self.limit:
            self._attempts[sender_id] = recent
            raise RateLimitExceeded()
        recent.append(now)
        self._attempts[sender_id] = recent

    def prune(self) -> None:
        """Drop senders whose last message is older than the window."""
        cutoff = time.monotonic() - self.window
        stale = [
            sid for sid, attempts in self._attempts.items()
            if not attempts or attempts[-1] <= cutoff
        ]
        for sid in stale:
            del self._attempts[sid]

    def refund(self, sender_id: str) -> None:
        """Give back the most recent allowance, for a message that was never stored."""
        attempts = self._attempts.get(sender_id)
        if attempts:
            attempts.pop()
            if not attempts:
                del self._attempts[sender_id]

    def reset(self, sender_id: str) -> None:
        self._attempts.pop(sender_id, None)
