"""
In-process registry of per-feed run locks.

Two runs for the same feed would read the same prior booking set and emit
conflicting change events, so a feed may only have one run in flight. The
registry hands out one lock per feed_id; acquisition never blocks, a second
caller is simply told the feed is busy.

This only covers a single process. Multiple sync workers sharing a database
need a database-level lease instead.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class FeedLockRegistry:
    """
    Non-blocking per-feed locks.

    Example:
        >>> registry = FeedLockRegistry()
        >>> with registry.hold("feed-1") as acquired:
        ...     if acquired:
        ...         run_sync()
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, feed_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(feed_id)
            if lock is None:
                lock = self._locks[feed_id] = threading.Lock()
            return lock

    def try_acquire(self, feed_id: str) -> bool:
        """
        Try to take the lock for a feed.

        Args:
            feed_id: Feed ID

        Returns:
            True if acquired, False if a run for this feed is already in flight
        """
        return self._lock_for(feed_id).acquire(blocking=False)

    def release(self, feed_id: str) -> None:
        self._lock_for(feed_id).release()

    def is_locked(self, feed_id: str) -> bool:
        return self._lock_for(feed_id).locked()

    @contextmanager
    def hold(self, feed_id: str) -> Iterator[bool]:
        """Context manager around try_acquire(); yields whether the lock was taken."""
        acquired = self.try_acquire(feed_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(feed_id)

    def clear(self) -> None:
        """Forget all locks. Only safe when no run is in flight (tests)."""
        with self._guard:
            self._locks.clear()


# Global registry shared by the poller and the API's manual sync trigger
feed_locks = FeedLockRegistry()
