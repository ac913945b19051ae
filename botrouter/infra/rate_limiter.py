# botrouter/infra/rate_limiter.py
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Callable
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)


class CommandUsageTracker:
    """
    Per-user sliding window of command executions (default: last hour).

    Feeds the hourly quota check of ``PermissionService``.
    NOT shared between processes: each process counts its own executions.
    """

    def __init__(self, window_seconds: int = 3600, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: dict[str, list[float]] = defaultdict(list)
        self._lock = Lock()

    def _prune(self, user_id: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [ts for ts in self._events.get(user_id, ()) if ts > cutoff]
        if recent:
            self._events[user_id] = recent
        else:
            self._events.pop(user_id, None)
        return recent

    def count(self, user_id: str) -> int:
        with self._lock:
            return len(self._prune(user_id, self._clock()))

    def record(self, user_id: str) -> None:
        now = self._clock()
        with self._lock:
            self._prune(user_id, now)
            self._events[user_id].append(now)

    def get_usage(self, user_id: str, limit: int) -> dict:
        """Current usage stats for a user against ``limit`` (-1 = unlimited)."""
        used = self.count(user_id)
        return {
            "count": used,
            "limit": limit,
            "window_seconds": self.window_seconds,
            "remaining": None if limit < 0 else max(0, limit - used),
        }

    def sweep(self) -> int:
        """Drop users with no events inside the window. Returns users removed."""
        now = self._clock()
        with self._lock:
            before = len(self._events)
            for user_id in list(self._events):
                self._prune(user_id, now)
            removed = before - len(self._events)
        if removed:
            logger.debug(f"Usage tracker swept {removed} idle users")
        return removed

    @property
    def tracked_users(self) -> int:
        with self._lock:
            return len(self._events)
