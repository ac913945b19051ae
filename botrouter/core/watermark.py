# botrouter/core/watermark.py
"""
Durable de-duplication and ordering guard for inbound messages.

A message is admitted only if it is new by id, newer than both the global
and the per-conversation watermark, not older than the startup window and
not an echo of our own outbound message. State is snapshotted every N
processed messages and on shutdown. After a crash, anything processed
since the last good snapshot may be processed again.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from botrouter.core.domain import Message
from botrouter.core.errors import PersistenceFailure
from botrouter.core.ports import WatermarkSnapshotStore
from botrouter.infra.logging_config import get_logger
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RejectReason(str, Enum):
    DUPLICATE = "duplicate"
    SUPERSEDED_GLOBAL = "superseded_global"
    SUPERSEDED_CONVERSATION = "superseded_conversation"
    BEFORE_STARTUP_WINDOW = "before_startup_window"
    FROM_SELF = "from_self"


class ProcessedIdRing:
    """
    Fixed-capacity set of message ids. Inserting past capacity evicts the
    oldest id, so ``len(ring) <= capacity`` always holds.
    """

    def __init__(self, capacity: int, ids: Iterable[str] = ()):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._order: deque[str] = deque()
        self._members: set[str] = set()
        for message_id in ids:
            self.add(message_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._members

    def __len__(self) -> int:
        return len(self._members)

    def add(self, message_id: str) -> Optional[str]:
        """Insert ``message_id``; return the evicted id, if any."""
        if message_id in self._members:
            return None
        evicted = None
        if len(self._order) >= self.capacity:
            evicted = self._order.popleft()
            self._members.discard(evicted)
        self._order.append(message_id)
        self._members.add(message_id)
        return evicted

    def to_list(self) -> list[str]:
        return list(self._order)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class WatermarkTracker:
    def __init__(
        self,
        store: WatermarkSnapshotStore,
        capacity: int = 10000,
        snapshot_every: int = 10,
        startup_window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._snapshot_every = snapshot_every
        self._startup_window = startup_window
        self._clock = clock

        self.processed_ids = ProcessedIdRing(capacity)
        self.global_last_processed: Optional[datetime] = None
        self.conversation_last_processed: dict[str, datetime] = {}
        self.session_id: str = uuid.uuid4().hex
        self.process_start: datetime = clock()
        self.previous_start: Optional[datetime] = None

        self._marks_since_snapshot = 0
        self._total_marked = 0
        self._last_saved_at: Optional[datetime] = None
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admission(self, message: Message) -> Optional[RejectReason]:
        """Return the first reason to reject ``message``, or None to admit it."""
        if message.id in self.processed_ids:
            return RejectReason.DUPLICATE

        ts = message.timestamp
        if self.global_last_processed is not None and ts <= self.global_last_processed:
            return RejectReason.SUPERSEDED_GLOBAL

        conv_ts = self.conversation_last_processed.get(message.conversation_id)
        if conv_ts is not None and ts <= conv_ts:
            return RejectReason.SUPERSEDED_CONVERSATION

        if ts < self.process_start - self._startup_window:
            return RejectReason.BEFORE_STARTUP_WINDOW

        if message.from_self:
            return RejectReason.FROM_SELF

        return None

    def should_process(self, message: Message) -> bool:
        return self.admission(message) is None

    # ------------------------------------------------------------------
    # Marking
    # ------------------------------------------------------------------

    async def mark_processed(self, message: Message) -> None:
        self.processed_ids.add(message.id)

        ts = message.timestamp
        if self.global_last_processed is None or ts > self.global_last_processed:
            self.global_last_processed = ts

        conv_ts = self.conversation_last_processed.get(message.conversation_id)
        if conv_ts is None or ts > conv_ts:
            self.conversation_last_processed[message.conversation_id] = ts

        self._total_marked += 1
        self._marks_since_snapshot += 1
        if self._snapshot_every > 0 and self._marks_since_snapshot >= self._snapshot_every:
            await self.save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "lastProcessedTimestamp": (
                self.global_last_processed.isoformat() if self.global_last_processed else None
            ),
            "chatLastProcessed": {
                conv: ts.isoformat() for conv, ts in self.conversation_last_processed.items()
            },
            "processedMessageIds": self.processed_ids.to_list(),
            "lastBotStartTime": self.process_start.isoformat(),
            "botSessionId": self.session_id,
            "savedAt": self._clock().isoformat(),
        }

    async def save(self) -> bool:
        """
        Write a snapshot. Writes never overlap: a save waits for the one in
        flight. Failures are logged; memory stays authoritative.
        """
        async with self._save_lock:
            try:
                await self._store.save(self.snapshot())
            except PersistenceFailure as exc:
                logger.error(f"Watermark snapshot failed, keeping in-memory state: {exc.detail}")
                AppMetrics.snapshot_failure()
                return False
            self._marks_since_snapshot = 0
            self._last_saved_at = self._clock()
            return True

    async def load(self) -> None:
        """
        Restore the last snapshot (authoritative) and start a new session.

        A missing or unreadable snapshot starts with empty state; the
        startup window still keeps old history from being replayed.
        """
        self.process_start = self._clock()
        self.session_id = uuid.uuid4().hex

        try:
            data = await self._store.load()
        except PersistenceFailure as exc:
            logger.error(f"Could not load watermark snapshot, starting empty: {exc.detail}")
            AppMetrics.snapshot_failure()
            data = None

        if not data:
            logger.info(f"No watermark snapshot found, session={self.session_id}")
            return

        try:
            self.global_last_processed = _parse_ts(data.get("lastProcessedTimestamp"))
            self.conversation_last_processed = {
                conv: _parse_ts(ts)
                for conv, ts in (data.get("chatLastProcessed") or {}).items()
                if ts
            }
            self.processed_ids = ProcessedIdRing(
                self.processed_ids.capacity,
                data.get("processedMessageIds") or [],
            )
            self.previous_start = _parse_ts(data.get("lastBotStartTime"))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.error(f"Corrupt watermark snapshot ignored: {exc}", exc_info=True)
            self.global_last_processed = None
            self.conversation_last_processed = {}
            self.processed_ids = ProcessedIdRing(self.processed_ids.capacity)
            return

        logger.info(
            f"Watermark restored: ids={len(self.processed_ids)}, "
            f"conversations={len(self.conversation_last_processed)}, "
            f"global={self.global_last_processed}, session={self.session_id}"
        )

    async def close(self) -> None:
        await self.save()

    def stats(self) -> dict:
        return {
            "session_id": self.session_id,
            "process_start": self.process_start.isoformat(),
            "global_last_processed": (
                self.global_last_processed.isoformat() if self.global_last_processed else None
            ),
            "conversations": len(self.conversation_last_processed),
            "processed_ids": len(self.processed_ids),
            "capacity": self.processed_ids.capacity,
            "total_marked": self._total_marked,
            "pending_marks": self._marks_since_snapshot,
            "last_saved_at": self._last_saved_at.isoformat() if self._last_saved_at else None,
        }
