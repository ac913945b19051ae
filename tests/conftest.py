# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from botrouter.core.domain import Message, User, UserLevel  # noqa: E402

# Noon UTC: inside every tier's time window
NOON = datetime(2024, 6, 3, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock returning timezone-aware datetimes."""

    def __init__(self, now: datetime = NOON):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class EpochClock:
    """Settable clock returning epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockWatermarkStore:
    """Async mock for WatermarkSnapshotStore"""

    def __init__(self, data=None, fail_save=False, fail_load=False):
        self.data = data
        self.saves = []
        self.fail_save = fail_save
        self.fail_load = fail_load

    async def load(self):
        if self.fail_load:
            from botrouter.core.errors import PersistenceFailure
            raise PersistenceFailure("load failed")
        return self.data

    async def save(self, snapshot: dict):
        if self.fail_save:
            from botrouter.core.errors import PersistenceFailure
            raise PersistenceFailure("disk full")
        self.saves.append(snapshot)
        self.data = snapshot


class MockGateway:
    """Async mock for CanSendMessage"""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    async def send(self, conversation_id: str, text: str) -> bool:
        self.sent.append((conversation_id, text))
        return self.ok


def make_message(
    message_id: str = "msg1",
    text: str = "hola",
    conversation_id: str = "chat_1",
    timestamp: datetime | None = None,
    from_self: bool = False,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=f"sender_{conversation_id}",
        text=text,
        timestamp=timestamp or NOON,
        from_self=from_self,
    )


def make_user(user_id: str = "user_1", level: UserLevel = UserLevel.BASIC, **kwargs) -> User:
    return User(id=user_id, conversation_id=kwargs.pop("conversation_id", "chat_1"), level=level, **kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def epoch_clock():
    return EpochClock()


@pytest.fixture
def gateway():
    return MockGateway()


@pytest.fixture
def watermark_store():
    return MockWatermarkStore()
