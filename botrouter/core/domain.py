# botrouter/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


# ============================================================================
# INBOUND MESSAGE
# ============================================================================

@dataclass(frozen=True)
class Message:
    """
    A chat message as delivered by the gateway.

    Watermark comparisons are done on datetimes rather than on the gateway's
    string representation. A naive ``timestamp`` is taken to be UTC.
    """
    id: str
    conversation_id: str
    sender_id: str
    text: str
    timestamp: datetime
    from_self: bool = False
    media: Optional[str] = None

    def __post_init__(self):
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))


# ============================================================================
# CLASSIFICATION
# ============================================================================

class Category(str, Enum):
    COMMAND = "command"
    GREETING = "greeting"
    FAREWELL = "farewell"
    QUESTION = "question"
    HELP = "help"
    CONTEXTUAL = "contextual"
    UNKNOWN = "unknown"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Classification:
    category: Category
    confidence: float
    keywords: tuple[str, ...] = ()
    sentiment: Sentiment = Sentiment.NEUTRAL


@dataclass(frozen=True)
class DetailedClassification:
    """Primary classification plus every pattern family that also matched."""
    primary: Classification
    matched_categories: tuple[Category, ...] = ()
    keyword_groups: Dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def secondary_categories(self) -> tuple[Category, ...]:
        return tuple(c for c in self.matched_categories if c != self.primary.category)


# ============================================================================
# USERS
# ============================================================================

class UserLevel(IntEnum):
    """Ordered permission hierarchy: BLOCKED < BASIC < STANDARD < ADVANCED < ADMIN."""
    BLOCKED = 0
    BASIC = 1
    STANDARD = 2
    ADVANCED = 3
    ADMIN = 4


@dataclass
class User:
    id: str
    conversation_id: str
    display_name: Optional[str] = None
    level: UserLevel = UserLevel.BASIC
    active: bool = True
    banned: bool = False
    language: str = "es"
    points: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def can_interact(self) -> bool:
        return self.active and not self.banned


# ============================================================================
# CONVERSATION CONTEXT
# ============================================================================

@dataclass
class ConversationContext:
    """
    One user's position inside a guided flow.

    Invariants: ``expires_at > created_at`` and ``current_step_id`` is a step
    of the flow identified by ``flow_id``.
    """
    id: str
    user_id: str
    flow_id: str
    current_step_id: str
    created_at: datetime
    expires_at: datetime
    step_data: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    completed_hook_fired: bool = False

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class HandlerResult:
    handled: bool
    response: Optional[str] = None
    should_reply: bool = True
    handler: Optional[str] = None

    @classmethod
    def skip(cls) -> "HandlerResult":
        return cls(handled=False, should_reply=False)

    @classmethod
    def reply(cls, text: str) -> "HandlerResult":
        return cls(handled=True, response=text, should_reply=True)

    @classmethod
    def silent(cls) -> "HandlerResult":
        return cls(handled=True, response=None, should_reply=False)


@dataclass
class ProcessResult:
    """Outcome of processing one inbound message."""
    response: Optional[str] = None
    should_reply: bool = False
    category: Optional[Category] = None
    handler: Optional[str] = None
    reason: Optional[str] = None  # Why a message was skipped
    sent: bool = False
