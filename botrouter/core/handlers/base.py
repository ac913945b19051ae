# botrouter/core/handlers/base.py
"""
Handler base class and the narrow capabilities handed to commands.

Handlers never see the processor or the pipeline. Commands get a
``CommandServices`` bundle with just the collaborators they may use.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from botrouter.core.domain import Classification, HandlerResult, Message, User

if TYPE_CHECKING:
    from botrouter.core.commands import CommandRegistry, CooldownTracker
    from botrouter.core.context_manager import ContextManager
    from botrouter.core.ports import CanLookupUser, CanSendMessage
    from botrouter.infra.rate_limiter import CommandUsageTracker


@dataclass
class HandlerContext:
    """A classified message plus the user who sent it."""
    message: Message
    classification: Classification
    user: User

    @property
    def text(self) -> str:
        return self.message.text


@dataclass
class HandlerStats:
    total: int = 0
    handled: int = 0
    failed: int = 0
    total_time_ms: float = 0.0

    @property
    def average_response_ms(self) -> float:
        return self.total_time_ms / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "handled": self.handled,
            "failed": self.failed,
            "average_response_ms": round(self.average_response_ms, 2),
        }


class MessageHandler:
    """
    Base class for dispatch handlers.

    Subclasses set ``name`` and ``priority`` (lower runs first) and
    implement ``can_handle`` and ``handle``.
    """

    name: str = "handler"
    priority: int = 100

    def __init__(self) -> None:
        self.enabled = True
        self.stats = HandlerStats()

    def can_handle(self, ctx: HandlerContext) -> bool:
        raise NotImplementedError

    async def handle(self, ctx: HandlerContext) -> HandlerResult:
        raise NotImplementedError

    def record(self, handled: bool, failed: bool, started: float) -> None:
        self.stats.total += 1
        if handled:
            self.stats.handled += 1
        if failed:
            self.stats.failed += 1
        self.stats.total_time_ms += (time.perf_counter() - started) * 1000

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} priority={self.priority}>"


@dataclass
class CommandServices:
    """Collaborators available to command implementations."""
    registry: "CommandRegistry"
    contexts: "ContextManager"
    users: "CanLookupUser"
    cooldowns: "CooldownTracker"
    usage: "CommandUsageTracker"
    sender: Optional["CanSendMessage"] = None
    bot_name: str = "Botrouter"
    prefix: str = "/"
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    stats_provider: Optional[Callable[[], dict]] = None  # Wired by the processor for /stats
