# botrouter/core/handlers/auto_reply.py
from __future__ import annotations

import time
from typing import Callable, Optional

from botrouter.core.domain import Category, HandlerResult
from botrouter.core.handlers.base import HandlerContext, MessageHandler

GRATITUDE_WORDS = frozenset({"gracias", "thanks", "thank", "agradezco"})


class AutoReplyHandler(MessageHandler):
    """
    Short personalised replies to greetings, farewells and thanks.

    Each user gets at most one auto reply per ``cooldown_seconds``; inside
    that window the message is claimed silently so no fallback is sent.
    """

    name = "auto_reply"
    priority = 50

    def __init__(
        self,
        bot_name: str = "Botrouter",
        prefix: str = "/",
        cooldown_seconds: float = 30,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.bot_name = bot_name
        self.prefix = prefix
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_reply: dict[str, float] = {}

    def _kind(self, ctx: HandlerContext) -> Optional[str]:
        category = ctx.classification.category
        if category == Category.GREETING:
            return "greeting"
        if category == Category.FAREWELL:
            return "farewell"
        if category in (Category.CONTEXTUAL, Category.UNKNOWN) and GRATITUDE_WORDS & set(ctx.classification.keywords):
            return "thanks"
        return None

    def can_handle(self, ctx: HandlerContext) -> bool:
        return self._kind(ctx) is not None

    async def handle(self, ctx: HandlerContext) -> HandlerResult:
        kind = self._kind(ctx)
        if kind is None:
            return HandlerResult.skip()

        now = self._clock()
        last = self._last_reply.get(ctx.user.id)
        if last is not None and now - last < self.cooldown_seconds:
            return HandlerResult.silent()
        self._last_reply[ctx.user.id] = now

        name = ctx.user.display_name or "there"
        if kind == "greeting":
            text = (
                f"Hello {name}! 👋 I'm {self.bot_name}. How can I help you today?\n"
                f"Send {self.prefix}help to see what I can do."
            )
        elif kind == "farewell":
            text = f"Goodbye {name}! 👋 Talk to you soon."
        else:
            text = f"You're welcome, {name}! 😊"
        return HandlerResult.reply(text)

    def sweep(self) -> int:
        """Forget users whose auto-reply cooldown has passed."""
        cutoff = self._clock() - self.cooldown_seconds
        stale = [user_id for user_id, last in self._last_reply.items() if last <= cutoff]
        for user_id in stale:
            del self._last_reply[user_id]
        return len(stale)

    @property
    def tracked_users(self) -> int:
        return len(self._last_reply)
