# botrouter/core/handlers/flow_handler.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from botrouter.core.context_manager import ContextManager
from botrouter.core.domain import Category, HandlerResult
from botrouter.core.handlers.base import HandlerContext, MessageHandler
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)


class ActiveFlowHandler(MessageHandler):
    """
    Feeds messages from users with an active context into their flow.

    A context found expired here is exited and the message falls through
    to the next handler. Completed contexts are exited right away so the
    completion hook fires.
    """

    name = "active_flow"
    priority = 20

    def __init__(
        self,
        contexts: ContextManager,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__()
        self.contexts = contexts
        self._clock = clock

    def can_handle(self, ctx: HandlerContext) -> bool:
        if ctx.classification.category == Category.COMMAND:
            return False
        return self.contexts.get_active(ctx.user.id) is not None

    async def handle(self, ctx: HandlerContext) -> HandlerResult:
        context = self.contexts.get_active(ctx.user.id)
        if context is None:
            return HandlerResult.skip()

        if context.is_expired(self._clock()):
            logger.info(f"Context {context.id} expired before input", extra={"user_id": ctx.user.id})
            await self.contexts.exit(context)
            return HandlerResult.skip()

        outcome = await self.contexts.process(context, ctx.text)
        if outcome.completed:
            await self.contexts.exit(context)
        return HandlerResult.reply(outcome.response)
