# botrouter/core/dispatch.py
"""
Priority-ordered handler pipeline.

Handlers run in ascending ``priority`` (registration order breaks ties).
A handler that raises is logged and skipped; the first result with
``handled=True`` wins. When nobody claims the message a canned fallback
keyed by classification category is returned.
"""
from __future__ import annotations

import time
from typing import Iterable

from botrouter.core.domain import Category, HandlerResult
from botrouter.core.errors import HandlerFailure
from botrouter.core.handlers.base import HandlerContext, MessageHandler
from botrouter.infra.logging_config import LogContext, get_logger
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)

FALLBACK_HANDLER = "fallback"


class HandlerPipeline:
    def __init__(
        self,
        handlers: Iterable[MessageHandler] = (),
        bot_name: str = "Botrouter",
        prefix: str = "/",
    ):
        self.bot_name = bot_name
        self.prefix = prefix
        self._handlers: list[MessageHandler] = []
        for handler in handlers:
            self.register(handler)

    def register(self, handler: MessageHandler) -> None:
        if any(h.name == handler.name for h in self._handlers):
            raise ValueError(f"Handler '{handler.name}' is already registered")
        self._handlers.append(handler)
        # sort is stable: equal priorities keep registration order
        self._handlers.sort(key=lambda h: h.priority)
        logger.debug(f"Registered handler {handler.name} (priority={handler.priority})")

    @property
    def handlers(self) -> list[MessageHandler]:
        return list(self._handlers)

    async def dispatch(self, ctx: HandlerContext) -> HandlerResult:
        log = LogContext(logger, conversation_id=ctx.message.conversation_id, message_id=ctx.message.id)

        for handler in self._handlers:
            if not handler.enabled:
                continue
            started = time.perf_counter()
            try:
                if not handler.can_handle(ctx):
                    continue
                result = await handler.handle(ctx)
            except Exception as exc:
                failure = HandlerFailure(handler.name, exc)
                handler.record(handled=False, failed=True, started=started)
                AppMetrics.handler_failure(handler.name)
                log.error(failure.detail, exc_info=True)
                continue

            handler.record(handled=result.handled, failed=False, started=started)
            if result.handled:
                result.handler = handler.name
                return result

        return self.fallback(ctx.classification.category)

    def fallback(self, category: Category) -> HandlerResult:
        if category == Category.GREETING:
            text = f"Hello! I'm {self.bot_name}. How can I help you? 👋"
        elif category == Category.FAREWELL:
            text = "Goodbye! Have a great day. 👋"
        elif category == Category.HELP:
            text = f"I'm here to help. Send {self.prefix}help to see the available commands."
        elif category == Category.QUESTION:
            text = (
                "Interesting question! I can't answer that yet. "
                f"Send {self.prefix}help to see what I can do."
            )
        elif category == Category.COMMAND:
            text = f"❓ Unknown command. Send {self.prefix}help to see the available commands."
        else:
            text = (
                "I don't understand that message. 🤔 "
                f"Send {self.prefix}help to see what I can do."
            )
        return HandlerResult(handled=True, response=text, should_reply=True, handler=FALLBACK_HANDLER)

    def stats(self) -> dict:
        return {
            h.name: {"priority": h.priority, "enabled": h.enabled, **h.stats.to_dict()}
            for h in self._handlers
        }
