# botrouter/core/processor.py
"""
Single entry point of the routing core.

    process_message: admission -> classify -> user lookup -> dispatch
                     -> gateway send -> mark processed

Messages are handled one at a time (an ``asyncio.Lock`` serializes them),
so the read-then-write updates of the watermark, cooldown, usage and
context maps never interleave.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from botrouter.core.classifier import MessageClassifier
from botrouter.core.commands import CommandRegistry
from botrouter.core.context_manager import ContextManager
from botrouter.core.dispatch import HandlerPipeline
from botrouter.core.domain import Message, ProcessResult, User
from botrouter.core.errors import DirectoryUnavailable, DuplicateMessage
from botrouter.core.handlers.base import HandlerContext
from botrouter.core.ports import CanSendMessage, UserDirectory
from botrouter.core.watermark import WatermarkTracker
from botrouter.infra.logging_config import LogContext, get_logger
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)

GENERIC_ERROR_REPLY = "Sorry, something went wrong. Please try again in a moment."


class MessageProcessor:
    def __init__(
        self,
        classifier: MessageClassifier,
        watermark: WatermarkTracker,
        pipeline: HandlerPipeline,
        contexts: ContextManager,
        users: UserDirectory,
        gateway: CanSendMessage,
        registry: Optional[CommandRegistry] = None,
        sweepers: Sequence[Callable[[], int]] = (),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.classifier = classifier
        self.watermark = watermark
        self.pipeline = pipeline
        self.contexts = contexts
        self.users = users
        self.gateway = gateway
        self.registry = registry
        self.sweepers = tuple(sweepers)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._initialized = False
        self._started_at: Optional[datetime] = None
        self._counts = {"received": 0, "processed": 0, "skipped": 0, "replied": 0, "send_failed": 0}

    async def initialize(self) -> None:
        """
        Verify the user directory, restore watermark and contexts.

        Raises:
            DirectoryUnavailable: directory ping failed; startup must abort.
        """
        try:
            ok = await self.users.ping()
        except Exception as exc:
            logger.critical("User directory unreachable at startup", exc_info=True)
            raise DirectoryUnavailable(f"User directory ping failed: {exc}") from exc
        if not ok:
            logger.critical("User directory reported unhealthy at startup")
            raise DirectoryUnavailable("User directory ping returned false")

        await self.watermark.load()
        await self.contexts.restore()
        self._initialized = True
        self._started_at = self._clock()
        logger.info(
            f"Message processor ready: handlers={[h.name for h in self.pipeline.handlers]}, "
            f"flows={self.contexts.flow_ids}"
        )

    async def process_message(self, message: Message) -> ProcessResult:
        async with self._lock:
            return await self._process(message)

    async def _process(self, message: Message) -> ProcessResult:
        self._counts["received"] += 1
        AppMetrics.message_received()
        log = LogContext(logger, conversation_id=message.conversation_id, message_id=message.id)

        reason = self.watermark.admission(message)
        if reason is not None:
            skipped = DuplicateMessage(message.id, reason.value)
            self._counts["skipped"] += 1
            AppMetrics.message_rejected(reason.value)
            log.debug(skipped.detail)
            return ProcessResult(should_reply=False, reason=reason.value)

        try:
            return await self._route(message, log)
        except Exception:
            # Directory or store failure mid-message: degrade to a generic reply
            log.error("Message processing failed", exc_info=True)
            outcome = ProcessResult(response=GENERIC_ERROR_REPLY, should_reply=True, reason="error")
            outcome.sent = await self._send(message.conversation_id, GENERIC_ERROR_REPLY, log)
            return outcome
        finally:
            await self.watermark.mark_processed(message)

    async def _route(self, message: Message, log: LogContext) -> ProcessResult:
        classification = self.classifier.classify(message.text)

        user = await self._resolve_user(message)
        if not user.can_interact:
            self._counts["skipped"] += 1
            log.info(f"Ignoring message from {'banned' if user.banned else 'inactive'} user {user.id}")
            return ProcessResult(
                should_reply=False,
                category=classification.category,
                reason="banned" if user.banned else "inactive",
            )

        ctx = HandlerContext(message=message, classification=classification, user=user)
        with AppMetrics.track_dispatch_time(classification.category.value):
            result = await self.pipeline.dispatch(ctx)
        AppMetrics.message_dispatched(classification.category.value, result.handler or "none")

        outcome = ProcessResult(
            response=result.response,
            should_reply=bool(result.should_reply and result.response),
            category=classification.category,
            handler=result.handler,
        )

        if outcome.should_reply:
            outcome.sent = await self._send(message.conversation_id, outcome.response, log)

        self._counts["processed"] += 1
        return outcome

    async def _resolve_user(self, message: Message) -> User:
        user = await self.users.get_user_by_conversation(message.conversation_id)
        if user is None:
            user = await self.users.create_user(message.conversation_id)
            logger.info(
                f"Created user {user.id}",
                extra={"conversation_id": message.conversation_id, "user_id": user.id},
            )
        return user

    async def _send(self, conversation_id: str, text: str, log: LogContext) -> bool:
        try:
            sent = await self.gateway.send(conversation_id, text)
        except Exception:
            log.error("Gateway send raised", exc_info=True)
            sent = False
        if sent:
            self._counts["replied"] += 1
        else:
            self._counts["send_failed"] += 1
            AppMetrics.gateway_send_failed()
            log.warning("Reply could not be delivered to the gateway")
        return sent

    async def cleanup_expired(self) -> int:
        """
        Reap expired contexts, then prune per-user cooldown and usage maps.

        Called by the scheduler and serialized with message handling.
        Returns the number of contexts expired.
        """
        async with self._lock:
            expired = await self.contexts.cleanup_expired()
            pruned = 0
            for sweep in self.sweepers:
                try:
                    pruned += sweep()
                except Exception:
                    logger.error(f"Sweep {getattr(sweep, '__qualname__', sweep)} failed", exc_info=True)
            if pruned:
                logger.debug(f"Pruned {pruned} idle per-user entries")
            return expired

    async def shutdown(self) -> None:
        async with self._lock:
            await self.watermark.close()
        logger.info("Message processor shut down, final watermark snapshot written")

    def stats(self) -> dict:
        return {
            "processor": dict(
                self._counts,
                initialized=self._initialized,
                started_at=self._started_at.isoformat() if self._started_at else None,
            ),
            "watermark": self.watermark.stats(),
            "contexts": self.contexts.stats(),
            "handlers": self.pipeline.stats(),
            "commands": self.registry.stats() if self.registry is not None else {},
        }
