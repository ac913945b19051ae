# botrouter/core/assembly.py
"""
Wire the core components together.

Everything is constructed here once and passed down explicitly; no core
module reads ``settings`` on its own.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from botrouter.config import Settings
from botrouter.core.classifier import MessageClassifier
from botrouter.core.commands import CommandRegistry, CooldownTracker
from botrouter.core.context_manager import ContextManager
from botrouter.core.dispatch import HandlerPipeline
from botrouter.core.handlers.auto_reply import AutoReplyHandler
from botrouter.core.handlers.base import CommandServices
from botrouter.core.handlers.command_handlers import (
    CommandExecutor,
    CommandHandler,
    ContextualCommandHandler,
)
from botrouter.core.handlers.flow_handler import ActiveFlowHandler
from botrouter.core.handlers.manifest import register_plugins
from botrouter.core.permissions import PermissionService
from botrouter.core.ports import CanSendMessage, ContextStore, UserDirectory, WatermarkSnapshotStore
from botrouter.core.processor import MessageProcessor
from botrouter.core.watermark import WatermarkTracker
from botrouter.infra.rate_limiter import CommandUsageTracker


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_processor(
    settings: Settings,
    users: UserDirectory,
    gateway: CanSendMessage,
    watermark_store: WatermarkSnapshotStore,
    context_store: Optional[ContextStore] = None,
    clock: Callable[[], datetime] = _utc_now,
    epoch_clock: Callable[[], float] = time.time,
) -> MessageProcessor:
    """
    Build a ready-to-initialize ``MessageProcessor``.

    ``clock`` drives datetimes (watermark, contexts, time windows);
    ``epoch_clock`` drives cooldowns and usage windows.
    """
    prefix = settings.command_prefix

    classifier = MessageClassifier(prefix=prefix, max_keywords=settings.classifier_max_keywords)
    watermark = WatermarkTracker(
        store=watermark_store,
        capacity=settings.watermark_capacity,
        snapshot_every=settings.watermark_snapshot_every,
        startup_window=timedelta(seconds=settings.startup_window_seconds),
        clock=clock,
    )
    registry = CommandRegistry(case_sensitive=settings.commands_case_sensitive)
    contexts = ContextManager(store=context_store, clock=clock)
    cooldowns = CooldownTracker(clock=epoch_clock)
    usage = CommandUsageTracker(window_seconds=3600, clock=epoch_clock)
    permissions = PermissionService(tz=settings.timezone, clock=clock)

    register_plugins(settings.plugin_list, registry, contexts, users)

    services = CommandServices(
        registry=registry,
        contexts=contexts,
        users=users,
        cooldowns=cooldowns,
        usage=usage,
        sender=gateway,
        bot_name=settings.bot_name,
        prefix=prefix,
        started_at=clock(),
        clock=clock,
    )
    executor = CommandExecutor(registry, permissions, cooldowns, usage, services)

    pipeline = HandlerPipeline(bot_name=settings.bot_name, prefix=prefix)
    pipeline.register(CommandHandler(executor, prefix=prefix))
    pipeline.register(ActiveFlowHandler(contexts, clock=clock))
    pipeline.register(ContextualCommandHandler(executor))
    sweepers = [cooldowns.sweep, usage.sweep]
    if settings.auto_reply_enabled:
        auto_reply = AutoReplyHandler(
            bot_name=settings.bot_name,
            prefix=prefix,
            cooldown_seconds=settings.auto_reply_cooldown_seconds,
            clock=epoch_clock,
        )
        pipeline.register(auto_reply)
        sweepers.append(auto_reply.sweep)

    processor = MessageProcessor(
        classifier=classifier,
        watermark=watermark,
        pipeline=pipeline,
        contexts=contexts,
        users=users,
        gateway=gateway,
        registry=registry,
        sweepers=sweepers,
        clock=clock,
    )
    services.stats_provider = processor.stats
    return processor
