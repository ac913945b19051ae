# botrouter/core/handlers/command_handlers.py
"""
Command execution and the two handlers that use it.

``CommandExecutor`` is the single path every command runs through:

    permission check -> cooldown check -> execute -> record stats
    -> (on success) apply cooldown and count usage

``CommandHandler`` runs prefixed invocations (``/help``);
``ContextualCommandHandler`` runs contextual commands triggered by free text.
"""
from __future__ import annotations

import time

from botrouter.core.commands import (
    CommandInvocation,
    CommandRegistry,
    CooldownTracker,
    RegisteredCommand,
)
from botrouter.core.domain import Category, HandlerResult, User
from botrouter.core.errors import CooldownActive, PermissionDenied, UnknownCommand
from botrouter.core.handlers.base import CommandServices, HandlerContext, MessageHandler
from botrouter.core.permissions import PermissionService
from botrouter.infra.logging_config import LogContext, get_logger
from botrouter.infra.metrics import AppMetrics
from botrouter.infra.rate_limiter import CommandUsageTracker

logger = get_logger(__name__)

COMMAND_ERROR_REPLY = "❌ Sorry, something went wrong while running that command. Please try again later."


def parse_command(text: str, prefix: str) -> tuple[str, list[str]]:
    """Split ``"/name arg1 arg2"`` into ``("name", ["arg1", "arg2"])``."""
    body = text.strip()[len(prefix):]
    parts = body.split()
    if not parts:
        return "", []
    return parts[0], parts[1:]


class CommandExecutor:
    def __init__(
        self,
        registry: CommandRegistry,
        permissions: PermissionService,
        cooldowns: CooldownTracker,
        usage: CommandUsageTracker,
        services: CommandServices,
    ):
        self.registry = registry
        self.permissions = permissions
        self.cooldowns = cooldowns
        self.usage = usage
        self.services = services

    def authorize(self, user: User, command: RegisteredCommand) -> None:
        """Raise ``PermissionDenied`` or ``CooldownActive`` if the user may not run ``command`` now."""
        descriptor = command.descriptor
        decision = self.permissions.validate(user, descriptor, self.usage.count(user.id))
        if not decision.allowed:
            raise PermissionDenied(decision.reason or "Permission denied", check=decision.check or "level")

        remaining = self.cooldowns.remaining(user.id, descriptor.name)
        if remaining > 0:
            raise CooldownActive(descriptor.name, remaining)

    async def execute(
        self,
        command: RegisteredCommand,
        ctx: HandlerContext,
        args: list[str],
        invoked_as: str = "",
    ) -> HandlerResult:
        name = command.descriptor.name
        log = LogContext(logger, conversation_id=ctx.message.conversation_id, user_id=ctx.user.id)

        try:
            self.authorize(ctx.user, command)
        except PermissionDenied as exc:
            AppMetrics.command_denied(name, exc.check)
            log.info(f"Command {name} denied ({exc.check})")
            return HandlerResult.reply(f"🚫 {exc.detail}")
        except CooldownActive as exc:
            AppMetrics.command_denied(name, "cooldown")
            log.info(f"Command {name} on cooldown for {exc.remaining_seconds:.1f}s")
            return HandlerResult.reply(f"⏳ {exc.detail}")

        invocation = CommandInvocation(
            user=ctx.user,
            message=ctx.message,
            args=args,
            services=self.services,
            invoked_as=invoked_as or name,
        )

        started = time.perf_counter()
        try:
            response = await command.handler(invocation)
        except Exception:
            duration_ms = (time.perf_counter() - started) * 1000
            self.registry.record_execution(name, success=False, duration_ms=duration_ms)
            AppMetrics.command_executed(name, success=False)
            log.error(f"Command {name} failed", exc_info=True)
            return HandlerResult.reply(COMMAND_ERROR_REPLY)

        duration_ms = (time.perf_counter() - started) * 1000
        self.registry.record_execution(name, success=True, duration_ms=duration_ms)
        self.cooldowns.apply(ctx.user.id, name, command.descriptor.cooldown_seconds)
        self.usage.record(ctx.user.id)
        AppMetrics.command_executed(name, success=True)
        log.debug(f"Command {name} executed in {duration_ms:.1f}ms")

        if not response:
            return HandlerResult.silent()
        return HandlerResult.reply(response)


class CommandHandler(MessageHandler):
    """Prefixed commands. Runs before flows so ``/cancel`` works mid-flow."""

    name = "command"
    priority = 10

    def __init__(self, executor: CommandExecutor, prefix: str = "/"):
        super().__init__()
        self.executor = executor
        self.prefix = prefix

    def can_handle(self, ctx: HandlerContext) -> bool:
        return ctx.classification.category == Category.COMMAND

    async def handle(self, ctx: HandlerContext) -> HandlerResult:
        name, args = parse_command(ctx.text, self.prefix)
        command = self.executor.registry.resolve(name) if name else None
        if command is None:
            exc = UnknownCommand(f"{self.prefix}{name}")
            logger.info(exc.detail, extra={"user_id": ctx.user.id})
            return HandlerResult.reply(
                f"❓ {exc.detail}. Send {self.prefix}help to see the available commands."
            )
        return await self.executor.execute(command, ctx, args, invoked_as=name)


class ContextualCommandHandler(MessageHandler):
    """Contextual commands fired by free text (``"cuéntame un chiste"``)."""

    name = "contextual_command"
    priority = 30

    def __init__(self, executor: CommandExecutor):
        super().__init__()
        self.executor = executor

    def can_handle(self, ctx: HandlerContext) -> bool:
        if ctx.classification.category == Category.COMMAND:
            return False
        return bool(self.executor.registry.match_contextual(ctx.text))

    async def handle(self, ctx: HandlerContext) -> HandlerResult:
        matches = self.executor.registry.match_contextual(ctx.text)
        if not matches:
            return HandlerResult.skip()
        return await self.executor.execute(matches[0], ctx, args=[], invoked_as="contextual")
