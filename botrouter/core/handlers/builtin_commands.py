# botrouter/core/handlers/builtin_commands.py
"""Core commands: help, ping, info, name, cancel, stats."""
from __future__ import annotations

import re

from botrouter.core.commands import CommandDescriptor, CommandInvocation
from botrouter.core.domain import UserLevel
from botrouter.core.flows.flow_types import TextRule, sanitize_input
from botrouter.core.handlers.manifest import Plugin
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

NAME_RULE = TextRule(min_length=2, max_length=50)
# Digits, spaces and phone punctuation only: someone pasted their number
_PHONE_LIKE_RE = re.compile(r"\+?[\d\s\-()]+")


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


async def help_command(inv: CommandInvocation) -> str:
    services = inv.services
    if inv.args:
        cmd = services.registry.resolve(inv.args[0].lstrip(services.prefix))
        if cmd is None or inv.user.level < cmd.descriptor.minimum_level:
            return f"No command named '{inv.args[0]}'."
        d = cmd.descriptor
        lines = [f"{services.prefix}{d.name}: {d.description or 'no description'}"]
        if d.usage:
            lines.append(f"Usage: {d.usage}")
        if d.aliases:
            lines.append(f"Aliases: {', '.join(services.prefix + a for a in d.aliases)}")
        if d.cooldown_seconds:
            lines.append(f"Cooldown: {d.cooldown_seconds:g}s")
        return "\n".join(lines)
    return services.registry.help_text(inv.user.level, services.prefix)


async def ping_command(inv: CommandInvocation) -> str:
    services = inv.services
    uptime = (services.clock() - services.started_at).total_seconds()
    return f"🏓 Pong! {services.bot_name} has been up for {_format_uptime(uptime)}."


async def info_command(inv: CommandInvocation) -> str:
    user = inv.user
    services = inv.services
    active = services.contexts.get_active(user.id)
    lines = [
        "👤 Your profile",
        f"Name: {user.display_name or 'not set'}",
        f"Level: {user.level.name.lower()}",
        f"Language: {user.language}",
        f"Points: {user.points}",
        f"Active flow: {active.flow_id if active else 'none'}",
    ]
    return "\n".join(lines)


async def name_command(inv: CommandInvocation) -> str:
    prefix = inv.services.prefix
    name = sanitize_input(" ".join(inv.args))
    if not name:
        return f"Tell me what to call you, for example: {prefix}{inv.invoked_as or 'name'} Juan"

    error = NAME_RULE.check(name)
    if error is None and _PHONE_LIKE_RE.fullmatch(name):
        error = "That looks like a phone number, not a name."
    if error is not None:
        return f"❌ {error}"

    updated = await inv.services.users.update_user(inv.user.id, {"display_name": name})
    if updated is None:
        logger.warning(f"Name change for unknown user {inv.user.id}", extra={"user_id": inv.user.id})
        return "❌ I could not find your profile. Please try again later."
    inv.user.display_name = name
    return f"✅ Nice to meet you, {name}! I'll call you that from now on."


async def cancel_command(inv: CommandInvocation) -> str:
    contexts = inv.services.contexts
    active = contexts.get_active(inv.user.id)
    if active is None:
        return "There is nothing to cancel."
    await contexts.exit(active)
    return f"✅ Cancelled the {active.flow_id} flow."


async def stats_command(inv: CommandInvocation) -> str:
    services = inv.services
    lines = ["📊 Bot statistics"]
    if services.stats_provider is not None:
        stats = services.stats_provider()
        processor = stats.get("processor", {})
        lines.append(f"Messages processed: {processor.get('processed', 0)}")
        lines.append(f"Messages skipped: {processor.get('skipped', 0)}")
        lines.append(f"Active contexts: {stats.get('contexts', {}).get('active', 0)}")
    top = services.registry.top_commands(5)
    if top:
        lines.append("Top commands: " + ", ".join(f"{name} ({count})" for name, count in top))
    return "\n".join(lines)


plugin = Plugin(
    name="core",
    commands=[
        (
            CommandDescriptor(
                name="help",
                aliases=("ayuda", "comandos"),
                description="Show the available commands",
                usage="/help [command]",
                category="general",
            ),
            help_command,
        ),
        (
            CommandDescriptor(
                name="ping",
                description="Check that the bot is alive",
                category="general",
                cooldown_seconds=5,
            ),
            ping_command,
        ),
        (
            CommandDescriptor(
                name="info",
                aliases=("profile", "perfil"),
                description="Show your profile",
                category="general",
            ),
            info_command,
        ),
        (
            CommandDescriptor(
                name="name",
                aliases=("mellamo", "soy", "llamame", "mi-nombre", "nombre"),
                description="Set the name I call you by",
                usage="/name <your name>",
                category="user",
            ),
            name_command,
        ),
        (
            CommandDescriptor(
                name="cancel",
                aliases=("cancelar", "salir"),
                description="Leave the current guided flow",
                category="general",
            ),
            cancel_command,
        ),
        (
            CommandDescriptor(
                name="stats",
                description="Processing statistics",
                minimum_level=UserLevel.ADMIN,
                category="admin",
            ),
            stats_command,
        ),
    ],
)
