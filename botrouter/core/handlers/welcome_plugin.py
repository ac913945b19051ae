# botrouter/core/handlers/welcome_plugin.py
from __future__ import annotations

from botrouter.core.commands import CommandDescriptor, CommandInvocation
from botrouter.core.flows.welcome import WELCOME_FLOW_ID, build_welcome_flow
from botrouter.core.handlers.manifest import Plugin


async def start_command(inv: CommandInvocation) -> str:
    """Enter the onboarding flow and show its first step."""
    contexts = inv.services.contexts
    context = await contexts.enter(
        inv.user,
        WELCOME_FLOW_ID,
        {"display_name": inv.user.display_name, "bot_name": inv.services.bot_name},
    )
    return contexts.prompt(context)


plugin = Plugin(
    name="welcome",
    flows=[build_welcome_flow],
    commands=[
        (
            CommandDescriptor(
                name="start",
                aliases=("welcome", "bienvenida"),
                description="Start the welcome setup",
                category="general",
                cooldown_seconds=10,
            ),
            start_command,
        ),
    ],
)
