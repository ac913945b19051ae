# botrouter/core/handlers/fun_commands.py
"""Contextual commands: jokes and the current date/time."""
from __future__ import annotations

import random

from botrouter.core.commands import CommandDescriptor, CommandInvocation, ContextualCommand
from botrouter.core.handlers.manifest import Plugin

JOKES = (
    "😄 Why do birds fly south for the winter? Because it's too far to walk. 🐦",
    "🤓 Why do programmers prefer dark mode? Because light attracts bugs. 🐛",
    "🍕 Why did the pizza see a therapist? It was feeling a bit flat.",
    "💻 Why are computers never lonely? They're always connected to the network.",
    "🎸 Why did the guitar go to the dentist? Too many strings attached. 🦷",
    "⚡ What does a bee do at the gym? Zumba. 🐝",
)

FOLLOW_UPS = (
    "\n\nWant another one? 😊",
    "\n\nHope that made you smile! 😄",
    "\n\nNeed more humour? Just ask. 😃",
)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


async def joke_command(inv: CommandInvocation) -> str:
    return random.choice(JOKES) + random.choice(FOLLOW_UPS)


async def time_command(inv: CommandInvocation) -> str:
    now = inv.services.clock()
    return (
        f"🕐 It's {now:%H:%M} ({now.tzname() or 'UTC'}).\n"
        f"📅 {WEEKDAYS[now.weekday()]}, {now:%d %B %Y}."
    )


JOKE_KIND = ContextualCommand(
    triggers=(
        r"\bchistes?\b",
        r"\bhazme\s+re[ií]r\b",
        r"\balgo\s+(gracioso|divertido)\b",
        r"\bestoy\s+aburrid[oa]\b",
        r"\btell me a joke\b",
    ),
    exclusions=("no estoy aburrido", "ya no estoy aburrid", "ya no necesito", "no quiero"),
)

TIME_KIND = ContextualCommand(
    triggers=(
        r"^(que|qué)\s+hora\s+(es|son)",
        r"^hora\s+(actual|ahora)",
        r"^(que|qué)\s+fecha\s+(es|tenemos)",
        r"^(que|qué)\s+(dia|día)\s+(es|tenemos)",
        r"^fecha\s+(actual|de\s+hoy)",
        r"^what\s+time\s+is\s+it",
    ),
)


plugin = Plugin(
    name="fun",
    commands=[
        (
            CommandDescriptor(
                name="joke",
                aliases=("chiste", "broma", "humor"),
                description="Tell a joke",
                category="fun",
                cooldown_seconds=10,
                kind=JOKE_KIND,
            ),
            joke_command,
        ),
        (
            CommandDescriptor(
                name="time",
                aliases=("hora", "fecha"),
                description="Current date and time",
                category="fun",
                kind=TIME_KIND,
            ),
            time_command,
        ),
    ],
)
