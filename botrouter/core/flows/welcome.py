# botrouter/core/flows/welcome.py
"""
Onboarding flow for new users.

greeting -> name_request -> language_selection -> completion

On completion the chosen name and language are written to the user
directory and the user is credited with ``COMPLETION_POINTS``.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from botrouter.core.domain import ConversationContext
from botrouter.core.flows.flow_types import ChoiceRule, FlowDescriptor, FlowStep, TextRule
from botrouter.core.ports import CanLookupUser
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

WELCOME_FLOW_ID = "welcome"
MAX_DURATION = timedelta(minutes=5)
COMPLETION_POINTS = 10

LANGUAGES = {"es": "Español", "en": "English", "pt": "Português"}


def _render_greeting(data: Dict[str, Any]) -> str:
    name = data.get("display_name") or "there"
    bot = data.get("bot_name") or "the bot"
    return (
        f"Hi {name}! 👋 Welcome to {bot}.\n\n"
        "I'll help you set things up. Reply with anything to start."
    )


def _render_name_request(data: Dict[str, Any]) -> str:
    return "What would you like me to call you?"


def _render_language_selection(data: Dict[str, Any]) -> str:
    name = data.get("preferred_name", "")
    options = "\n".join(f"• {code} - {label}" for code, label in LANGUAGES.items())
    return (
        f"Nice to meet you, {name}! 😊\n\n"
        f"Which language do you prefer?\n{options}"
    )


def _render_completion(data: Dict[str, Any]) -> str:
    name = data.get("preferred_name", "")
    language = LANGUAGES.get(data.get("language", ""), data.get("language", ""))
    return (
        f"All set, {name}! Your language is {language}. 🌐\n\n"
        f"You earned {COMPLETION_POINTS} points. Send /help to see what I can do."
    )


def build_welcome_flow(users: CanLookupUser) -> FlowDescriptor:
    async def on_complete(context: ConversationContext) -> None:
        data = context.step_data
        patch: dict[str, Any] = {
            "display_name": data.get("preferred_name"),
            "language": data.get("language"),
            "points_delta": COMPLETION_POINTS,
        }
        await users.update_user(context.user_id, {k: v for k, v in patch.items() if v is not None})
        logger.info(
            f"Welcome flow completed: user={context.user_id}, language={data.get('language')}",
            extra={"user_id": context.user_id},
        )

    steps = {
        "greeting": FlowStep(
            id="greeting",
            render=_render_greeting,
            validation=TextRule(required=False),
            next_step="name_request",
        ),
        "name_request": FlowStep(
            id="name_request",
            render=_render_name_request,
            validation=TextRule(min_length=2, max_length=50),
            next_step="language_selection",
            store_as="preferred_name",
        ),
        "language_selection": FlowStep(
            id="language_selection",
            render=_render_language_selection,
            validation=ChoiceRule(tuple(LANGUAGES)),
            next_step="completion",
            store_as="language",
        ),
        "completion": FlowStep(
            id="completion",
            render=_render_completion,
        ),
    }

    return FlowDescriptor(
        id=WELCOME_FLOW_ID,
        name="Welcome",
        entry_step="greeting",
        steps=steps,
        max_duration=MAX_DURATION,
        on_complete=on_complete,
    )
