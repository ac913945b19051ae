# botrouter/infra/memory_stores.py
"""
In-process user directory and context store.

Used when ``DATABASE_URL`` is not set (local development) and by tests.
Nothing survives a restart.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from botrouter.core.domain import ConversationContext, User, UserLevel


class InMemoryUserDirectory:
    def __init__(self, default_level: UserLevel = UserLevel.BASIC):
        self.default_level = default_level
        self._by_id: dict[str, User] = {}
        self._by_conversation: dict[str, str] = {}

    async def get_user_by_conversation(self, conversation_id: str) -> Optional[User]:
        user_id = self._by_conversation.get(conversation_id)
        return self._by_id.get(user_id) if user_id else None

    async def create_user(self, conversation_id: str, display_name: Optional[str] = None) -> User:
        existing = await self.get_user_by_conversation(conversation_id)
        if existing is not None:
            return existing
        user = User(
            id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            display_name=display_name,
            level=self.default_level,
            created_at=datetime.now(timezone.utc),
        )
        self.add(user)
        return user

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> Optional[User]:
        user = self._by_id.get(user_id)
        if user is None:
            return None
        for key in ("display_name", "active", "banned", "language"):
            if key in patch:
                setattr(user, key, patch[key])
        if "level" in patch:
            user.level = UserLevel(patch["level"])
        if "points_delta" in patch:
            user.points += int(patch["points_delta"])
        if "metadata" in patch:
            user.metadata.update(patch["metadata"])
        return user

    async def ping(self) -> bool:
        return True

    def add(self, user: User) -> None:
        self._by_id[user.id] = user
        self._by_conversation[user.conversation_id] = user.id

    @property
    def user_count(self) -> int:
        return len(self._by_id)


class InMemoryContextStore:
    def __init__(self):
        self._contexts: dict[str, ConversationContext] = {}

    async def save(self, context: ConversationContext) -> None:
        self._contexts[context.id] = replace(context, step_data=dict(context.step_data))

    async def load_active(self) -> list[ConversationContext]:
        return [replace(c, step_data=dict(c.step_data)) for c in self._contexts.values() if c.active]

    def get(self, context_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(context_id)
