# botrouter/core/ports.py
from __future__ import annotations
from typing import Any, Optional, Protocol

from botrouter.core.domain import ConversationContext, User


# ============================================================================
# OUTBOUND
# ============================================================================

class CanSendMessage(Protocol):
    async def send(self, conversation_id: str, text: str) -> bool:
        """True on successful delivery to the gateway, False otherwise."""
        ...


# ============================================================================
# USER DIRECTORY
# ============================================================================

class CanLookupUser(Protocol):
    async def get_user_by_conversation(self, conversation_id: str) -> Optional[User]: ...
    async def create_user(self, conversation_id: str, display_name: Optional[str] = None) -> User: ...
    async def update_user(self, user_id: str, patch: dict[str, Any]) -> Optional[User]: ...


class UserDirectory(CanLookupUser, Protocol):
    async def ping(self) -> bool: ...


# ============================================================================
# DURABLE STORES
# ============================================================================

class WatermarkSnapshotStore(Protocol):
    async def load(self) -> Optional[dict]: ...
    async def save(self, snapshot: dict) -> None: ...


class ContextStore(Protocol):
    async def save(self, context: ConversationContext) -> None: ...
    async def load_active(self) -> list[ConversationContext]: ...
