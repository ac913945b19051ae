# botrouter/infra/pg_user_directory_async.py
from __future__ import annotations
import json
import uuid
from typing import Any, Optional

import asyncpg

from botrouter.core.domain import User, UserLevel
from botrouter.infra.db_async import db_conn, retry_on_transient_error
from botrouter.infra.logging_config import get_logger, mask_id
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)

_USER_COLUMNS = (
    "id, conversation_id, display_name, level, active, banned, language, points, "
    "metadata::text AS metadata, created_at"
)

# Columns that may be set through update_user(); "points_delta" is handled separately
_UPDATABLE = ("display_name", "level", "active", "banned", "language")


def _row_to_user(row: asyncpg.Record) -> User:
    return User(
        id=row["id"],
        conversation_id=row["conversation_id"],
        display_name=row["display_name"],
        level=UserLevel(row["level"]),
        active=row["active"],
        banned=row["banned"],
        language=row["language"],
        points=row["points"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )


class AsyncPostgresUserDirectory:
    """User directory backed by the ``users`` table"""

    @retry_on_transient_error()
    async def get_user_by_conversation(self, conversation_id: str) -> Optional[User]:
        try:
            async with db_conn() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE conversation_id=$1",
                    conversation_id,
                )
        except Exception:
            logger.error(f"Failed to get user: conversation={mask_id(conversation_id)}", exc_info=True)
            AppMetrics.database_error("user_get")
            raise
        return _row_to_user(row) if row else None

    @retry_on_transient_error()
    async def create_user(self, conversation_id: str, display_name: Optional[str] = None) -> User:
        try:
            async with db_conn() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users(id, conversation_id, display_name)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (conversation_id)
                    DO UPDATE SET updated_at = now()
                    RETURNING {_USER_COLUMNS}
                    """,
                    uuid.uuid4().hex, conversation_id, display_name,
                )
        except Exception:
            logger.error(f"Failed to create user: conversation={mask_id(conversation_id)}", exc_info=True)
            AppMetrics.database_error("user_create")
            raise
        return _row_to_user(row)

    @retry_on_transient_error()
    async def update_user(self, user_id: str, patch: dict[str, Any]) -> Optional[User]:
        sets: list[str] = []
        args: list[Any] = [user_id]
        for key in _UPDATABLE:
            if key in patch:
                value = patch[key]
                if key == "level":
                    value = int(value)
                args.append(value)
                sets.append(f"{key} = ${len(args)}")
        if "points_delta" in patch:
            args.append(int(patch["points_delta"]))
            sets.append(f"points = points + ${len(args)}")
        if "metadata" in patch:
            args.append(json.dumps(patch["metadata"]))
            sets.append(f"metadata = metadata || ${len(args)}::jsonb")
        if not sets:
            return None

        try:
            async with db_conn() as conn:
                row = await conn.fetchrow(
                    f"UPDATE users SET {', '.join(sets)}, updated_at = now() "
                    f"WHERE id = $1 RETURNING {_USER_COLUMNS}",
                    *args,
                )
        except Exception:
            logger.error(f"Failed to update user {user_id}", exc_info=True)
            AppMetrics.database_error("user_update")
            raise
        return _row_to_user(row) if row else None

    async def ping(self) -> bool:
        try:
            async with db_conn() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception:
            logger.error("User directory ping failed", exc_info=True)
            return False
