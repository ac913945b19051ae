# botrouter/infra/pg_context_store_async.py
from __future__ import annotations
import json

from botrouter.core.domain import ConversationContext
from botrouter.infra.db_async import db_conn, retry_on_transient_error
from botrouter.infra.logging_config import get_logger
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)


class AsyncPostgresContextStore:
    """Conversation contexts in the ``conversation_contexts`` table"""

    @retry_on_transient_error()
    async def save(self, context: ConversationContext) -> None:
        try:
            async with db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO conversation_contexts(
                        id, user_id, flow_id, current_step_id, step_data,
                        active, completed_hook_fired, created_at, expires_at
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
                    ON CONFLICT (id)
                    DO UPDATE SET
                      current_step_id = EXCLUDED.current_step_id,
                      step_data = EXCLUDED.step_data,
                      active = EXCLUDED.active,
                      completed_hook_fired = EXCLUDED.completed_hook_fired,
                      updated_at = now()
                    """,
                    context.id, context.user_id, context.flow_id, context.current_step_id,
                    json.dumps(context.step_data, default=str), context.active,
                    context.completed_hook_fired, context.created_at, context.expires_at,
                )
        except Exception:
            logger.error(f"Failed to save context {context.id}", exc_info=True)
            AppMetrics.database_error("context_save")
            raise

    @retry_on_transient_error()
    async def load_active(self) -> list[ConversationContext]:
        try:
            async with db_conn() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, user_id, flow_id, current_step_id, step_data::text AS step_data,
                           active, completed_hook_fired, created_at, expires_at
                    FROM conversation_contexts
                    WHERE active
                    ORDER BY created_at
                    """
                )
        except Exception:
            logger.error("Failed to load active contexts", exc_info=True)
            AppMetrics.database_error("context_load")
            raise

        return [
            ConversationContext(
                id=row["id"],
                user_id=row["user_id"],
                flow_id=row["flow_id"],
                current_step_id=row["current_step_id"],
                step_data=json.loads(row["step_data"] or "{}"),
                active=row["active"],
                completed_hook_fired=row["completed_hook_fired"],
                created_at=row["created_at"],
                expires_at=row["expires_at"],
            )
            for row in rows
        ]
