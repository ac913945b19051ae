# botrouter/core/context_manager.py
"""
Per-user state machine for guided flows.

At most one active context exists per user. Contexts expire
``flow.max_duration`` after they are entered; expiry is cooperative: only
``cleanup_expired`` (driven by an external scheduler) reaps them.

The context store is optional and best-effort: a failing store is logged
and the in-memory map stays authoritative.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from botrouter.core.domain import ConversationContext, User
from botrouter.core.errors import FlowDefinitionError, ValidationFailed
from botrouter.core.flows.flow_types import FlowDescriptor, sanitize_input
from botrouter.core.ports import ContextStore
from botrouter.infra.logging_config import get_logger
from botrouter.infra.metrics import AppMetrics

logger = get_logger(__name__)


@dataclass
class StepOutcome:
    response: str
    advanced: bool
    completed: bool = False


class ContextManager:
    def __init__(
        self,
        store: Optional[ContextStore] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._clock = clock
        self._flows: dict[str, FlowDescriptor] = {}
        self._active: dict[str, ConversationContext] = {}  # user_id -> context

    # ------------------------------------------------------------------
    # Flow registration
    # ------------------------------------------------------------------

    def register_flow(self, flow: FlowDescriptor) -> None:
        if flow.id in self._flows:
            raise FlowDefinitionError(f"Flow '{flow.id}' is already registered")
        flow.validate()
        self._flows[flow.id] = flow
        logger.info(f"Registered flow: {flow.id} ({len(flow.steps)} steps)")

    def get_flow(self, flow_id: str) -> FlowDescriptor:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise FlowDefinitionError(f"Unknown flow '{flow_id}'")
        return flow

    @property
    def flow_ids(self) -> list[str]:
        return list(self._flows)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_active(self, user_id: str) -> Optional[ConversationContext]:
        ctx = self._active.get(user_id)
        if ctx is None or not ctx.active:
            return None
        return ctx

    def prompt(self, context: ConversationContext) -> str:
        """Text for the context's current step."""
        flow = self.get_flow(context.flow_id)
        return flow.step(context.current_step_id).render(context.step_data)

    async def enter(
        self,
        user: User,
        flow_id: str,
        initial_data: dict[str, Any] | None = None,
    ) -> ConversationContext:
        flow = self.get_flow(flow_id)

        existing = self.get_active(user.id)
        if existing is not None:
            logger.info(
                f"User {user.id} left flow {existing.flow_id} to enter {flow_id}",
                extra={"user_id": user.id},
            )
            await self.exit(existing)

        now = self._clock()
        context = ConversationContext(
            id=f"{flow_id}_{user.id}_{uuid.uuid4().hex[:12]}",
            user_id=user.id,
            flow_id=flow_id,
            current_step_id=flow.entry_step,
            created_at=now,
            expires_at=now + flow.max_duration,
            step_data=dict(initial_data or {}),
        )
        self._active[user.id] = context
        await self._persist(context)

        logger.info(f"User {user.id} entered flow {flow_id}", extra={"user_id": user.id})
        return context

    async def process(self, context: ConversationContext, text: str) -> StepOutcome:
        """
        Feed ``text`` to the context's current step.

        Invalid input returns the rule's error message and leaves the
        context untouched. Valid input is stored under the step id, the
        transition is resolved and the new step's text is returned.
        """
        flow = self.get_flow(context.flow_id)
        step = flow.step(context.current_step_id)

        if step.is_terminal:
            return StepOutcome(response=step.render(context.step_data), advanced=False, completed=True)

        try:
            value = step.accept(sanitize_input(text))
        except ValidationFailed as exc:
            logger.debug(
                f"Validation failed in {flow.id}.{step.id}: {exc.detail}",
                extra={"user_id": context.user_id},
            )
            return StepOutcome(response=exc.detail, advanced=False)

        new_data = dict(context.step_data)
        new_data[step.id] = value
        if step.store_as:
            new_data[step.store_as] = value

        next_id = step.resolve_next(new_data)
        next_step = flow.step(next_id)  # FlowDefinitionError for a bad dynamic transition

        context.step_data = new_data
        context.current_step_id = next_step.id
        await self._persist(context)

        return StepOutcome(
            response=next_step.render(new_data),
            advanced=True,
            completed=next_step.is_terminal,
        )

    async def exit(self, context: ConversationContext) -> bool:
        """
        Deactivate ``context``. Fires the flow's completion hook exactly once
        if the context reached a terminal step. Returns True if the hook ran.
        """
        context.active = False
        if self._active.get(context.user_id) is context:
            del self._active[context.user_id]

        fired = False
        flow = self._flows.get(context.flow_id)
        if (
            flow is not None
            and flow.on_complete is not None
            and not context.completed_hook_fired
            and context.current_step_id in flow.steps
            and flow.steps[context.current_step_id].is_terminal
        ):
            context.completed_hook_fired = True
            fired = True
            try:
                await flow.on_complete(context)
            except Exception:
                logger.error(
                    f"Completion hook failed for flow {flow.id}",
                    exc_info=True,
                    extra={"user_id": context.user_id},
                )

        await self._persist(context)
        logger.info(
            f"User {context.user_id} exited flow {context.flow_id} at {context.current_step_id}",
            extra={"user_id": context.user_id},
        )
        return fired

    async def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [ctx for ctx in list(self._active.values()) if ctx.active and ctx.is_expired(now)]
        for ctx in expired:
            await self.exit(ctx)
        if expired:
            logger.info(f"Expired {len(expired)} conversation contexts")
        AppMetrics.contexts_expired(len(expired))
        return len(expired)

    async def restore(self) -> int:
        """Reload active contexts from the store (startup)."""
        if self._store is None:
            return 0
        try:
            contexts = await self._store.load_active()
        except Exception:
            logger.error("Failed to restore conversation contexts", exc_info=True)
            return 0

        restored = 0
        for ctx in contexts:
            flow = self._flows.get(ctx.flow_id)
            if flow is None or ctx.current_step_id not in flow.steps:
                logger.warning(f"Dropping context {ctx.id}: unknown flow or step")
                continue
            self._active[ctx.user_id] = ctx
            restored += 1
        logger.info(f"Restored {restored} conversation contexts")
        return restored

    def stats(self) -> dict:
        by_flow: dict[str, int] = {}
        for ctx in self._active.values():
            by_flow[ctx.flow_id] = by_flow.get(ctx.flow_id, 0) + 1
        return {"active": len(self._active), "by_flow": by_flow, "flows": self.flow_ids}

    async def _persist(self, context: ConversationContext) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(context)
        except Exception:
            logger.error(
                f"Failed to persist context {context.id}, continuing in memory",
                exc_info=True,
                extra={"user_id": context.user_id},
            )
