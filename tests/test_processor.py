# tests/test_processor.py
"""End-to-end tests for the message processor"""
import pytest
from datetime import timedelta

from botrouter.config import Settings
from botrouter.core.assembly import build_processor
from botrouter.core.domain import Category, User, UserLevel
from botrouter.core.errors import DirectoryUnavailable
from botrouter.core.processor import GENERIC_ERROR_REPLY
from botrouter.infra.memory_stores import InMemoryContextStore, InMemoryUserDirectory

from conftest import NOON, EpochClock, FixedClock, MockGateway, MockWatermarkStore, make_message


class MockUserDirectory(InMemoryUserDirectory):
    """In-memory directory with switchable failures"""

    def __init__(self, healthy=True, ping_raises=False):
        super().__init__()
        self.healthy = healthy
        self.ping_raises = ping_raises
        self.lookup_fails = False

    async def ping(self) -> bool:
        if self.ping_raises:
            raise ConnectionError("connection refused")
        return self.healthy

    async def get_user_by_conversation(self, conversation_id):
        if self.lookup_fails:
            raise ConnectionError("directory timeout")
        return await super().get_user_by_conversation(conversation_id)


def _settings(**overrides) -> Settings:
    values = dict(
        bot_name="Botrouter",
        watermark_snapshot_every=2,
        auto_reply_cooldown_seconds=30,
        enabled_plugins="core,welcome,fun",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestMessageProcessor:
    def setup_method(self):
        self.clock = FixedClock()
        self.epoch = EpochClock()
        self.users = MockUserDirectory()
        self.gateway = MockGateway()
        self.store = MockWatermarkStore()
        self.contexts_store = InMemoryContextStore()
        self.processor = build_processor(
            _settings(),
            users=self.users,
            gateway=self.gateway,
            watermark_store=self.store,
            context_store=self.contexts_store,
            clock=self.clock,
            epoch_clock=self.epoch,
        )
        self.seq = 0

    def _msg(self, text, message_id=None, conversation_id="chat_1", **kwargs):
        self.seq += 1
        return make_message(
            message_id=message_id or f"msg{self.seq}",
            text=text,
            conversation_id=conversation_id,
            timestamp=kwargs.pop("timestamp", NOON + timedelta(seconds=self.seq)),
            **kwargs,
        )

    async def _send(self, text, **kwargs):
        return await self.processor.process_message(self._msg(text, **kwargs))

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_initialize_fails_when_directory_down(self):
        self.users.healthy = False
        with pytest.raises(DirectoryUnavailable):
            await self.processor.initialize()

    @pytest.mark.asyncio
    async def test_initialize_fails_when_ping_raises(self):
        self.users.ping_raises = True
        with pytest.raises(DirectoryUnavailable):
            await self.processor.initialize()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_redelivered_message_not_processed_twice(self):
        await self.processor.initialize()
        msg = self._msg("hola", message_id="msg1")

        first = await self.processor.process_message(msg)
        second = await self.processor.process_message(msg)

        assert first.should_reply is True
        assert first.sent is True
        assert second.should_reply is False
        assert second.reason == "duplicate"
        assert len(self.gateway.sent) == 1

    @pytest.mark.asyncio
    async def test_out_of_order_message_skipped(self):
        await self.processor.initialize()
        await self._send("hola", timestamp=NOON + timedelta(seconds=10))
        late = await self._send("asdf", conversation_id="chat_2", timestamp=NOON + timedelta(seconds=5))
        assert late.reason == "superseded_global"
        assert len(self.gateway.sent) == 1

    @pytest.mark.asyncio
    async def test_history_before_startup_window_skipped(self):
        await self.processor.initialize()
        result = await self._send("hola", timestamp=NOON - timedelta(hours=2))
        assert result.reason == "before_startup_window"
        assert self.gateway.sent == []

    @pytest.mark.asyncio
    async def test_own_messages_ignored(self):
        await self.processor.initialize()
        result = await self._send("hola", from_self=True)
        assert result.reason == "from_self"
        assert self.gateway.sent == []

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_unknown_user_is_created(self):
        await self.processor.initialize()
        await self._send("hola")
        assert await self.users.get_user_by_conversation("chat_1") is not None

    @pytest.mark.asyncio
    async def test_banned_user_gets_no_reply(self):
        await self.processor.initialize()
        self.users.add(User(id="u_banned", conversation_id="chat_1", banned=True))

        msg = self._msg("/help")
        result = await self.processor.process_message(msg)

        assert result.should_reply is False
        assert result.reason == "banned"
        assert self.gateway.sent == []
        # Still marked processed
        assert (await self.processor.process_message(msg)).reason == "duplicate"

    @pytest.mark.asyncio
    async def test_directory_failure_mid_message_sends_generic_reply(self):
        await self.processor.initialize()
        self.users.lookup_fails = True

        msg = self._msg("hola")
        result = await self.processor.process_message(msg)

        assert result.reason == "error"
        assert result.response == GENERIC_ERROR_REPLY
        assert self.gateway.sent == [("chat_1", GENERIC_ERROR_REPLY)]
        self.users.lookup_fails = False
        assert (await self.processor.process_message(msg)).reason == "duplicate"

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_greeting_auto_reply(self):
        await self.processor.initialize()
        result = await self._send("hola")
        assert result.category == Category.GREETING
        assert result.handler == "auto_reply"
        assert "Botrouter" in result.response

    @pytest.mark.asyncio
    async def test_unknown_text_gets_fallback(self):
        await self.processor.initialize()
        result = await self._send("asdfgh")
        assert result.handler == "fallback"
        assert "I don't understand" in result.response

    @pytest.mark.asyncio
    async def test_help_command(self):
        await self.processor.initialize()
        result = await self._send("/ayuda")
        assert result.handler == "command"
        assert "/ping" in result.response
        assert "/stats" not in result.response

    @pytest.mark.asyncio
    async def test_unknown_command(self):
        await self.processor.initialize()
        result = await self._send("/frobnicate")
        assert "Unknown command: /frobnicate" in result.response

    @pytest.mark.asyncio
    async def test_command_cooldown(self):
        await self.processor.initialize()
        first = await self._send("/ping")
        second = await self._send("/ping")
        assert first.response.startswith("🏓")
        assert second.response.startswith("⏳")

        self.epoch.advance(5)
        third = await self._send("/ping")
        assert third.response.startswith("🏓")

    @pytest.mark.asyncio
    async def test_contextual_command(self):
        await self.processor.initialize()
        result = await self._send("cuéntame un chiste")
        assert result.handler == "contextual_command"
        assert result.should_reply

    @pytest.mark.asyncio
    async def test_admin_stats(self):
        await self.processor.initialize()
        self.users.add(User(id="admin", conversation_id="chat_admin", level=UserLevel.ADMIN))
        await self._send("asdfgh")

        denied = await self._send("/stats")
        assert denied.response.startswith("🚫")

        result = await self._send("/stats", conversation_id="chat_admin")
        assert "Bot statistics" in result.response
        assert "Messages processed" in result.response

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_welcome_flow_end_to_end(self):
        await self.processor.initialize()

        start = await self._send("/start")
        assert "Welcome to Botrouter" in start.response

        # A greeting while in the flow goes to the flow, not the auto reply
        step = await self._send("hola")
        assert step.handler == "active_flow"
        assert step.response == "What would you like me to call you?"

        step = await self._send("Juan")
        assert "Juan" in step.response

        step = await self._send("xx")
        assert step.response == "Please choose one of these options: es, en, pt"

        done = await self._send("es")
        assert "All set, Juan" in done.response

        user = await self.users.get_user_by_conversation("chat_1")
        assert user.display_name == "Juan"
        assert user.language == "es"
        assert user.points == 10
        assert self.processor.contexts.get_active(user.id) is None

    @pytest.mark.asyncio
    async def test_cancel_mid_flow(self):
        await self.processor.initialize()
        await self._send("/start")
        result = await self._send("/cancel")
        assert "Cancelled the welcome flow" in result.response

        user = await self.users.get_user_by_conversation("chat_1")
        assert user.points == 0
        assert self.processor.contexts.get_active(user.id) is None

    @pytest.mark.asyncio
    async def test_cleanup_expired_contexts(self):
        await self.processor.initialize()
        await self._send("/start")
        self.clock.advance(minutes=6)
        assert await self.processor.cleanup_expired() == 1

    @pytest.mark.asyncio
    async def test_contexts_restored_after_restart(self):
        await self.processor.initialize()
        await self._send("/start")

        restarted = build_processor(
            _settings(),
            users=self.users,
            gateway=self.gateway,
            watermark_store=self.store,
            context_store=self.contexts_store,
            clock=self.clock,
            epoch_clock=self.epoch,
        )
        await restarted.initialize()
        assert restarted.stats()["contexts"]["active"] == 1

    # ------------------------------------------------------------------
    # Delivery and persistence
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_gateway_failure_reported(self):
        self.gateway.ok = False
        await self.processor.initialize()
        result = await self._send("hola")
        assert result.should_reply is True
        assert result.sent is False
        assert self.processor.stats()["processor"]["send_failed"] == 1

    @pytest.mark.asyncio
    async def test_snapshot_written_every_n_messages(self):
        await self.processor.initialize()
        for text in ("hola", "asdf", "qwer"):
            await self._send(text)
        assert len(self.store.saves) == 1

        await self.processor.shutdown()
        assert len(self.store.saves) == 2
        assert len(self.store.saves[-1]["processedMessageIds"]) == 3

    @pytest.mark.asyncio
    async def test_stats(self):
        await self.processor.initialize()
        await self._send("/ping")
        stats = self.processor.stats()
        assert stats["processor"]["received"] == 1
        assert stats["processor"]["initialized"] is True
        assert stats["commands"]["ping"]["count"] == 1
        assert "command" in stats["handlers"]

    @pytest.mark.asyncio
    async def test_auto_reply_disabled(self):
        processor = build_processor(
            _settings(auto_reply_enabled=False),
            users=self.users,
            gateway=self.gateway,
            watermark_store=self.store,
            clock=self.clock,
            epoch_clock=self.epoch,
        )
        await processor.initialize()
        result = await processor.process_message(self._msg("hola"))
        assert result.handler == "fallback"

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def _per_user_state(self):
        owners = {type(sweep.__self__).__name__: sweep.__self__ for sweep in self.processor.sweepers}
        return {
            "auto_reply": owners["AutoReplyHandler"].tracked_users,
            "cooldowns": len(owners["CooldownTracker"]),
            "usage": owners["CommandUsageTracker"].tracked_users,
        }

    @pytest.mark.asyncio
    async def test_cleanup_prunes_idle_per_user_state(self):
        await self.processor.initialize()
        for i in range(300):
            await self._send("hola", conversation_id=f"chat_{i}")
            await self._send("/ping", conversation_id=f"chat_{i}")
        assert self._per_user_state() == {"auto_reply": 300, "cooldowns": 300, "usage": 300}

        self.epoch.advance(86400)
        await self.processor.cleanup_expired()
        assert self._per_user_state() == {"auto_reply": 0, "cooldowns": 0, "usage": 0}

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_per_user_state(self):
        await self.processor.initialize()
        await self._send("hola")
        await self._send("/ping")
        self.epoch.advance(1)
        await self.processor.cleanup_expired()
        assert self._per_user_state() == {"auto_reply": 1, "cooldowns": 1, "usage": 1}

    @pytest.mark.asyncio
    async def test_failing_sweeper_does_not_stop_cleanup(self):
        await self.processor.initialize()
        await self._send("/start")
        await self._send("/ping")

        def broken_sweep():
            raise RuntimeError("sweep failed")

        self.processor.sweepers = (broken_sweep,) + self.processor.sweepers
        self.clock.advance(minutes=6)
        self.epoch.advance(3600)
        assert await self.processor.cleanup_expired() == 1
        assert len(self.processor.sweepers[1].__self__) == 0

    @pytest.mark.asyncio
    async def test_naive_timestamp_is_processed_as_utc(self):
        await self.processor.initialize()
        await self._send("hola")
        naive = (NOON + timedelta(seconds=30)).replace(tzinfo=None)
        result = await self._send("asdfgh", timestamp=naive)
        assert result.handler == "fallback"

        stale = (NOON - timedelta(seconds=30)).replace(tzinfo=None)
        assert (await self._send("asdfgh", timestamp=stale)).reason == "superseded_global"

    @pytest.mark.asyncio
    async def test_name_command_personalises_greeting(self):
        await self.processor.initialize()
        result = await self._send("/mellamo Ana")
        assert result.handler == "command"
        assert "Ana" in result.response

        greeting = await self._send("hola")
        assert "Hello Ana!" in greeting.response
        assert (await self.users.get_user_by_conversation("chat_1")).display_name == "Ana"
