# tests/test_commands.py
"""Tests for the command registry and cooldowns"""
import pytest

from botrouter.core.commands import (
    CommandDescriptor,
    CommandRegistry,
    ContextualCommand,
    CooldownTracker,
    PrefixedCommand,
)
from botrouter.core.domain import UserLevel
from botrouter.core.errors import DuplicateCommand, UnknownCommand

from conftest import EpochClock


async def _noop(inv):
    return "ok"


class TestCommandRegistry:
    def setup_method(self):
        self.registry = CommandRegistry()
        self.registry.register(
            CommandDescriptor(name="help", aliases=("ayuda", "comandos"), description="Show help"),
            _noop,
        )

    def test_resolve_by_name_and_alias(self):
        assert self.registry.resolve("help").name == "help"
        assert self.registry.resolve("ayuda").name == "help"
        assert self.registry.resolve("comandos").name == "help"
        assert self.registry.resolve("nope") is None

    def test_case_insensitive_by_default(self):
        assert self.registry.resolve("HELP").name == "help"
        assert self.registry.resolve("Ayuda").name == "help"

    def test_case_sensitive(self):
        registry = CommandRegistry(case_sensitive=True)
        registry.register(CommandDescriptor(name="Ping"), _noop)
        assert registry.resolve("Ping") is not None
        assert registry.resolve("ping") is None

    def test_duplicate_name_rejected(self):
        with pytest.raises(DuplicateCommand):
            self.registry.register(CommandDescriptor(name="help"), _noop)

    def test_alias_colliding_with_name_rejected(self):
        with pytest.raises(DuplicateCommand):
            self.registry.register(CommandDescriptor(name="other", aliases=("help",)), _noop)

    def test_name_colliding_with_alias_rejected(self):
        with pytest.raises(DuplicateCommand):
            self.registry.register(CommandDescriptor(name="ayuda"), _noop)

    def test_failed_registration_leaves_registry_unchanged(self):
        with pytest.raises(DuplicateCommand):
            self.registry.register(CommandDescriptor(name="fresh", aliases=("ayuda",)), _noop)
        assert "fresh" not in self.registry
        assert len(self.registry) == 1

    def test_self_colliding_aliases_rejected(self):
        with pytest.raises(DuplicateCommand):
            self.registry.register(CommandDescriptor(name="x", aliases=("y", "Y")), _noop)

    def test_disable_and_enable(self):
        self.registry.disable("help")
        assert self.registry.resolve("help") is None
        assert self.registry.resolve("ayuda") is None
        with pytest.raises(UnknownCommand):
            self.registry.require("help")
        self.registry.enable("ayuda")
        assert self.registry.require("help").name == "help"

    def test_disable_unknown_raises(self):
        with pytest.raises(UnknownCommand):
            self.registry.disable("ghost")

    def test_record_execution(self):
        self.registry.record_execution("ayuda", success=True, duration_ms=10.0)
        self.registry.record_execution("help", success=False, duration_ms=30.0)
        stats = self.registry.stats()["help"]
        assert stats["count"] == 2
        assert stats["failures"] == 1
        assert stats["average_duration_ms"] == 20.0
        assert stats["last_used"] is not None

    def test_top_commands(self):
        self.registry.register(CommandDescriptor(name="ping"), _noop)
        for _ in range(3):
            self.registry.record_execution("ping", True, 1.0)
        self.registry.record_execution("help", True, 1.0)
        assert self.registry.top_commands(5) == [("ping", 3), ("help", 1)]

    def test_help_text_filters_by_level(self):
        self.registry.register(
            CommandDescriptor(name="stats", minimum_level=UserLevel.ADMIN, category="admin"),
            _noop,
        )
        basic = self.registry.help_text(UserLevel.BASIC, "/")
        admin = self.registry.help_text(UserLevel.ADMIN, "/")
        assert "/help (/ayuda, /comandos): Show help" in basic
        assert "/stats" not in basic
        assert "/stats" in admin
        assert "Admin:" in admin

    def test_help_text_empty(self):
        assert CommandRegistry().help_text(UserLevel.ADMIN) == "No commands available."


class TestContextualCommand:
    def setup_method(self):
        self.kind = ContextualCommand(
            triggers=(r"\bchistes?\b", r"\bestoy\s+aburrid[oa]\b"),
            exclusions=("no estoy aburrido",),
        )

    def test_trigger_matches(self):
        assert self.kind.matches("cuéntame un chiste")
        assert self.kind.matches("Estoy aburrida")

    def test_exclusion_vetoes(self):
        assert not self.kind.matches("ya no estoy aburrido")

    def test_no_match(self):
        assert not self.kind.matches("hola")
        assert not self.kind.matches("   ")

    def test_requires_trigger(self):
        with pytest.raises(ValueError):
            ContextualCommand(triggers=())

    def test_descriptor_kind(self):
        assert CommandDescriptor(name="a", kind=self.kind).is_contextual
        assert not CommandDescriptor(name="b").is_contextual
        assert isinstance(CommandDescriptor(name="c").kind, PrefixedCommand)

    def test_registry_match_contextual(self):
        registry = CommandRegistry()
        registry.register(CommandDescriptor(name="joke", kind=self.kind), _noop)
        registry.register(CommandDescriptor(name="ping"), _noop)
        assert [c.name for c in registry.match_contextual("un chiste por favor")] == ["joke"]
        registry.disable("joke")
        assert registry.match_contextual("un chiste por favor") == []


class TestCooldownTracker:
    def setup_method(self):
        self.clock = EpochClock()
        self.cooldowns = CooldownTracker(clock=self.clock)

    def test_no_cooldown_by_default(self):
        assert self.cooldowns.remaining("u1", "ping") == 0.0

    def test_apply_and_expire(self):
        self.cooldowns.apply("u1", "ping", 5)
        assert self.cooldowns.remaining("u1", "ping") == 5
        self.clock.advance(3)
        assert self.cooldowns.remaining("u1", "ping") == 2
        self.clock.advance(2)
        assert self.cooldowns.remaining("u1", "ping") == 0.0
        assert len(self.cooldowns) == 0

    def test_scoped_per_user_and_command(self):
        self.cooldowns.apply("u1", "ping", 5)
        assert self.cooldowns.remaining("u2", "ping") == 0.0
        assert self.cooldowns.remaining("u1", "help") == 0.0

    def test_zero_seconds_is_noop(self):
        self.cooldowns.apply("u1", "ping", 0)
        assert len(self.cooldowns) == 0

    def test_clear_user(self):
        self.cooldowns.apply("u1", "ping", 5)
        self.cooldowns.apply("u2", "ping", 5)
        self.cooldowns.clear("u1")
        assert self.cooldowns.remaining("u1", "ping") == 0.0
        assert self.cooldowns.remaining("u2", "ping") == 5

    def test_sweep_drops_expired_entries(self):
        for i in range(1000):
            self.cooldowns.apply(f"u{i}", "ping", 5)
        self.cooldowns.apply("u_late", "joke", 60)
        self.clock.advance(5)
        assert self.cooldowns.sweep() == 1000
        assert len(self.cooldowns) == 1
        assert self.cooldowns.remaining("u_late", "joke") == 55

    def test_sweep_on_empty_tracker(self):
        assert self.cooldowns.sweep() == 0
