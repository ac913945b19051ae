# botrouter/core/commands.py
"""
Command descriptors, the command registry and per-user cooldowns.

Two kinds of command exist:

- ``PrefixedCommand``: invoked explicitly, e.g. ``/help``.
- ``ContextualCommand``: also invoked explicitly, and additionally fires on
  free text that matches one of its trigger patterns (``"cuéntame un chiste"``)
  unless an exclusion phrase is present.

Descriptors are registered once at startup and are immutable afterwards;
only the registry-side enabled flag and statistics change.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from botrouter.core.domain import Message, User, UserLevel
from botrouter.core.errors import DuplicateCommand, UnknownCommand
from botrouter.infra.logging_config import get_logger

if TYPE_CHECKING:
    from botrouter.core.handlers.base import CommandServices

logger = get_logger(__name__)


# ============================================================================
# COMMAND KIND (tagged variant)
# ============================================================================

@dataclass(frozen=True)
class PrefixedCommand:
    """Runs only when invoked with the command prefix."""


@dataclass(frozen=True)
class ContextualCommand:
    """
    Runs on prefix invocation and on free text matching ``triggers``
    (regular expressions, searched case-insensitively). Any ``exclusions``
    substring present in the text vetoes the match.
    """
    triggers: tuple[str, ...]
    exclusions: tuple[str, ...] = ()
    _compiled: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.triggers:
            raise ValueError("ContextualCommand needs at least one trigger")
        compiled = tuple(re.compile(t, re.IGNORECASE) for t in self.triggers)
        object.__setattr__(self, "_compiled", compiled)

    def matches(self, text: str) -> bool:
        normalized = text.strip().lower()
        if not normalized:
            return False
        if any(phrase in normalized for phrase in self.exclusions):
            return False
        return any(p.search(normalized) for p in self._compiled)


CommandKind = Union[PrefixedCommand, ContextualCommand]


@dataclass(frozen=True)
class CommandDescriptor:
    name: str
    description: str = ""
    aliases: tuple[str, ...] = ()
    minimum_level: UserLevel = UserLevel.BASIC
    cooldown_seconds: float = 0
    category: str = "general"
    usage: str = ""
    kind: CommandKind = field(default_factory=PrefixedCommand)

    @property
    def is_contextual(self) -> bool:
        if isinstance(self.kind, ContextualCommand):
            return True
        if isinstance(self.kind, PrefixedCommand):
            return False
        raise TypeError(f"Unsupported command kind: {self.kind!r}")


@dataclass
class CommandInvocation:
    """Everything a command handler gets to see for a single run."""
    user: User
    message: Message
    args: list[str]
    services: "CommandServices"
    invoked_as: str = ""


CommandFunc = Callable[[CommandInvocation], Awaitable[Optional[str]]]


# ============================================================================
# REGISTRY
# ============================================================================

@dataclass
class CommandStats:
    count: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    last_used: Optional[datetime] = None

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "failures": self.failures,
            "average_duration_ms": round(self.average_duration_ms, 2),
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


@dataclass
class RegisteredCommand:
    descriptor: CommandDescriptor
    handler: CommandFunc
    enabled: bool = True
    stats: CommandStats = field(default_factory=CommandStats)

    @property
    def name(self) -> str:
        return self.descriptor.name


class CommandRegistry:
    """
    Name/alias → command lookup.

    Names and aliases share one namespace: registering a command whose name
    or any alias collides with an existing name or alias raises
    ``DuplicateCommand`` and leaves the registry unchanged.
    """

    def __init__(self, case_sensitive: bool = False):
        self.case_sensitive = case_sensitive
        self._commands: dict[str, RegisteredCommand] = {}
        self._aliases: dict[str, str] = {}

    def _key(self, name: str) -> str:
        name = name.strip()
        return name if self.case_sensitive else name.lower()

    def register(self, descriptor: CommandDescriptor, handler: CommandFunc) -> RegisteredCommand:
        name = self._key(descriptor.name)
        if not name:
            raise ValueError("Command name must not be empty")

        keys = [name] + [self._key(a) for a in descriptor.aliases]
        if len(set(keys)) != len(keys):
            raise DuplicateCommand(f"Command '{descriptor.name}' repeats a name among its aliases")
        for key in keys:
            if key in self._commands or key in self._aliases:
                owner = self._aliases.get(key, key)
                raise DuplicateCommand(
                    f"'{key}' (from command '{descriptor.name}') is already registered by '{owner}'"
                )

        registered = RegisteredCommand(descriptor=descriptor, handler=handler)
        self._commands[name] = registered
        for alias in keys[1:]:
            self._aliases[alias] = name

        logger.debug(f"Registered command: {descriptor.name} aliases={list(descriptor.aliases)}")
        return registered

    def _lookup(self, name_or_alias: str) -> Optional[RegisteredCommand]:
        key = self._key(name_or_alias)
        key = self._aliases.get(key, key)
        return self._commands.get(key)

    def resolve(self, name_or_alias: str) -> Optional[RegisteredCommand]:
        """Enabled command for a name or alias, or None."""
        cmd = self._lookup(name_or_alias)
        if cmd is None or not cmd.enabled:
            return None
        return cmd

    def require(self, name_or_alias: str) -> RegisteredCommand:
        cmd = self.resolve(name_or_alias)
        if cmd is None:
            raise UnknownCommand(name_or_alias)
        return cmd

    def enable(self, name: str) -> None:
        self._set_enabled(name, True)

    def disable(self, name: str) -> None:
        self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> None:
        cmd = self._lookup(name)
        if cmd is None:
            raise UnknownCommand(name)
        cmd.enabled = enabled
        logger.info(f"Command {cmd.name} {'enabled' if enabled else 'disabled'}")

    def record_execution(self, name: str, success: bool, duration_ms: float) -> None:
        """Update running totals. Introspection only, never gates execution."""
        cmd = self._lookup(name)
        if cmd is None:
            return
        stats = cmd.stats
        stats.count += 1
        stats.total_duration_ms += duration_ms
        if not success:
            stats.failures += 1
        stats.last_used = datetime.now(timezone.utc)

    def stats(self) -> dict[str, dict]:
        return {cmd.name: cmd.stats.to_dict() for cmd in self._commands.values()}

    def top_commands(self, limit: int = 5) -> list[tuple[str, int]]:
        ranked = sorted(self._commands.values(), key=lambda c: c.stats.count, reverse=True)
        return [(c.name, c.stats.count) for c in ranked[:limit] if c.stats.count]

    def commands(self) -> list[RegisteredCommand]:
        return list(self._commands.values())

    def match_contextual(self, text: str) -> list[RegisteredCommand]:
        """Enabled contextual commands whose triggers match, in registration order."""
        matched = []
        for cmd in self._commands.values():
            if not cmd.enabled:
                continue
            kind = cmd.descriptor.kind
            if isinstance(kind, ContextualCommand) and kind.matches(text):
                matched.append(cmd)
        return matched

    def available_for(self, level: UserLevel) -> list[RegisteredCommand]:
        return [
            c for c in self._commands.values()
            if c.enabled and level >= c.descriptor.minimum_level
        ]

    def help_text(self, level: UserLevel, prefix: str = "/") -> str:
        by_category: dict[str, list[CommandDescriptor]] = {}
        for cmd in self.available_for(level):
            by_category.setdefault(cmd.descriptor.category, []).append(cmd.descriptor)

        if not by_category:
            return "No commands available."

        lines = ["Available commands:"]
        for category in sorted(by_category):
            lines.append("")
            lines.append(f"{category.capitalize()}:")
            for d in sorted(by_category[category], key=lambda d: d.name):
                line = f"  {prefix}{d.name}"
                if d.aliases:
                    line += f" ({', '.join(prefix + a for a in d.aliases)})"
                if d.description:
                    line += f": {d.description}"
                lines.append(line)
        return "\n".join(lines)

    def __contains__(self, name: str) -> bool:
        return self._lookup(name) is not None

    def __len__(self) -> int:
        return len(self._commands)


# ============================================================================
# COOLDOWNS
# ============================================================================

class CooldownTracker:
    """(user_id, command) → expiry (epoch seconds). Expired entries are dropped on read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._expiry: dict[tuple[str, str], float] = {}

    def remaining(self, user_id: str, command: str) -> float:
        key = (user_id, command)
        expires_at = self._expiry.get(key)
        if expires_at is None:
            return 0.0
        left = expires_at - self._clock()
        if left <= 0:
            del self._expiry[key]
            return 0.0
        return left

    def apply(self, user_id: str, command: str, seconds: float) -> None:
        if seconds <= 0:
            return
        self._expiry[(user_id, command)] = self._clock() + seconds

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, expires_at in self._expiry.items() if expires_at <= now]
        for key in expired:
            del self._expiry[key]
        return len(expired)

    def clear(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._expiry.clear()
            return
        for key in [k for k in self._expiry if k[0] == user_id]:
            del self._expiry[key]

    def __len__(self) -> int:
        return len(self._expiry)
