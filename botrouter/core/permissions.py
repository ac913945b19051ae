# botrouter/core/permissions.py
"""
Command permission checks.

Checks run in a fixed order and the first failure wins:
  1. level       - user level >= command minimum level
  2. time_window - current hour within the tier's [start, end) window
  3. quota       - commands in the last hour below the tier's limit (-1 = unlimited)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional
from zoneinfo import ZoneInfo

from botrouter.core.commands import CommandDescriptor
from botrouter.core.domain import User, UserLevel
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class TierPolicy:
    start_hour: int = 0
    end_hour: int = 24
    hourly_limit: int = UNLIMITED

    def __post_init__(self):
        if not (0 <= self.start_hour < self.end_hour <= 24):
            raise ValueError(f"Invalid hour window [{self.start_hour}, {self.end_hour})")
        if self.hourly_limit < UNLIMITED:
            raise ValueError("hourly_limit must be >= -1")

    def allows_hour(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour


DEFAULT_POLICIES: dict[UserLevel, TierPolicy] = {
    UserLevel.BLOCKED: TierPolicy(0, 24, 0),
    UserLevel.BASIC: TierPolicy(6, 24, 30),
    UserLevel.STANDARD: TierPolicy(7, 23, 75),
    UserLevel.ADVANCED: TierPolicy(0, 24, 150),
    UserLevel.ADMIN: TierPolicy(0, 24, UNLIMITED),
}


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None
    check: Optional[str] = None  # "level" | "time_window" | "quota"


ALLOWED = PermissionDecision(allowed=True)


class PermissionService:
    def __init__(
        self,
        policies: Mapping[UserLevel, TierPolicy] | None = None,
        tz: str = "UTC",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._policies = dict(DEFAULT_POLICIES)
        if policies:
            self._policies.update(policies)
        self._tz = timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
        self._clock = clock

    def policy_for(self, level: UserLevel) -> TierPolicy:
        return self._policies.get(level, DEFAULT_POLICIES[UserLevel.BASIC])

    def validate(
        self,
        user: User,
        descriptor: CommandDescriptor,
        recent_command_count: int,
    ) -> PermissionDecision:
        if user.level < descriptor.minimum_level:
            return PermissionDecision(
                False,
                f"You don't have permission to use this command. "
                f"Required level: {descriptor.minimum_level.name.lower()}, "
                f"yours: {user.level.name.lower()}.",
                "level",
            )

        policy = self.policy_for(user.level)

        hour = self._clock().astimezone(self._tz).hour
        if not policy.allows_hour(hour):
            return PermissionDecision(
                False,
                f"Commands are available between {policy.start_hour:02d}:00 "
                f"and {policy.end_hour:02d}:00 for your account.",
                "time_window",
            )

        if policy.hourly_limit != UNLIMITED and recent_command_count >= policy.hourly_limit:
            return PermissionDecision(
                False,
                f"Hourly command limit reached ({policy.hourly_limit}). Try again later.",
                "quota",
            )

        return ALLOWED
