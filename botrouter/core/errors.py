# botrouter/core/errors.py
"""
Typed errors for the message-processing core.

Most of these never reach the transport layer: handlers convert them into
user-facing text or a silent skip. Only ``DirectoryUnavailable`` (startup)
and the registration errors are fatal.
"""
from __future__ import annotations

import math


class RouterError(Exception):
    """Base class for all routing errors."""

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationFailed(RouterError):
    """Flow step input rejected; the context is left unchanged."""


class PermissionDenied(RouterError):
    """User may not run a command (level, time window or quota)."""

    def __init__(self, detail: str, check: str = "level"):
        self.check = check
        super().__init__(detail)


class CooldownActive(RouterError):
    """Command re-invoked before its cooldown elapsed."""

    def __init__(self, command: str, remaining_seconds: float):
        self.command = command
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Please wait {max(1, math.ceil(remaining_seconds))}s before using {command} again."
        )


class UnknownCommand(RouterError):
    """No enabled command is registered under the given name or alias."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown command: {name}")


class DuplicateCommand(RouterError):
    """Command name or alias is already registered."""


class DuplicateMessage(RouterError):
    """Message rejected by the watermark tracker. Never surfaced to users."""

    def __init__(self, message_id: str, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"Message {message_id} skipped: {reason}")


class HandlerFailure(RouterError):
    """A dispatch handler raised; the pipeline moves on to the next one."""

    def __init__(self, handler: str, cause: BaseException):
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler {handler} failed: {cause.__class__.__name__}: {cause}")


class PersistenceFailure(RouterError):
    """A durable write or read failed; in-memory state stays authoritative."""


class DirectoryUnavailable(RouterError):
    """User directory unreachable at startup. Aborts initialization."""


class FlowDefinitionError(RouterError):
    """Flow descriptor is inconsistent (unknown entry or next step)."""
