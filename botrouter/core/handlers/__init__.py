# botrouter/core/handlers/__init__.py
"""
Dispatch handlers and command plugins.

Handlers (lower priority runs first):
  10 CommandHandler            - prefixed commands
  20 ActiveFlowHandler         - input for an active guided flow
  30 ContextualCommandHandler  - commands triggered by free text
  50 AutoReplyHandler          - greetings, farewells, thanks

Command plugins are listed in ``manifest._KNOWN_PLUGINS`` and enabled via
``ENABLED_PLUGINS``.
"""
from botrouter.core.handlers.auto_reply import AutoReplyHandler
from botrouter.core.handlers.base import CommandServices, HandlerContext, MessageHandler
from botrouter.core.handlers.command_handlers import (
    CommandExecutor,
    CommandHandler,
    ContextualCommandHandler,
)
from botrouter.core.handlers.flow_handler import ActiveFlowHandler

__all__ = [
    "ActiveFlowHandler",
    "AutoReplyHandler",
    "CommandExecutor",
    "CommandHandler",
    "CommandServices",
    "ContextualCommandHandler",
    "HandlerContext",
    "MessageHandler",
]
