# botrouter/core/handlers/manifest.py
"""
Startup-time plugin manifest.

Each known plugin name maps to a module path and a ``Plugin`` attribute.
Only plugins listed in ``ENABLED_PLUGINS`` are imported, in the order
listed, so registration order is deterministic.

Usage at startup::

    from botrouter.core.handlers.manifest import register_plugins
    register_plugins(settings.plugin_list, registry, contexts, users)
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Callable, Sequence

from botrouter.core.commands import CommandDescriptor, CommandFunc, CommandRegistry
from botrouter.core.context_manager import ContextManager
from botrouter.core.errors import RouterError
from botrouter.core.flows.flow_types import FlowDescriptor
from botrouter.core.ports import CanLookupUser
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

FlowFactory = Callable[[CanLookupUser], FlowDescriptor]


@dataclass
class Plugin:
    name: str
    commands: list[tuple[CommandDescriptor, CommandFunc]] = field(default_factory=list)
    flows: list[FlowFactory] = field(default_factory=list)


# Map of known plugin name → lazy import path + attribute name.
_KNOWN_PLUGINS: dict[str, tuple[str, str]] = {
    "core": ("botrouter.core.handlers.builtin_commands", "plugin"),
    "welcome": ("botrouter.core.handlers.welcome_plugin", "plugin"),
    "fun": ("botrouter.core.handlers.fun_commands", "plugin"),
}


def known_plugins() -> list[str]:
    return list(_KNOWN_PLUGINS)


def load_plugin(name: str) -> Plugin:
    entry = _KNOWN_PLUGINS.get(name)
    if entry is None:
        raise KeyError(name)
    module_path, attr = entry
    mod = importlib.import_module(module_path)
    return getattr(mod, attr)


def register_plugins(
    enabled: Sequence[str],
    registry: CommandRegistry,
    contexts: ContextManager,
    users: CanLookupUser,
) -> list[str]:
    """
    Register flows and commands of the ``enabled`` plugins.

    Unknown names and import failures are logged and skipped. Registration
    conflicts (``DuplicateCommand``, ``FlowDefinitionError``) propagate:
    a broken manifest must not start.

    Returns:
        Plugin names that were registered.
    """
    registered: list[str] = []

    for name in enabled:
        if name in registered:
            continue
        if name not in _KNOWN_PLUGINS:
            logger.error(
                "Unknown plugin '%s' in ENABLED_PLUGINS, skipping. Known plugins: %s",
                name, ", ".join(_KNOWN_PLUGINS),
            )
            continue

        try:
            plugin = load_plugin(name)
        except Exception:
            logger.error("Failed to load plugin '%s'", name, exc_info=True)
            continue

        try:
            for factory in plugin.flows:
                contexts.register_flow(factory(users))
            for descriptor, handler in plugin.commands:
                registry.register(descriptor, handler)
        except RouterError as exc:
            logger.critical("Plugin '%s' failed to register: %s", name, exc.detail)
            raise

        registered.append(name)
        logger.info(
            "Registered plugin %s: commands=%s flows=%d",
            name, [d.name for d, _ in plugin.commands], len(plugin.flows),
        )

    if not registered:
        logger.warning("No plugins registered! Check ENABLED_PLUGINS setting.")

    return registered
