# botrouter/core/flows/__init__.py
"""
Guided multi-step flows.

Each flow module exposes a ``build_*_flow`` factory returning a
``FlowDescriptor``; flows are registered with the ``ContextManager`` by the
plugin manifest.
"""
from botrouter.core.flows.flow_types import (
    ChoiceRule,
    FlowDescriptor,
    FlowStep,
    NumericRule,
    RegexRule,
    TextRule,
    sanitize_input,
)

__all__ = [
    "ChoiceRule",
    "FlowDescriptor",
    "FlowStep",
    "NumericRule",
    "RegexRule",
    "TextRule",
    "sanitize_input",
]
