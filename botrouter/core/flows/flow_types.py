# botrouter/core/flows/flow_types.py
"""
Declarative guided-flow definitions.

A flow is a graph of steps. Each step validates the user's input, then
moves to ``next_step``: a fixed step id, a function of the collected
``step_data``, or ``None`` for a terminal step. The text shown to the user
after entering a step comes from that step's ``render``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from botrouter.core.domain import ConversationContext
from botrouter.core.errors import FlowDefinitionError, ValidationFailed

# ---------------------------------------------------------------------------
# Input sanitisation
# ---------------------------------------------------------------------------

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")


def sanitize_input(s: str | None) -> str:
    """Strip control characters and collapse runs of spaces."""
    t = (s or "").strip()
    t = _CONTROL_RE.sub("", t)
    return _MULTI_SPACE_RE.sub(" ", t).strip()


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextRule:
    min_length: int = 0
    max_length: Optional[int] = None
    required: bool = True

    def normalize(self, value: str) -> str:
        return value

    def check(self, value: str) -> Optional[str]:
        if not value:
            return "Please enter a response." if self.required else None
        if self.min_length and len(value) < self.min_length:
            return f"Please enter at least {self.min_length} characters."
        if self.max_length is not None and len(value) > self.max_length:
            return f"Please enter at most {self.max_length} characters."
        return None


@dataclass(frozen=True)
class ChoiceRule:
    options: tuple[str, ...]

    def normalize(self, value: str) -> str:
        return value.lower()

    def check(self, value: str) -> Optional[str]:
        if value.lower() not in self.options:
            return f"Please choose one of these options: {', '.join(self.options)}"
        return None


@dataclass(frozen=True)
class NumericRule:
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    integer: bool = False

    def normalize(self, value: str) -> str:
        return value.replace(",", ".")

    def check(self, value: str) -> Optional[str]:
        raw = self.normalize(value)
        try:
            number = int(raw) if self.integer else float(raw)
        except ValueError:
            return "Please enter a whole number." if self.integer else "Please enter a number."
        if self.minimum is not None and number < self.minimum:
            return f"Please enter a number of at least {self.minimum:g}."
        if self.maximum is not None and number > self.maximum:
            return f"Please enter a number no greater than {self.maximum:g}."
        return None


@dataclass(frozen=True)
class RegexRule:
    pattern: str
    message: str = "Please enter a valid response."

    def normalize(self, value: str) -> str:
        return value

    def check(self, value: str) -> Optional[str]:
        if not re.fullmatch(self.pattern, value):
            return self.message
        return None


ValidationRule = Union[TextRule, ChoiceRule, NumericRule, RegexRule]


# ---------------------------------------------------------------------------
# Steps and flows
# ---------------------------------------------------------------------------

NextStep = Union[str, Callable[[Dict[str, Any]], str], None]
Renderer = Callable[[Dict[str, Any]], str]
CompletionHook = Callable[[ConversationContext], Awaitable[None]]


@dataclass(frozen=True)
class FlowStep:
    id: str
    render: Renderer
    validation: Optional[ValidationRule] = None
    next_step: NextStep = None
    store_as: Optional[str] = None  # Extra step_data key for the accepted input

    @property
    def is_terminal(self) -> bool:
        return self.next_step is None

    def resolve_next(self, step_data: Dict[str, Any]) -> Optional[str]:
        if self.next_step is None or isinstance(self.next_step, str):
            return self.next_step
        return self.next_step(step_data)

    def accept(self, value: str) -> str:
        """Validated, normalized input. Raises ``ValidationFailed`` with the rule's message."""
        if self.validation is None:
            return value
        error = self.validation.check(value)
        if error is not None:
            raise ValidationFailed(error)
        return self.validation.normalize(value)


@dataclass(frozen=True)
class FlowDescriptor:
    id: str
    entry_step: str
    steps: Dict[str, FlowStep]
    max_duration: timedelta
    name: str = ""
    on_complete: Optional[CompletionHook] = field(default=None, compare=False)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.max_duration <= timedelta(0):
            raise FlowDefinitionError(f"Flow '{self.id}': max_duration must be positive")
        if self.entry_step not in self.steps:
            raise FlowDefinitionError(f"Flow '{self.id}': unknown entry step '{self.entry_step}'")
        for key, step in self.steps.items():
            if key != step.id:
                raise FlowDefinitionError(f"Flow '{self.id}': step key '{key}' != step id '{step.id}'")
            if isinstance(step.next_step, str) and step.next_step not in self.steps:
                raise FlowDefinitionError(
                    f"Flow '{self.id}': step '{step.id}' points to unknown step '{step.next_step}'"
                )
        if not any(step.is_terminal for step in self.steps.values()):
            raise FlowDefinitionError(f"Flow '{self.id}': no terminal step")

    def step(self, step_id: str) -> FlowStep:
        try:
            return self.steps[step_id]
        except KeyError:
            raise FlowDefinitionError(f"Flow '{self.id}': unknown step '{step_id}'") from None
