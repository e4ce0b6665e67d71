"""Shared typing contracts for the generation engine boundary."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, Sequence, Union

if TYPE_CHECKING:
    from .schema import SchemaNode
    from .tools.registry import ToolDefinition

PlainValue = Union[str, int, float, bool, None, dict[str, Any], list[Any]]


class AvailabilityStatus(str, Enum):
    """Coarse readiness states an engine can report."""

    AVAILABLE = "available"
    NOT_ENABLED = "not_enabled"
    MODEL_NOT_READY = "model_not_ready"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True, frozen=True)
class Availability:
    """Result of probing the engine."""

    status: AvailabilityStatus
    reason: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status is AvailabilityStatus.AVAILABLE

    @classmethod
    def available(cls) -> "Availability":
        return cls(AvailabilityStatus.AVAILABLE)

    @classmethod
    def unavailable(cls, reason: str | None = None) -> "Availability":
        return cls(AvailabilityStatus.UNAVAILABLE, reason)


class SamplingMode(str, Enum):
    GREEDY = "greedy"
    RANDOM = "random"


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    """Sampling knobs forwarded to ``respond``."""

    temperature: float | None = None
    max_tokens: int | None = None
    sampling: SamplingMode = SamplingMode.GREEDY


class StructuredContent:
    """Opaque engine output: a primitive or a JSON-like object.

    The wrapped value is never mutated. ``decode`` mirrors a typed accessor:
    it returns the value when it is exactly the requested kind and raises
    ``TypeError`` otherwise.
    """

    __slots__ = ("_value", "_json_string")

    def __init__(self, value: Any, *, json_string: str | None = None) -> None:
        self._value = value
        self._json_string = json_string

    @classmethod
    def from_json(cls, text: str) -> "StructuredContent":
        """Wrap JSON text produced by the engine, keeping the raw text."""

        try:
            value = json.loads(text)
        except (TypeError, ValueError):
            return cls(text, json_string=text)
        return cls(value, json_string=text)

    @property
    def value(self) -> Any:
        return self._value

    @property
    def json_string(self) -> str:
        if self._json_string is not None:
            return self._json_string
        try:
            return json.dumps(self._value, ensure_ascii=False)
        except (TypeError, ValueError):
            return ""

    def decode(self, kind: type) -> Any:
        value = self._value
        if kind is str and isinstance(value, str):
            return value
        if kind is int and isinstance(value, int) and not isinstance(value, bool):
            return value
        if kind is float and isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if kind is bool and isinstance(value, bool):
            return value
        raise TypeError(f"Content is not decodable as {kind.__name__}")

    def __repr__(self) -> str:
        return f"StructuredContent({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructuredContent):
            return NotImplemented
        return self._value == other._value

    __hash__ = None  # type: ignore[assignment]


class GenerationErrorKind(str, Enum):
    """Failure categories an engine may report."""

    EXCEEDED_CONTEXT_WINDOW = "exceeded_context_window_size"
    ASSETS_UNAVAILABLE = "assets_unavailable"
    GUARDRAIL_VIOLATION = "guardrail_violation"
    UNSUPPORTED_GUIDE = "unsupported_guide"
    UNSUPPORTED_LOCALE = "unsupported_language_or_locale"
    DECODING_FAILURE = "decoding_failure"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class EngineGenerationError(Exception):
    """Engine-side failure carrying a reason and a recovery hint."""

    def __init__(
        self,
        kind: GenerationErrorKind,
        description: str,
        *,
        failure_reason: str | None = None,
        recovery_suggestion: str | None = None,
        context: Any | None = None,
    ) -> None:
        self.kind = kind
        self.description = description
        self.failure_reason = failure_reason
        self.recovery_suggestion = recovery_suggestion
        self.context = context
        super().__init__(description)

    def describe(self) -> str:
        """Render the message surfaced to callers."""

        if self.kind is GenerationErrorKind.UNKNOWN:
            return f"Failed to respond: {self.description}"
        return (
            f"Failed to respond: {self.description}.\n"
            f"Failure reason: {self.failure_reason}.\n"
            f"Recovery suggestion: {self.recovery_suggestion}.\n"
            f"Context: {self.context}"
        )


class EngineSession(Protocol):
    """A live conversation with the engine."""

    async def respond(
        self,
        prompt: str,
        *,
        schema: "SchemaNode | None" = None,
        options: GenerationOptions | None = None,
    ) -> StructuredContent:
        ...


class LanguageEngine(Protocol):
    """Narrow contract the coordinator drives."""

    async def availability(self) -> Availability:
        ...

    def start_session(
        self,
        tools: Sequence["ToolDefinition"],
        instructions: str,
    ) -> EngineSession:
        ...
