"""Session coordination between callers, the engine and the tool broker."""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Mapping

from jsonschema.exceptions import SchemaError as JSONSchemaError

from ..ai_types import (
    EngineGenerationError,
    EngineSession,
    GenerationOptions,
    LanguageEngine,
    PlainValue,
    SamplingMode,
    StructuredContent,
)
from ..content import ContentFlattener
from ..schema import ROOT_SCHEMA_NAME, SchemaCompiler, SchemaNode, check_schema
from ..tools.errors import (
    BridgeError,
    ErrorCode,
    GenerationFailedError,
    InvalidInputError,
    NotAvailableError,
    NotConfiguredError,
    SchemaError,
)
from ..tools.registry import ToolDefinition, ToolRegistry
from .broker import DEFAULT_TOOL_TIMEOUT_MS, InvocationBroker, InvocationResult
from .event_bus import ToolEventBus

__all__ = [
    "DEFAULT_INSTRUCTIONS",
    "GenerationRequest",
    "SessionCoordinator",
    "SessionHandle",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are a helpful assistant that returns structured JSON data based on a given schema."
)
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.5


@dataclass(slots=True, frozen=True)
class SessionHandle:
    """Non-owning reference from a tool back to its session.

    Resolves to ``None`` once the session is garbage collected or has been
    reset since the handle was issued.
    """

    ref: "weakref.ReferenceType[SessionCoordinator]"
    epoch: int

    def resolve(self) -> "SessionCoordinator | None":
        session = self.ref()
        if session is None or session.epoch != self.epoch:
            return None
        return session


@dataclass(slots=True, frozen=True)
class GenerationRequest:
    """Normalized generation options supplied by a caller."""

    prompt: str
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    tool_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS
    structure: Mapping[str, Any] | None = None

    @classmethod
    def from_options(
        cls,
        options: Mapping[str, Any] | str | None,
        *,
        require_structure: bool = False,
        defaults: Mapping[str, Any] | None = None,
    ) -> "GenerationRequest":
        """Validate caller options.

        Raises:
            InvalidInputError: If ``prompt`` (or a required ``structure``) is missing.
        """
        if isinstance(options, str):
            options = {"prompt": options}
        if not isinstance(options, Mapping):
            options = {}
        merged: dict[str, Any] = dict(defaults or {})
        merged.update({key: value for key, value in options.items() if value is not None})

        structure = merged.get("structure")
        if require_structure and not isinstance(structure, Mapping):
            raise InvalidInputError.missing("structure")
        prompt = merged.get("prompt")
        if not isinstance(prompt, str):
            raise InvalidInputError.missing("prompt")

        return cls(
            prompt=prompt,
            max_tokens=_coerce_int(merged.get("maxTokens"), DEFAULT_MAX_TOKENS),
            temperature=_coerce_float(merged.get("temperature"), DEFAULT_TEMPERATURE),
            tool_timeout_ms=_coerce_int(merged.get("toolTimeout"), DEFAULT_TOOL_TIMEOUT_MS),
            structure=structure if isinstance(structure, Mapping) else None,
        )


class SessionCoordinator:
    """Drives one generation session and escorts its tool calls.

    Owns the tool registry and the invocation broker. Tools must be
    registered before :meth:`configure`; the engine session sees the
    registry snapshot taken at configure time.
    """

    def __init__(
        self,
        engine: LanguageEngine,
        *,
        event_bus: ToolEventBus | None = None,
        compiler: SchemaCompiler | None = None,
        flattener: ContentFlattener | None = None,
        generation_defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self._engine = engine
        self._event_bus = event_bus or ToolEventBus()
        self._compiler = compiler or SchemaCompiler()
        self._flattener = flattener or ContentFlattener()
        self._generation_defaults = dict(generation_defaults or {})
        self._registry = ToolRegistry(self._compiler)
        self._broker = self._build_broker()
        self._session: EngineSession | None = None
        self._instructions: str | None = None
        self._epoch = 0
        self._generation_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def broker(self) -> InvocationBroker:
        return self._broker

    @property
    def event_bus(self) -> ToolEventBus:
        return self._event_bus

    @property
    def instructions(self) -> str | None:
        return self._instructions

    @property
    def is_configured(self) -> bool:
        return self._session is not None

    def handle(self) -> SessionHandle:
        return SessionHandle(weakref.ref(self), self._epoch)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def availability(self) -> str:
        result = await self._engine.availability()
        return result.status.value

    def register_tool(self, definition: Mapping[str, Any]) -> ToolDefinition:
        """Register ``{name, description, parameters}`` for the next session."""

        tool = self._registry.register_definition(definition, owner=self.handle())
        if self._session is not None:
            LOGGER.info("Tool %s registered after configure; it joins the next session", tool.name)
        return tool

    async def configure(self, config: Mapping[str, Any] | None = None) -> bool:
        """Start an engine session with the registered tools.

        Raises:
            NotAvailableError: If the engine reports it cannot be used.
        """
        availability = await self._engine.availability()
        if not availability.is_available:
            raise NotAvailableError(
                message="The generation engine is not available"
                + (f": {availability.reason}" if availability.reason else ""),
                status=availability.status.value,
            )

        instructions = None
        if isinstance(config, Mapping):
            raw = config.get("instructions")
            if isinstance(raw, str):
                instructions = raw
        self._instructions = instructions
        tools = self._registry.list()
        self._session = self._engine.start_session(tools, instructions or DEFAULT_INSTRUCTIONS)
        LOGGER.info("Configured session with %d tool(s)", len(tools))
        return True

    def reset(self) -> None:
        """Tear down the session; pending calls resolve with ``ModuleGone``."""

        self._broker.cancel_all()
        self._registry.clear()
        self._session = None
        self._instructions = None
        self._epoch += 1
        self._registry = ToolRegistry(self._compiler)
        self._broker = self._build_broker()
        LOGGER.debug("Session reset (epoch=%d)", self._epoch)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate_text(self, options: Mapping[str, Any] | str) -> str:
        session = self._require_session()
        request = GenerationRequest.from_options(options)
        content = await self._respond(session, request.prompt, options=GenerationOptions())
        return self._as_text(self._flattener.flatten(content))

    async def generate_structured(self, options: Mapping[str, Any]) -> PlainValue:
        session = self._require_session()
        request = GenerationRequest.from_options(options, require_structure=True)
        schema = self._compile_structure(request.structure or {})
        content = await self._respond(session, request.prompt, schema=schema, options=GenerationOptions())
        return self._flattener.flatten(content)

    async def generate_with_tools(self, options: Mapping[str, Any] | str) -> str:
        session = self._require_session()
        request = GenerationRequest.from_options(options, defaults=self._generation_defaults)
        self._broker.timeout_ms = request.tool_timeout_ms
        generation_options = GenerationOptions(
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            sampling=SamplingMode.GREEDY,
        )
        content = await self._respond(session, request.prompt, options=generation_options)
        return self._as_text(self._flattener.flatten(content))

    # ------------------------------------------------------------------
    # Tool boundary
    # ------------------------------------------------------------------
    async def invoke_tool(self, name: str, parameters: Mapping[str, Any]) -> InvocationResult:
        return await self._broker.invoke(name, parameters)

    def handle_tool_result(self, payload: Mapping[str, Any]) -> bool:
        """Route a boundary reply ``{id, success, result?, error?}`` to its waiter.

        Raises:
            InvalidInputError: If the reply carries no call id.
        """
        invocation_id = payload.get("id") if isinstance(payload, Mapping) else None
        if not isinstance(invocation_id, str) or not invocation_id:
            raise InvalidInputError(
                error_code=ErrorCode.INVALID_RESULT,
                message="Missing tool call id",
                field_name="id",
            )
        delivered = self._broker.deliver_result(invocation_id, payload)
        if not delivered:
            LOGGER.warning("Ignoring late or duplicate tool result for %s", invocation_id)
        return delivered

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _build_broker(self) -> InvocationBroker:
        timeout = _coerce_int(self._generation_defaults.get("toolTimeout"), DEFAULT_TOOL_TIMEOUT_MS)
        return InvocationBroker(self._event_bus, timeout_ms=timeout)

    def _require_session(self) -> EngineSession:
        if self._session is None:
            raise NotConfiguredError()
        return self._session

    def _compile_structure(self, structure: Mapping[str, Any]) -> SchemaNode:
        schema = self._compiler.compile(structure, ROOT_SCHEMA_NAME)
        try:
            check_schema(schema)
        except JSONSchemaError as exc:
            raise SchemaError(message=f"Failed to create schema: {exc.message}") from exc
        return schema

    async def _respond(
        self,
        session: EngineSession,
        prompt: str,
        *,
        schema: SchemaNode | None = None,
        options: GenerationOptions,
    ) -> StructuredContent:
        async with self._generation_lock:
            try:
                return await session.respond(prompt, schema=schema, options=options)
            except EngineGenerationError as exc:
                LOGGER.warning("Engine failed to respond: %s", exc.kind.value)
                raise GenerationFailedError(message=exc.describe(), engine_reason=exc.kind.value) from exc
            except BridgeError:
                raise
            except Exception as exc:
                LOGGER.exception("Unexpected engine failure")
                raise GenerationFailedError(message=f"Failed to generate output: {exc}") from exc

    @staticmethod
    def _as_text(value: PlainValue) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _coerce_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)
