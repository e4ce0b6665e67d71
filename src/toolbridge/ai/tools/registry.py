"""Tool registry backing the session's tool set.

Tools registered here execute on the far side of the boundary. Each
definition carries a compiled schema and a non-owning handle back to the
session whose broker escorts its calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Mapping

from ..ai_types import StructuredContent
from ..content import flatten_content
from ..schema import ObjectNode, SchemaCompiler, validate_against
from .errors import InvalidToolDefinitionError, ModuleGoneError

if TYPE_CHECKING:
    from ..orchestration.session import SessionHandle

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Tool Definition
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True, eq=False)
class ToolDefinition:
    """A named tool whose execution happens across the boundary.

    Attributes:
        name: Unique tool name.
        description: Human-readable description shown to the engine.
        schema: Compiled parameter schema.
        owner: Non-owning handle to the session that registered the tool.
    """

    name: str
    description: str
    schema: ObjectNode
    owner: "SessionHandle | None" = field(default=None, repr=False)

    @property
    def parameters(self) -> ObjectNode:
        return self.schema

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema.to_json_schema(),
                "strict": True,
            },
        }

    def validate(self, parameters: Any) -> list[str]:
        """Return schema violations for ``parameters``; empty when valid."""
        return validate_against(self.schema, parameters)

    async def call(self, arguments: StructuredContent | Mapping[str, Any]) -> str:
        """Forward a call from the engine to the owning session's broker.

        Raises:
            ModuleGoneError: If the owning session no longer exists.
            ToolError: If the invocation failed or timed out.
        """
        session = self.owner.resolve() if self.owner is not None else None
        if session is None:
            raise ModuleGoneError(details={"tool": self.name})

        flattened = flatten_content(arguments)
        parameters = dict(flattened) if isinstance(flattened, Mapping) else {}
        violations = self.validate(parameters)
        if violations:
            LOGGER.warning("Arguments for %s do not match its schema: %s", self.name, "; ".join(violations))
        outcome = await session.invoke_tool(self.name, parameters)
        return outcome.unwrap()


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Holds tool definitions keyed by name.

    Registering an existing name replaces the previous definition.

    Example:
        registry = ToolRegistry()
        registry.register(
            "getWeather",
            "Look up the weather",
            {"city": {"type": "string"}},
        )
        tools = registry.list()
    """

    def __init__(self, compiler: SchemaCompiler | None = None) -> None:
        self._compiler = compiler or SchemaCompiler()
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: Any,
        description: Any,
        attributes: Any,
        *,
        owner: "SessionHandle | None" = None,
    ) -> ToolDefinition:
        """Compile ``attributes`` and store a definition under ``name``.

        Raises:
            InvalidToolDefinitionError: If ``name`` or ``description`` is missing.
        """
        if not isinstance(name, str) or not name:
            raise InvalidToolDefinitionError(field_name="name")
        if not isinstance(description, str):
            raise InvalidToolDefinitionError(field_name="description")

        definition = ToolDefinition(
            name=name,
            description=description,
            schema=self._compiler.compile(attributes, name),
            owner=owner,
        )
        if name in self._tools:
            LOGGER.debug("Replacing tool definition: %s", name)
        self._tools[name] = definition
        LOGGER.debug("Registered tool: %s", name)
        return definition

    def register_definition(
        self,
        definition: Any,
        *,
        owner: "SessionHandle | None" = None,
    ) -> ToolDefinition:
        """Register a caller-supplied ``{name, description, parameters}`` mapping.

        Raises:
            InvalidToolDefinitionError: If the mapping is malformed.
        """
        if not isinstance(definition, Mapping):
            raise InvalidToolDefinitionError()
        parameters = definition.get("parameters")
        if not isinstance(parameters, Mapping):
            raise InvalidToolDefinitionError(field_name="parameters")
        return self.register(
            definition.get("name"),
            definition.get("description"),
            parameters,
            owner=owner,
        )

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[ToolDefinition]:
        """Return a snapshot of the registered tools in registration order."""
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        return list(self._tools)

    def clear(self) -> None:
        count = len(self._tools)
        self._tools.clear()
        if count:
            LOGGER.debug("Cleared %d tool definition(s)", count)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self.list())
