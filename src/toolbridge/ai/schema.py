"""Dynamic schema compilation for tool parameters and structured output.

Attribute descriptions arrive as loosely shaped JSON-like mappings::

    {
        "city": {"type": "string", "description": "City name"},
        "unit": {"enum": ["celsius", "fahrenheit"]},
        "window": {"type": "object", "properties": {"days": {"type": "integer"}}},
    }

:func:`compile_schema` turns that into an immutable :data:`SchemaNode` tree.
Compilation never raises: malformed entries are skipped, unknown types
degrade to strings and array fields are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from jsonschema import Draft7Validator

__all__ = [
    "PrimitiveKind",
    "PrimitiveNode",
    "EnumNode",
    "ObjectNode",
    "SchemaProperty",
    "SchemaNode",
    "SchemaCompiler",
    "compile_schema",
    "check_schema",
    "validate_against",
]

LOGGER = logging.getLogger(__name__)

ROOT_SCHEMA_NAME = "Root"
_ARRAY_TYPES = frozenset({"array", "list"})


class PrimitiveKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"

    @classmethod
    def from_type(cls, type_name: Any) -> "PrimitiveKind":
        """Map a declared type string onto a kind, defaulting to ``STRING``."""

        if isinstance(type_name, str):
            try:
                return cls(type_name)
            except ValueError:
                pass
        return cls.STRING


@dataclass(slots=True, frozen=True)
class PrimitiveNode:
    kind: PrimitiveKind

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": self.kind.value}


@dataclass(slots=True, frozen=True)
class EnumNode:
    name: str
    allowed_values: tuple[str, ...]
    description: str | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "string", "enum": list(self.allowed_values)}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(slots=True, frozen=True)
class SchemaProperty:
    name: str
    description: str | None
    node: "SchemaNode"


@dataclass(slots=True, frozen=True)
class ObjectNode:
    name: str
    properties: tuple[SchemaProperty, ...] = ()

    @property
    def property_names(self) -> tuple[str, ...]:
        return tuple(prop.name for prop in self.properties)

    def get(self, name: str) -> "SchemaNode | None":
        for prop in self.properties:
            if prop.name == name:
                return prop.node
        return None

    def to_json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for prop in self.properties:
            rendered = prop.node.to_json_schema()
            if prop.description and "description" not in rendered:
                rendered["description"] = prop.description
            properties[prop.name] = rendered
        return {
            "type": "object",
            "title": self.name,
            "properties": properties,
            "required": list(properties),
            "additionalProperties": False,
        }


SchemaNode = Union[PrimitiveNode, EnumNode, ObjectNode]


class SchemaCompiler:
    """Compiles attribute descriptions into :data:`SchemaNode` trees.

    Objects nested deeper than ``max_depth`` degrade to string fields.
    """

    def __init__(self, *, max_depth: int = 32) -> None:
        self._max_depth = max(1, int(max_depth))

    def compile(self, description: Any, name: str = ROOT_SCHEMA_NAME) -> ObjectNode:
        return self._compile_object(description, name, depth=0)

    def _compile_object(self, description: Any, name: str, *, depth: int) -> ObjectNode:
        if not isinstance(description, Mapping):
            LOGGER.debug("Schema %s has no attribute mapping; compiling empty object", name)
            return ObjectNode(name=name)

        properties: list[SchemaProperty] = []
        for key, raw in description.items():
            prop = self._compile_field(key, raw, depth=depth)
            if prop is not None:
                properties.append(prop)
        return ObjectNode(name=name, properties=tuple(properties))

    def _compile_field(self, key: Any, raw: Any, *, depth: int) -> SchemaProperty | None:
        if not isinstance(raw, Mapping):
            LOGGER.debug("Skipping malformed schema field %r", key)
            return None
        name = str(key)
        type_name = raw.get("type")
        description = raw.get("description")
        if not isinstance(description, str):
            description = None

        allowed = _enum_values(raw.get("enum"))
        if allowed is not None:
            node: SchemaNode = EnumNode(name=name, allowed_values=allowed, description=description)
        elif type_name == "object" and isinstance(raw.get("properties"), Mapping):
            if depth + 1 >= self._max_depth:
                LOGGER.warning("Schema field %s exceeds nesting limit %s", name, self._max_depth)
                node = PrimitiveNode(PrimitiveKind.STRING)
            else:
                node = self._compile_object(raw["properties"], name, depth=depth + 1)
        elif isinstance(type_name, str) and type_name in _ARRAY_TYPES:
            LOGGER.debug("Skipping array field %s; arrays are not supported", name)
            return None
        else:
            node = PrimitiveNode(PrimitiveKind.from_type(type_name))
        return SchemaProperty(name=name, description=description, node=node)


def _enum_values(raw: Any) -> tuple[str, ...] | None:
    if not isinstance(raw, (list, tuple)):
        return None
    if not all(isinstance(value, str) for value in raw):
        return None
    return tuple(raw)


_DEFAULT_COMPILER = SchemaCompiler()


def compile_schema(description: Any, name: str = ROOT_SCHEMA_NAME) -> ObjectNode:
    """Compile ``description`` using a shared stateless compiler."""

    return _DEFAULT_COMPILER.compile(description, name)


def check_schema(node: SchemaNode) -> None:
    """Raise ``jsonschema.SchemaError`` when the rendered schema is invalid."""

    Draft7Validator.check_schema(node.to_json_schema())


def validate_against(node: SchemaNode, payload: Any) -> list[str]:
    """Return validation messages for ``payload``; empty when it conforms."""

    validator = Draft7Validator(node.to_json_schema())
    messages: list[str] = []
    for error in sorted(validator.iter_errors(payload), key=lambda err: [str(part) for part in err.path]):
        location = "/".join(str(part) for part in error.path)
        messages.append(f"{location}: {error.message}" if location else error.message)
    return messages
