"""Tests for dynamic schema compilation."""

from __future__ import annotations

import pytest
from jsonschema.exceptions import SchemaError as JSONSchemaError

from toolbridge.ai.schema import (
    EnumNode,
    ObjectNode,
    PrimitiveKind,
    PrimitiveNode,
    SchemaCompiler,
    SchemaProperty,
    check_schema,
    compile_schema,
    validate_against,
)


class TestPrimitiveFields:
    """Scalar type mapping."""

    @pytest.mark.parametrize(
        ("type_name", "kind"),
        [
            ("string", PrimitiveKind.STRING),
            ("integer", PrimitiveKind.INTEGER),
            ("number", PrimitiveKind.NUMBER),
            ("boolean", PrimitiveKind.BOOLEAN),
        ],
    )
    def test_declared_types(self, type_name: str, kind: PrimitiveKind) -> None:
        schema = compile_schema({"field": {"type": type_name}})
        assert schema.get("field") == PrimitiveNode(kind)

    def test_unknown_or_missing_type_defaults_to_string(self) -> None:
        schema = compile_schema({"a": {"type": "date"}, "b": {}, "c": {"type": 7}})
        assert schema.property_names == ("a", "b", "c")
        for name in schema.property_names:
            assert schema.get(name) == PrimitiveNode(PrimitiveKind.STRING)

    def test_description_is_kept(self) -> None:
        schema = compile_schema({"city": {"type": "string", "description": "City name"}})
        assert schema.properties[0] == SchemaProperty(
            name="city", description="City name", node=PrimitiveNode(PrimitiveKind.STRING)
        )


class TestEnumAndObjectFields:
    """Enumerations and nesting."""

    def test_string_enum_compiles_to_enum_node(self) -> None:
        schema = compile_schema({"unit": {"enum": ["celsius", "fahrenheit"], "description": "Unit"}})
        node = schema.get("unit")
        assert isinstance(node, EnumNode)
        assert node.allowed_values == ("celsius", "fahrenheit")
        assert node.to_json_schema() == {
            "type": "string",
            "enum": ["celsius", "fahrenheit"],
            "description": "Unit",
        }

    def test_non_string_enum_falls_back_to_declared_type(self) -> None:
        schema = compile_schema({"level": {"type": "integer", "enum": [1, 2, 3]}})
        assert schema.get("level") == PrimitiveNode(PrimitiveKind.INTEGER)

    def test_nested_object_is_named_after_its_key(self) -> None:
        schema = compile_schema(
            {
                "window": {
                    "type": "object",
                    "properties": {"days": {"type": "integer"}, "label": {"type": "string"}},
                }
            }
        )
        nested = schema.get("window")
        assert isinstance(nested, ObjectNode)
        assert nested.name == "window"
        assert nested.property_names == ("days", "label")

    def test_object_without_properties_is_a_string(self) -> None:
        schema = compile_schema({"blob": {"type": "object"}})
        assert schema.get("blob") == PrimitiveNode(PrimitiveKind.STRING)

    def test_depth_limit_degrades_to_string(self) -> None:
        compiler = SchemaCompiler(max_depth=2)
        description = {
            "outer": {
                "type": "object",
                "properties": {
                    "inner": {"type": "object", "properties": {"leaf": {"type": "integer"}}},
                },
            }
        }
        schema = compiler.compile(description)
        outer = schema.get("outer")
        assert isinstance(outer, ObjectNode)
        assert outer.get("inner") == PrimitiveNode(PrimitiveKind.STRING)


class TestMalformedInput:
    """Compilation is total."""

    def test_array_fields_are_dropped(self) -> None:
        schema = compile_schema({"tags": {"type": "array"}, "items": {"type": "list"}, "name": {"type": "string"}})
        assert schema.property_names == ("name",)

    def test_non_mapping_entries_are_skipped(self) -> None:
        schema = compile_schema({"bad": "string", "also_bad": 3, "good": {"type": "boolean"}})
        assert schema.property_names == ("good",)

    @pytest.mark.parametrize("description", [None, "text", 42, ["a", "b"]])
    def test_non_mapping_description_yields_empty_root(self, description: object) -> None:
        schema = compile_schema(description)
        assert schema == ObjectNode(name="Root")

    def test_custom_root_name(self) -> None:
        assert compile_schema({}, "getWeather").name == "getWeather"


class TestJsonSchemaRendering:
    """Rendering to JSON Schema and validation."""

    def test_object_requires_every_property(self) -> None:
        schema = compile_schema({"city": {"type": "string"}, "days": {"type": "integer"}})
        rendered = schema.to_json_schema()
        assert rendered == {
            "type": "object",
            "title": "Root",
            "properties": {"city": {"type": "string"}, "days": {"type": "integer"}},
            "required": ["city", "days"],
            "additionalProperties": False,
        }

    def test_check_schema_accepts_compiled_output(self) -> None:
        check_schema(compile_schema({"unit": {"enum": ["c", "f"]}, "n": {"type": "number"}}))

    def test_check_schema_rejects_broken_node(self) -> None:
        broken = ObjectNode(
            name="Root",
            properties=(SchemaProperty(name="x", description=None, node=_BrokenNode()),),
        )
        with pytest.raises(JSONSchemaError):
            check_schema(broken)

    def test_validate_against_reports_violations(self) -> None:
        schema = compile_schema({"city": {"type": "string"}, "days": {"type": "integer"}})
        assert validate_against(schema, {"city": "Paris", "days": 3}) == []
        errors = validate_against(schema, {"city": 5, "days": 3})
        assert len(errors) == 1
        assert errors[0].startswith("city:")


class _BrokenNode:
    def to_json_schema(self) -> dict:
        return {"type": 12}
