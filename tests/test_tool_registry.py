"""Tests for the tool registry and tool definitions."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from toolbridge.ai.orchestration.broker import InvocationResult

from toolbridge.ai.schema import ObjectNode, PrimitiveKind, PrimitiveNode
from toolbridge.ai.tools import (
    InvalidToolDefinitionError,
    ModuleGoneError,
    ToolDefinition,
    ToolRegistry,
)


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


class TestRegister:
    """Registration and lookup."""

    def test_register_compiles_parameters(self, registry: ToolRegistry) -> None:
        tool = registry.register("getWeather", "Look up the weather", {"city": {"type": "string"}})

        assert isinstance(tool, ToolDefinition)
        assert isinstance(tool.parameters, ObjectNode)
        assert tool.parameters.name == "getWeather"
        assert tool.parameters.get("city") == PrimitiveNode(PrimitiveKind.STRING)
        assert registry.get("getWeather") is tool
        assert "getWeather" in registry
        assert registry.has("getWeather")

    def test_register_replaces_existing_name(self, registry: ToolRegistry) -> None:
        registry.register("tool", "first", {})
        replacement = registry.register("tool", "second", {"x": {"type": "integer"}})

        assert len(registry) == 1
        assert registry.get("tool") is replacement
        assert registry.get("tool").description == "second"

    def test_list_keeps_registration_order(self, registry: ToolRegistry) -> None:
        for name in ("b", "a", "c"):
            registry.register(name, name, {})
        assert registry.list_names() == ["b", "a", "c"]
        assert [tool.name for tool in registry] == ["b", "a", "c"]

    def test_list_is_a_snapshot(self, registry: ToolRegistry) -> None:
        registry.register("a", "a", {})
        snapshot = registry.list()
        registry.register("b", "b", {})
        assert [tool.name for tool in snapshot] == ["a"]

    def test_whitespace_name_is_kept_verbatim(self, registry: ToolRegistry) -> None:
        tool = registry.register("   ", "blank-looking name", {})

        assert tool.name == "   "
        assert registry.get("   ") is tool

    def test_unregister_and_clear(self, registry: ToolRegistry) -> None:
        registry.register("a", "a", {})
        registry.register("b", "b", {})

        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        registry.clear()
        assert len(registry) == 0


class TestInvalidDefinitions:
    """Malformed definitions are rejected."""

    @pytest.mark.parametrize("name", [None, "", 5])
    def test_bad_name(self, registry: ToolRegistry, name: object) -> None:
        with pytest.raises(InvalidToolDefinitionError) as excinfo:
            registry.register(name, "desc", {})
        assert excinfo.value.field_name == "name"

    def test_bad_description(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidToolDefinitionError) as excinfo:
            registry.register("tool", None, {})
        assert excinfo.value.field_name == "description"

    def test_definition_requires_parameters_mapping(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidToolDefinitionError) as excinfo:
            registry.register_definition({"name": "tool", "description": "d", "parameters": "nope"})
        assert excinfo.value.field_name == "parameters"

    def test_definition_must_be_mapping(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidToolDefinitionError):
            registry.register_definition(["tool"])

    def test_definition_mapping_is_accepted(self, registry: ToolRegistry) -> None:
        tool = registry.register_definition(
            {"name": "tool", "description": "d", "parameters": {"q": {"type": "string"}}}
        )
        assert tool.parameters.property_names == ("q",)


class TestToolDefinition:
    """Rendering and calling a definition."""

    def test_to_openai_tool(self, registry: ToolRegistry) -> None:
        tool = registry.register("getWeather", "Look up the weather", {"city": {"type": "string"}})
        rendered = tool.to_openai_tool()

        assert rendered["type"] == "function"
        assert rendered["function"]["name"] == "getWeather"
        assert rendered["function"]["description"] == "Look up the weather"
        assert rendered["function"]["parameters"]["required"] == ["city"]
        assert rendered["function"]["strict"] is True

    def test_validate(self, registry: ToolRegistry) -> None:
        tool = registry.register("getWeather", "d", {"city": {"type": "string"}})
        assert tool.validate({"city": "Paris"}) == []
        assert tool.validate({}) != []

    @pytest.mark.asyncio
    async def test_call_without_owner_raises_module_gone(self, registry: ToolRegistry) -> None:
        tool = registry.register("getWeather", "d", {"city": {"type": "string"}})
        with pytest.raises(ModuleGoneError):
            await tool.call({"city": "Paris"})


class _OwnerStub:
    """Session handle resolving to a session that records forwarded calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.session = SimpleNamespace(invoke_tool=self._invoke_tool)

    async def _invoke_tool(self, name: str, parameters: dict) -> InvocationResult:
        self.calls.append((name, parameters))
        return InvocationResult.success("done")

    def resolve(self) -> SimpleNamespace:
        return self.session


class TestCallArguments:
    """Arguments are checked against the compiled schema before forwarding."""

    @pytest.mark.asyncio
    async def test_conforming_arguments_forward_quietly(
        self, registry: ToolRegistry, caplog: pytest.LogCaptureFixture
    ) -> None:
        owner = _OwnerStub()
        tool = registry.register("getWeather", "d", {"city": {"type": "string"}}, owner=owner)

        with caplog.at_level(logging.WARNING, logger="toolbridge.ai.tools.registry"):
            result = await tool.call({"city": "Paris"})

        assert result == "done"
        assert owner.calls == [("getWeather", {"city": "Paris"})]
        assert not caplog.records

    @pytest.mark.asyncio
    async def test_mismatched_arguments_are_logged_and_still_forwarded(
        self, registry: ToolRegistry, caplog: pytest.LogCaptureFixture
    ) -> None:
        owner = _OwnerStub()
        tool = registry.register("getWeather", "d", {"city": {"type": "string"}}, owner=owner)

        with caplog.at_level(logging.WARNING, logger="toolbridge.ai.tools.registry"):
            result = await tool.call({"town": 3})

        assert result == "done"
        assert owner.calls == [("getWeather", {"town": 3})]
        messages = [record.getMessage() for record in caplog.records]
        assert any("do not match its schema" in message and "city" in message for message in messages)
