"""Tests for flattening engine content back to plain values."""

from __future__ import annotations

import pytest

from toolbridge.ai.ai_types import StructuredContent
from toolbridge.ai.content import PARSE_FAILURE, ContentFlattener, flatten_content


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Sunny", "Sunny"),
        (3, 3),
        (2.5, 2.5),
        (True, True),
        (False, False),
    ],
)
def test_primitives_flatten_to_themselves(value: object, expected: object) -> None:
    result = flatten_content(StructuredContent(value))
    assert result == expected
    assert type(result) is type(expected)


def test_object_content_flattens_to_mapping() -> None:
    content = StructuredContent.from_json('{"city": "Paris", "days": 2}')
    assert flatten_content(content) == {"city": "Paris", "days": 2}


def test_nested_objects_survive() -> None:
    content = StructuredContent({"outer": {"inner": [1, 2]}})
    assert flatten_content(content) == {"outer": {"inner": [1, 2]}}


@pytest.mark.parametrize("value", [[1, 2, 3], None, object()])
def test_unflattenable_content_yields_failure_sentinel(value: object) -> None:
    assert flatten_content(StructuredContent(value)) == PARSE_FAILURE


def test_invalid_json_text_is_kept_as_string() -> None:
    content = StructuredContent.from_json("not json")
    assert flatten_content(content) == "not json"


def test_plain_values_are_wrapped_first() -> None:
    assert flatten_content({"a": 1}) == {"a": 1}
    assert flatten_content("x") == "x"


def test_custom_failure_value() -> None:
    flattener = ContentFlattener(failure_value="<unparsed>")
    assert flattener.failure_value == "<unparsed>"
    assert flattener.flatten(StructuredContent([1])) == "<unparsed>"


class TestStructuredContentDecode:
    """Typed access to wrapped content."""

    def test_int_is_not_bool(self) -> None:
        with pytest.raises(TypeError):
            StructuredContent(True).decode(int)

    def test_float_accepts_int(self) -> None:
        assert StructuredContent(4).decode(float) == 4.0

    def test_string_mismatch_raises(self) -> None:
        with pytest.raises(TypeError):
            StructuredContent(1).decode(str)

    def test_json_string_prefers_raw_text(self) -> None:
        content = StructuredContent.from_json('{"a":1}')
        assert content.json_string == '{"a":1}'
        assert StructuredContent({"a": 1}).json_string == '{"a": 1}'

    def test_equality_compares_values(self) -> None:
        assert StructuredContent("a") == StructuredContent("a")
        assert StructuredContent("a") != StructuredContent("b")
