"""Conversion of engine output back into plain Python data."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Sequence

from .ai_types import PlainValue, StructuredContent

__all__ = ["ContentFlattener", "flatten_content", "PARSE_FAILURE"]

LOGGER = logging.getLogger(__name__)

PARSE_FAILURE = "failed to parse content"

# Narrower kinds first; the first successful decode wins.
_PRIMITIVE_ORDER: tuple[type, ...] = (str, int, float, bool)


class ContentFlattener:
    """Turns :class:`StructuredContent` into a primitive or a mapping.

    Flattening is total. Content that is neither a primitive nor a JSON
    object yields :data:`PARSE_FAILURE` instead of raising.
    """

    def __init__(
        self,
        *,
        primitive_order: Sequence[type] = _PRIMITIVE_ORDER,
        failure_value: str = PARSE_FAILURE,
    ) -> None:
        self._primitive_order = tuple(primitive_order)
        self._failure_value = failure_value

    @property
    def failure_value(self) -> str:
        return self._failure_value

    def flatten(self, content: StructuredContent | Any) -> PlainValue:
        if not isinstance(content, StructuredContent):
            content = StructuredContent(content)

        for kind in self._primitive_order:
            decoded = _try_decode(content.decode, kind)
            if decoded is not _MISSING:
                return decoded

        parsed = self._parse_object(content)
        if parsed is not None:
            return parsed

        LOGGER.debug("Unable to flatten engine content %r", content)
        return self._failure_value

    @staticmethod
    def _parse_object(content: StructuredContent) -> dict[str, Any] | None:
        text = content.json_string
        if not text:
            return None
        try:
            payload = json.loads(text)
        except (TypeError, ValueError):
            return None
        if isinstance(payload, dict):
            return payload
        return None


_MISSING = object()


def _try_decode(decode: Callable[[type], Any], kind: type) -> Any:
    try:
        return decode(kind)
    except (TypeError, ValueError):
        return _MISSING


_DEFAULT_FLATTENER = ContentFlattener()


def flatten_content(content: StructuredContent | Any) -> PlainValue:
    """Flatten ``content`` with the default decode order."""

    return _DEFAULT_FLATTENER.flatten(content)
