"""Generation engine client, schema compilation and tool brokering."""

from .ai_types import Availability, AvailabilityStatus, GenerationOptions, StructuredContent
from .client import AIClient, ChatSession, ClientSettings
from .content import ContentFlattener, flatten_content
from .schema import SchemaCompiler, compile_schema

__all__ = [
    "AIClient",
    "Availability",
    "AvailabilityStatus",
    "ChatSession",
    "ClientSettings",
    "ContentFlattener",
    "GenerationOptions",
    "SchemaCompiler",
    "StructuredContent",
    "compile_schema",
    "flatten_content",
]
