"""Tool definitions and the error taxonomy shared across the bridge.

Example:
    from toolbridge.ai.tools import ToolRegistry

    registry = ToolRegistry()
    registry.register("getWeather", "Look up the weather", {"city": {"type": "string"}})
"""

from .errors import (
    BridgeError,
    ErrorCode,
    GenerationFailedError,
    InvalidInputError,
    InvalidToolDefinitionError,
    ModuleGoneError,
    NotAvailableError,
    NotConfiguredError,
    SchemaError,
    ToolError,
    ToolExecutionFailedError,
    ToolTimeoutError,
    error_from_dict,
)
from .registry import ToolDefinition, ToolRegistry

__all__ = [
    "BridgeError",
    "ErrorCode",
    "GenerationFailedError",
    "InvalidInputError",
    "InvalidToolDefinitionError",
    "ModuleGoneError",
    "NotAvailableError",
    "NotConfiguredError",
    "SchemaError",
    "ToolError",
    "ToolExecutionFailedError",
    "ToolTimeoutError",
    "error_from_dict",
    "ToolDefinition",
    "ToolRegistry",
]
