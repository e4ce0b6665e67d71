"""Standardized error types for the tool bridge.

This module provides a hierarchy of error classes with consistent
dictionary serialization so failures can cross the boundary intact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes surfaced to callers."""

    # Engine/session errors
    UNAVAILABLE = "UNAVAILABLE"
    SESSION_NOT_CONFIGURED = "SESSION_NOT_CONFIGURED"

    # Input errors
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_TOOL_DEFINITION = "INVALID_TOOL_DEFINITION"
    INVALID_RESULT = "INVALID_RESULT"

    # Generation errors
    GENERATION_SCHEMA_ERROR = "GENERATION_SCHEMA_ERROR"
    GENERATION_FAILED = "GENERATION_FAILED"

    # Tool invocation errors
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    MODULE_GONE = "MODULE_GONE"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class BridgeError(Exception):
    """Base exception class for every failure the bridge reports.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    category: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for boundary responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Session Errors
# -----------------------------------------------------------------------------

@dataclass
class NotAvailableError(BridgeError):
    """Raised when the generation engine reports it cannot be used."""

    error_code: str = field(default=ErrorCode.UNAVAILABLE)
    message: str = field(default="The generation engine is not available")
    suggestion: str = field(default="Check engine availability before configuring a session")

    category: ClassVar[str] = "NotAvailable"

    status: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status is not None:
            result["status"] = self.status
        return result


@dataclass
class NotConfiguredError(BridgeError):
    """Raised when generation is requested before ``configure``."""

    error_code: str = field(default=ErrorCode.SESSION_NOT_CONFIGURED)
    message: str = field(default="Call configure first")

    category: ClassVar[str] = "NotConfigured"


# -----------------------------------------------------------------------------
# Input Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidInputError(BridgeError):
    """Raised when a required field is missing or malformed."""

    error_code: str = field(default=ErrorCode.INVALID_INPUT)
    message: str = field(default="Invalid input")

    category: ClassVar[str] = "InvalidInput"

    field_name: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field_name is not None:
            result["field"] = self.field_name
        return result

    @classmethod
    def missing(cls, field_name: str) -> "InvalidInputError":
        return cls(message=f"Missing '{field_name}' field", field_name=field_name)


@dataclass
class InvalidToolDefinitionError(InvalidInputError):
    """Raised when a tool definition lacks its name, description or parameters."""

    error_code: str = field(default=ErrorCode.INVALID_TOOL_DEFINITION)
    message: str = field(default="Invalid tool definition structure")
    suggestion: str = field(
        default="Provide 'name' and 'description' strings and a 'parameters' mapping"
    )


@dataclass
class SchemaError(BridgeError):
    """Raised when a compiled schema is rejected downstream."""

    error_code: str = field(default=ErrorCode.GENERATION_SCHEMA_ERROR)
    message: str = field(default="Failed to create schema")

    category: ClassVar[str] = "SchemaError"


@dataclass
class GenerationFailedError(BridgeError):
    """Raised when the engine fails to produce a response."""

    error_code: str = field(default=ErrorCode.GENERATION_FAILED)
    message: str = field(default="Failed to generate output")

    category: ClassVar[str] = "GenerationFailed"

    engine_reason: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.engine_reason is not None:
            result["engine_reason"] = self.engine_reason
        return result


# -----------------------------------------------------------------------------
# Tool Invocation Errors
# -----------------------------------------------------------------------------

@dataclass
class ToolError(BridgeError):
    """Base class for failures of a boundary-crossing tool call."""

    category: ClassVar[str] = "ToolError"


@dataclass
class ToolExecutionFailedError(ToolError):
    """The other side of the boundary reported that the tool failed."""

    error_code: str = field(default=ErrorCode.TOOL_EXECUTION_FAILED)
    message: str = field(default="unknown")


@dataclass
class ToolTimeoutError(ToolError):
    """No result arrived before the invocation timeout elapsed."""

    error_code: str = field(default=ErrorCode.TOOL_TIMEOUT)
    message: str = field(default="Tool execution timeout")
    suggestion: str = field(default="Increase toolTimeout or make the tool reply sooner")

    timeout_ms: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timeout_ms is not None:
            result["timeout_ms"] = self.timeout_ms
        return result


@dataclass
class ModuleGoneError(ToolError):
    """The owning session was torn down before the call resolved."""

    error_code: str = field(default=ErrorCode.MODULE_GONE)
    message: str = field(default="Module reference lost")
    suggestion: str = field(default="Configure a new session and register the tool again")


# -----------------------------------------------------------------------------
# Deserialization
# -----------------------------------------------------------------------------

_ERROR_CLASSES: dict[str, type[BridgeError]] = {
    ErrorCode.UNAVAILABLE: NotAvailableError,
    ErrorCode.SESSION_NOT_CONFIGURED: NotConfiguredError,
    ErrorCode.INVALID_INPUT: InvalidInputError,
    ErrorCode.INVALID_TOOL_DEFINITION: InvalidToolDefinitionError,
    ErrorCode.GENERATION_SCHEMA_ERROR: SchemaError,
    ErrorCode.GENERATION_FAILED: GenerationFailedError,
    ErrorCode.TOOL_EXECUTION_FAILED: ToolExecutionFailedError,
    ErrorCode.TOOL_TIMEOUT: ToolTimeoutError,
    ErrorCode.MODULE_GONE: ModuleGoneError,
}


def error_from_dict(payload: Mapping[str, Any]) -> BridgeError:
    """Rebuild an error from its ``to_dict`` form.

    Unknown codes produce a plain :class:`BridgeError`.
    """
    code = str(payload.get("error", "") or "")
    message = str(payload.get("message", "") or "")
    details = payload.get("details")
    suggestion = str(payload.get("suggestion", "") or "")
    kwargs: dict[str, Any] = {
        "message": message,
        "details": dict(details) if isinstance(details, Mapping) else {},
        "suggestion": suggestion,
    }

    error_class = _ERROR_CLASSES.get(code)
    if error_class is None:
        return BridgeError(error_code=code or "unknown", **kwargs)
    if error_class is NotAvailableError and "status" in payload:
        kwargs["status"] = payload.get("status")
    elif issubclass(error_class, InvalidInputError) and "field" in payload:
        kwargs["field_name"] = payload.get("field")
    elif error_class is GenerationFailedError and "engine_reason" in payload:
        kwargs["engine_reason"] = payload.get("engine_reason")
    elif error_class is ToolTimeoutError and payload.get("timeout_ms") is not None:
        kwargs["timeout_ms"] = int(payload["timeout_ms"])
    return error_class(**kwargs)
