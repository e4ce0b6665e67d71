"""Invocation brokering and session coordination.

Example:
    from toolbridge.ai.orchestration import SessionCoordinator

    coordinator = SessionCoordinator(engine)
    coordinator.event_bus.subscribe(transport.send)
    coordinator.register_tool({
        "name": "getWeather",
        "description": "Look up the weather",
        "parameters": {"city": {"type": "string"}},
    })
    await coordinator.configure()
    text = await coordinator.generate_with_tools({"prompt": "Weather in Paris?"})
"""

from .broker import (
    DEFAULT_TOOL_TIMEOUT_MS,
    InvocationBroker,
    InvocationResult,
    PendingInvocation,
)
from .event_bus import TOOL_INVOCATION_EVENT, ToolEventBus, ToolInvocationEvent
from .session import (
    DEFAULT_INSTRUCTIONS,
    GenerationRequest,
    SessionCoordinator,
    SessionHandle,
)

__all__ = [
    "DEFAULT_TOOL_TIMEOUT_MS",
    "InvocationBroker",
    "InvocationResult",
    "PendingInvocation",
    "TOOL_INVOCATION_EVENT",
    "ToolEventBus",
    "ToolInvocationEvent",
    "DEFAULT_INSTRUCTIONS",
    "GenerationRequest",
    "SessionCoordinator",
    "SessionHandle",
]
