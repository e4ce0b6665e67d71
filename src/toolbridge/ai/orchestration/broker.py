"""Correlation of boundary-crossing tool calls.

The broker emits a :class:`ToolInvocationEvent` for every call, parks an
``asyncio.Future`` under the call's id, and resolves it exactly once: from
the reply path (:meth:`InvocationBroker.deliver_result`), the timeout path,
or :meth:`InvocationBroker.cancel_all`. Removal from the pending map is the
single gate every path goes through, so whichever path removes the entry
first decides the outcome and the others become no-ops.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..tools.errors import (
    ModuleGoneError,
    ToolError,
    ToolExecutionFailedError,
    ToolTimeoutError,
)
from .event_bus import ToolEventBus, ToolInvocationEvent

__all__ = [
    "DEFAULT_TOOL_TIMEOUT_MS",
    "InvocationBroker",
    "InvocationResult",
    "PendingInvocation",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_MS = 30_000
_NO_RESULT = "No result"
_UNKNOWN_ERROR = "unknown"

Emitter = Callable[[ToolInvocationEvent], Any]


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class InvocationResult:
    """Outcome of a tool call: a text value or a :class:`ToolError`."""

    value: str | None = None
    error: ToolError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: str) -> "InvocationResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ToolError) -> "InvocationResult":
        return cls(error=error)

    def unwrap(self) -> str:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value if self.value is not None else _NO_RESULT


@dataclass(slots=True)
class PendingInvocation:
    """An in-flight call waiting for its reply."""

    id: str
    name: str
    created_at: float
    future: asyncio.Future[InvocationResult] = field(repr=False)
    loop: asyncio.AbstractEventLoop = field(repr=False)

    def resolve(self, outcome: InvocationResult) -> None:
        """Complete the waiter from any thread."""

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._set(outcome)
            return
        if self.loop.is_closed():
            LOGGER.debug("Loop for invocation %s is closed; dropping outcome", self.id)
            return
        self.loop.call_soon_threadsafe(self._set, outcome)

    def _set(self, outcome: InvocationResult) -> None:
        if not self.future.done():
            self.future.set_result(outcome)


# -----------------------------------------------------------------------------
# Broker
# -----------------------------------------------------------------------------


class InvocationBroker:
    """Tracks pending tool calls and resolves each exactly once.

    Example:
        bus = ToolEventBus()
        broker = InvocationBroker(bus)
        bus.subscribe(transport.send)

        # elsewhere, when the reply arrives:
        broker.deliver_result(call_id, {"success": True, "result": "Sunny"})

        outcome = await broker.invoke("getWeather", {"city": "Paris"})
    """

    def __init__(
        self,
        emitter: ToolEventBus | Emitter | None = None,
        *,
        timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._emitter = emitter
        self._timeout_ms = _coerce_timeout(timeout_ms)
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._pending: dict[str, PendingInvocation] = {}
        self._lock = threading.Lock()
        self._emit_tasks: set[asyncio.Task[Any]] = set()

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @timeout_ms.setter
    def timeout_ms(self, value: int) -> None:
        self._timeout_ms = _coerce_timeout(value)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def is_pending(self, invocation_id: str) -> bool:
        with self._lock:
            return invocation_id in self._pending

    async def invoke(
        self,
        name: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        timeout_ms: int | None = None,
    ) -> InvocationResult:
        """Emit a call for ``name`` and wait for its resolution.

        Never raises a :class:`ToolError`; failures come back inside the
        returned :class:`InvocationResult`.
        """
        loop = asyncio.get_running_loop()
        invocation_id = self._id_factory()
        entry = PendingInvocation(
            id=invocation_id,
            name=name,
            created_at=time.monotonic(),
            future=loop.create_future(),
            loop=loop,
        )
        with self._lock:
            self._pending[invocation_id] = entry

        event = ToolInvocationEvent(name=name, id=invocation_id, parameters=dict(parameters or {}))
        loop.call_soon(self._emit, event)
        LOGGER.debug("Invoking tool %s (id=%s)", name, invocation_id)

        effective_timeout = _coerce_timeout(timeout_ms) if timeout_ms is not None else self._timeout_ms
        start_time = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                asyncio.shield(entry.future),
                timeout=effective_timeout / 1000,
            )
        except asyncio.TimeoutError:
            if self._take(invocation_id) is None:
                # The reply path removed the entry first; its outcome wins.
                return await entry.future
            LOGGER.warning(
                "Tool %s timed out after %dms (id=%s)",
                name,
                effective_timeout,
                invocation_id,
            )
            outcome = InvocationResult.failure(
                ToolTimeoutError(details={"tool": name, "id": invocation_id}, timeout_ms=effective_timeout)
            )
            entry.resolve(outcome)
            return outcome
        except asyncio.CancelledError:
            self._take(invocation_id)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if outcome.ok:
            LOGGER.debug("Tool %s completed in %.1fms (id=%s)", name, duration_ms, invocation_id)
        else:
            LOGGER.debug(
                "Tool %s failed after %.1fms (id=%s): %s",
                name,
                duration_ms,
                invocation_id,
                outcome.error,
            )
        return outcome

    def deliver_result(self, invocation_id: str, result: Mapping[str, Any]) -> bool:
        """Resolve ``invocation_id`` from a boundary reply.

        Returns:
            False if the id is unknown, already resolved or timed out.
        """
        entry = self._take(invocation_id)
        if entry is None:
            LOGGER.debug("Dropping result for unknown or settled invocation %s", invocation_id)
            return False
        entry.resolve(_outcome_from_reply(entry, result))
        return True

    def cancel_all(self) -> int:
        """Resolve every pending call with :class:`ModuleGoneError`."""

        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for entry in entries:
            entry.resolve(InvocationResult.failure(ModuleGoneError(details={"tool": entry.name, "id": entry.id})))
        if entries:
            LOGGER.info("Cancelled %d pending tool invocation(s)", len(entries))
        return len(entries)

    def _take(self, invocation_id: str) -> PendingInvocation | None:
        with self._lock:
            return self._pending.pop(invocation_id, None)

    def _emit(self, event: ToolInvocationEvent) -> None:
        emitter = self._emitter
        if emitter is None:
            LOGGER.warning("No emitter configured; tool %s (id=%s) will time out", event.name, event.id)
            return
        try:
            if isinstance(emitter, ToolEventBus):
                emitter.publish(event)
                return
            result = emitter(event)
        except Exception:
            LOGGER.exception("Failed to emit invocation for tool %s (id=%s)", event.name, event.id)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._emit_tasks.add(task)
            task.add_done_callback(self._on_emit_done)

    def _on_emit_done(self, task: asyncio.Future[Any]) -> None:
        self._emit_tasks.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Asynchronous tool emission failed: %s", exc, exc_info=exc)


def _outcome_from_reply(entry: PendingInvocation, result: Mapping[str, Any]) -> InvocationResult:
    if not isinstance(result, Mapping):
        return InvocationResult.failure(ToolExecutionFailedError(message=_UNKNOWN_ERROR, details={"tool": entry.name}))
    if result.get("success") is True:
        value = result.get("result")
        return InvocationResult.success(value if isinstance(value, str) else _NO_RESULT)
    error = result.get("error")
    message = error if isinstance(error, str) and error else _UNKNOWN_ERROR
    return InvocationResult.failure(ToolExecutionFailedError(message=message, details={"tool": entry.name}))


def _coerce_timeout(value: Any) -> int:
    try:
        timeout = int(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid tool timeout %r; using %dms", value, DEFAULT_TOOL_TIMEOUT_MS)
        return DEFAULT_TOOL_TIMEOUT_MS
    if timeout <= 0:
        LOGGER.warning("Non-positive tool timeout %r; using %dms", value, DEFAULT_TOOL_TIMEOUT_MS)
        return DEFAULT_TOOL_TIMEOUT_MS
    return timeout
