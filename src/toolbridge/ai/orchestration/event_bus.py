"""Outbound channel carrying tool invocation requests across the boundary."""

from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

__all__ = ["TOOL_INVOCATION_EVENT", "ToolEventBus", "ToolInvocationEvent"]

LOGGER = logging.getLogger(__name__)

TOOL_INVOCATION_EVENT = "ToolInvocation"


@dataclass(slots=True, frozen=True)
class ToolInvocationEvent:
    """Request for the far side to run ``name`` and reply under ``id``."""

    name: str
    id: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    event_name = TOOL_INVOCATION_EVENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "parameters": dict(self.parameters),
        }


Subscriber = Callable[[ToolInvocationEvent], None]


def _identity(handler: Subscriber) -> tuple[int, int]:
    """Key a handler by its function and bound instance.

    Bound methods are recreated on every attribute access, so identity is
    taken from ``__func__``/``__self__`` rather than the method object.
    """
    func = getattr(handler, "__func__", handler)
    owner = getattr(handler, "__self__", None)
    return id(func), id(owner)


@dataclass(slots=True)
class _Subscription:
    key: tuple[int, int]
    handler: Subscriber | None = None
    ref: Callable[[], Subscriber | None] | None = None

    @classmethod
    def create(cls, handler: Subscriber, *, weak: bool) -> "_Subscription":
        key = _identity(handler)
        if not weak:
            return cls(key, handler=handler)
        try:
            if hasattr(handler, "__self__"):
                return cls(key, ref=weakref.WeakMethod(handler))  # type: ignore[arg-type]
            return cls(key, ref=weakref.ref(handler))
        except TypeError:
            LOGGER.debug("Handler %r cannot be weakly referenced; holding it strongly", handler)
            return cls(key, handler=handler)

    def target(self) -> Subscriber | None:
        if self.ref is not None:
            return self.ref()
        return self.handler


class ToolEventBus:
    """Synchronous fan-out of :class:`ToolInvocationEvent` to subscribers.

    The boundary transport subscribes once and forwards each event to the
    side that executes tools. A subscriber that raises is logged and does
    not prevent delivery to the others. Weak subscriptions disappear once
    their target is collected.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._lock = threading.RLock()

    @staticmethod
    def supported_events() -> list[str]:
        return [TOOL_INVOCATION_EVENT]

    @property
    def has_subscribers(self) -> bool:
        return bool(self._live_targets())

    def subscribe(self, handler: Subscriber, *, weak: bool = False) -> None:
        subscription = _Subscription.create(handler, weak=weak)
        with self._lock:
            self._subscriptions.append(subscription)

    def unsubscribe(self, handler: Subscriber) -> None:
        key = _identity(handler)
        with self._lock:
            self._subscriptions = [sub for sub in self._subscriptions if sub.key != key]

    def publish(self, event: ToolInvocationEvent) -> int:
        """Deliver ``event`` and return how many subscribers handled it."""

        targets = self._live_targets()
        if not targets:
            LOGGER.warning("Nobody is listening for %s %s (id=%s)", event.event_name, event.name, event.id)
            return 0
        delivered = 0
        for target in targets:
            try:
                target(event)
            except Exception:
                LOGGER.exception("Subscriber failed to handle %s (id=%s)", event.name, event.id)
                continue
            delivered += 1
        return delivered

    def _live_targets(self) -> list[Subscriber]:
        with self._lock:
            live: list[_Subscription] = []
            targets: list[Subscriber] = []
            for subscription in self._subscriptions:
                target = subscription.target()
                if target is None:
                    continue
                live.append(subscription)
                targets.append(target)
            self._subscriptions = live
        return targets
