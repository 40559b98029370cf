# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Execution event notifications.

The engine emits an event at every lifecycle transition of a run. Listeners
are plain synchronous callables receiving a WorkflowEvent; a listener that
raises is logged and never affects the run.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, get_args

logger = logging.getLogger(__name__)

EventName = Literal[
    "workflow:started",
    "phase:started",
    "step:started",
    "step:completed",
    "step:failed",
    "step:skipped",
    "workflow:completed",
    "workflow:failed",
    "workflow:cancelled",
]

EVENT_NAMES: tuple[str, ...] = get_args(EventName)

# Subscribing to this name receives every event
ANY_EVENT = "*"


@dataclass
class WorkflowEvent:
    """A notification emitted by the engine."""

    name: EventName
    execution_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


EventListener = Callable[[WorkflowEvent], Any]


class EventEmitter:
    """Dispatches WorkflowEvents to subscribed listeners.

    Example:
        >>> emitter = EventEmitter()
        >>> emitter.on("step:failed", lambda event: print(event.payload["error"]))
        >>> emitter.emit("step:failed", "exec_1", step_id="A", error="boom")
        boom
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}

    def on(self, name: str, listener: EventListener) -> None:
        """Subscribe ``listener`` to an event name, or to ``"*"`` for all events.

        Listeners run synchronously inside the engine, so coroutine functions
        are rejected.

        Raises:
            ValueError: If the event name is unknown or the listener is async.
        """
        if name != ANY_EVENT and name not in EVENT_NAMES:
            raise ValueError(
                f"Unknown event '{name}'. Valid events: {', '.join(EVENT_NAMES)}"
            )
        if inspect.iscoroutinefunction(listener) or inspect.iscoroutinefunction(
            getattr(listener, "__call__", None)
        ):
            raise ValueError(
                f"Listener for '{name}' is a coroutine function; event listeners must "
                "be plain callables"
            )
        self._listeners.setdefault(name, []).append(listener)

    def off(self, name: str, listener: EventListener) -> bool:
        """Unsubscribe a listener.

        Returns:
            True if the listener was subscribed.
        """
        listeners = self._listeners.get(name, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit(self, name: EventName, execution_id: str, **payload: Any) -> WorkflowEvent:
        """Deliver an event to its listeners and to wildcard listeners."""
        event = WorkflowEvent(name=name, execution_id=execution_id, payload=payload)
        listeners = [*self._listeners.get(name, []), *self._listeners.get(ANY_EVENT, [])]
        for listener in listeners:
            try:
                result = listener(event)
            except Exception:
                logger.exception("Event listener failed for '%s'", name)
                continue
            if inspect.iscoroutine(result):
                result.close()
                logger.warning("Event listener for '%s' returned a coroutine; ignored", name)
        return event
