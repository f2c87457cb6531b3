"""Broadcast channel telling views that the task collection changed.

Views never share a cache. A view that wrote successfully publishes a
``TaskCollectionChanged`` event; every other subscribed view reacts by
refetching its own collection.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tasklane.utils.logger import get_logger


@dataclass(frozen=True)
class TaskCollectionChanged:
    """Event published after a successful task write."""

    source: object | None
    reason: str = ""
    task_ids: tuple[str, ...] = ()
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TaskCollectionChanged], None]


class InvalidationChannel:
    """Synchronous pub/sub channel for invalidation events."""

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(
        self,
        source: object | None = None,
        reason: str = "",
        task_ids: tuple[str, ...] = (),
    ) -> TaskCollectionChanged:
        """Deliver an event to every listener.

        A failing listener is logged and does not stop delivery to the others.
        """
        event = TaskCollectionChanged(source=source, reason=reason, task_ids=task_ids)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                get_logger("invalidation").exception(
                    "invalidation listener failed: %r", listener
                )
        return event

    def __len__(self) -> int:
        return len(self._listeners)
