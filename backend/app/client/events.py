"""Typed event stream with explicit subscriptions.

Handlers subscribe to one event type and receive the decoded frame. A
subscription is released with ``unsubscribe()`` or by leaving its ``with``
block, so views can tie handler lifetime to their own lifetime.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ``EventStream.subscribe``."""

    def __init__(self, stream: "EventStream", event_type: str, handler: EventHandler) -> None:
        self._stream = stream
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        """Detach the handler. Safe to call more than once."""
        if self.active:
            self._stream._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class EventStream:
    """Fan-out of incoming server frames to subscribed handlers."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> Subscription:
        subscription = Subscription(self, event_type, handler)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.event_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.event_type, None)

    def handler_count(self, event_type: str) -> int:
        return len(self._subscriptions.get(event_type, []))

    async def emit(self, event_type: str, payload: dict) -> None:
        """Deliver ``payload`` to every handler of ``event_type``.

        Coroutine handlers are awaited in subscription order. A failing
        handler is logged and does not prevent delivery to the others.
        """
        for subscription in list(self._subscriptions.get(event_type, [])):
            try:
                result = subscription.handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"[Events] Handler for {event_type} failed: {e}")
