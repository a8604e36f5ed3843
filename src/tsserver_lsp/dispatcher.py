"""
Protocol dispatcher for tsserver LSP.

A small registry that routes named protocol messages to handlers:
- Requests (name -> async handler), awaited by the caller
- Notifications (name -> handler), fire-and-forget
- Subscriptions (name -> sink), outbound events published by the bridge

Handler selection is purely by message name. The document id passed to
the send_* entry points is routing context only.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

RequestHandler = Callable[[str, Any], Awaitable[Any]]
NotificationHandler = Callable[[str, Any], None]
EventSink = Callable[[Any], None]


class RequestNotImplementedError(Exception):
    """Raised (asynchronously) when no handler is registered for a request."""

    def __init__(self, name: str) -> None:
        super().__init__("Not implemented")
        self.name = name


class HandlerConflictError(Exception):
    """Raised by a strict dispatcher when a message name is registered twice."""


class ProtocolDispatcher:
    """Routes requests, notifications and outbound events by message name."""

    def __init__(self, strict: bool = False) -> None:
        """Initialize the dispatcher.

        Args:
            strict: Report duplicate registrations instead of silently
                replacing the previous handler.
        """
        self.strict = strict
        self.request_handlers: dict[str, RequestHandler] = {}
        self.notification_handlers: dict[str, NotificationHandler] = {}
        self.subscriptions: dict[str, EventSink] = {}

    def _store(self, registry: dict[str, Any], kind: str, name: str, value: Any) -> None:
        if name in registry:
            if self.strict:
                raise HandlerConflictError(f"{kind} '{name}' is already registered")
            logger.debug(f"Replacing {kind} for '{name}'")
        registry[name] = value

    def register_request_handler(self, name: str, handler: RequestHandler) -> None:
        """Register the async handler for request `name` (last writer wins)."""
        self._store(self.request_handlers, "request handler", name, handler)

    def register_notification_handler(self, name: str, handler: NotificationHandler) -> None:
        """Register the handler for notification `name` (last writer wins)."""
        self._store(self.notification_handlers, "notification handler", name, handler)

    def subscribe(self, name: str, sink: EventSink) -> None:
        """Record the outbound sink for events named `name`."""
        self._store(self.subscriptions, "subscription", name, sink)

    async def send_request(self, document_id: str | None, name: str, args: Any) -> Any:
        """Route a request to its handler and return the handler's result.

        Being a coroutine function, this never raises at call time; a
        missing handler surfaces as RequestNotImplementedError on await.
        """
        handler = self.request_handlers.get(name)
        if handler is None:
            logger.debug(f"No request handler for '{name}' ({document_id})")
            raise RequestNotImplementedError(name)

        logger.debug(f"Request '{name}' for {document_id}")
        return await handler(name, args)

    def send_notification(self, document_id: str | None, name: str, args: Any) -> None:
        """Route a notification to its handler; unknown names are dropped."""
        handler = self.notification_handlers.get(name)
        if handler is None:
            return

        logger.debug(f"Notification '{name}' for {document_id}")
        handler(name, args)

    def publish(self, name: str, payload: Any) -> None:
        """Deliver `payload` to the sink subscribed to `name`, if any."""
        sink = self.subscriptions.get(name)
        if sink is not None:
            sink(payload)

    def clear(self) -> None:
        """Drop every registration."""
        self.request_handlers.clear()
        self.notification_handlers.clear()
        self.subscriptions.clear()
