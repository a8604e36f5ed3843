"""Tests for the protocol dispatcher."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from tsserver_lsp.dispatcher import (
    HandlerConflictError,
    ProtocolDispatcher,
    RequestNotImplementedError,
)


class TestRequests:
    """Test request routing."""

    @pytest.fixture
    def dispatcher(self):
        return ProtocolDispatcher()

    @pytest.mark.asyncio
    async def test_registered_request_returns_handler_result(self, dispatcher):
        result = {"contents": ["const a: number", ""]}
        handler = AsyncMock(return_value=result)
        dispatcher.register_request_handler("textDocument/hover", handler)

        response = await dispatcher.send_request("/a.ts", "textDocument/hover", {"x": 1})

        assert response is result
        handler.assert_awaited_once_with("textDocument/hover", {"x": 1})

    @pytest.mark.asyncio
    async def test_unregistered_request_rejects_on_await(self, dispatcher):
        """Calling never raises; the failure surfaces when awaited."""
        pending = dispatcher.send_request("/a.ts", "textDocument/rename", {})

        with pytest.raises(RequestNotImplementedError) as exc_info:
            await pending

        assert str(exc_info.value) == "Not implemented"
        assert exc_info.value.name == "textDocument/rename"

    @pytest.mark.asyncio
    async def test_handler_selected_by_name_not_document(self, dispatcher):
        handler = AsyncMock(return_value="ok")
        dispatcher.register_request_handler("textDocument/hover", handler)

        assert await dispatcher.send_request("/a.ts", "textDocument/hover", None) == "ok"
        assert await dispatcher.send_request("/b.ts", "textDocument/hover", None) == "ok"
        assert await dispatcher.send_request(None, "textDocument/hover", None) == "ok"
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_handler_failure_propagates(self, dispatcher):
        dispatcher.register_request_handler(
            "textDocument/hover", AsyncMock(side_effect=RuntimeError("backend gone"))
        )

        with pytest.raises(RuntimeError, match="backend gone"):
            await dispatcher.send_request("/a.ts", "textDocument/hover", None)

    @pytest.mark.asyncio
    async def test_last_registration_wins(self, dispatcher):
        dispatcher.register_request_handler("textDocument/hover", AsyncMock(return_value="first"))
        dispatcher.register_request_handler("textDocument/hover", AsyncMock(return_value="second"))

        assert await dispatcher.send_request("/a.ts", "textDocument/hover", None) == "second"


class TestNotifications:
    """Test notification routing."""

    def test_registered_notification_invoked(self):
        dispatcher = ProtocolDispatcher()
        handler = MagicMock()
        dispatcher.register_notification_handler("textDocument/didOpen", handler)

        dispatcher.send_notification("/a.ts", "textDocument/didOpen", {"uri": "file:///a.ts"})

        handler.assert_called_once_with("textDocument/didOpen", {"uri": "file:///a.ts"})

    def test_unregistered_notification_is_noop(self):
        dispatcher = ProtocolDispatcher()
        handler = MagicMock()
        dispatcher.register_notification_handler("textDocument/didOpen", handler)

        # Should not raise
        dispatcher.send_notification("/a.ts", "textDocument/didClose", {})

        handler.assert_not_called()


class TestSubscriptions:
    """Test outbound event publication."""

    def test_publish_to_subscriber(self):
        dispatcher = ProtocolDispatcher()
        sink = MagicMock()
        dispatcher.subscribe("window/logMessage", sink)

        dispatcher.publish("window/logMessage", "hello")

        sink.assert_called_once_with("hello")

    def test_publish_without_subscriber_is_noop(self):
        dispatcher = ProtocolDispatcher()
        # Should not raise
        dispatcher.publish("textDocument/publishDiagnostics", {"file": "/a.ts"})


class TestRegistration:
    """Test registration conflicts and teardown."""

    def test_strict_dispatcher_reports_conflicts(self):
        dispatcher = ProtocolDispatcher(strict=True)
        dispatcher.register_notification_handler("textDocument/didOpen", MagicMock())

        with pytest.raises(HandlerConflictError):
            dispatcher.register_notification_handler("textDocument/didOpen", MagicMock())

    def test_strict_dispatcher_reports_subscription_conflicts(self):
        dispatcher = ProtocolDispatcher(strict=True)
        dispatcher.subscribe("window/logMessage", MagicMock())

        with pytest.raises(HandlerConflictError):
            dispatcher.subscribe("window/logMessage", MagicMock())

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self):
        dispatcher = ProtocolDispatcher()
        sink = MagicMock()
        dispatcher.register_request_handler("textDocument/hover", AsyncMock())
        dispatcher.register_notification_handler("textDocument/didOpen", MagicMock())
        dispatcher.subscribe("window/logMessage", sink)

        dispatcher.clear()

        dispatcher.publish("window/logMessage", "hello")
        sink.assert_not_called()
        assert dispatcher.notification_handlers == {}
        with pytest.raises(RequestNotImplementedError):
            await dispatcher.send_request("/a.ts", "textDocument/hover", None)
