"""Tests for the tsserver host."""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from tsserver_lsp.backend import TypeScriptBackend
from tsserver_lsp.tsserver import DEFAULT_COMMAND, TsServerError, TsServerHost, parse_header


def _frame(message: dict) -> bytes:
    body = (json.dumps(message) + "\n").encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8") + body


def _written(host: TsServerHost) -> list[dict]:
    """Decode every message written to the mocked stdin."""
    return [json.loads(c.args[0].decode("utf-8")) for c in host._process.stdin.write.call_args_list]


async def _settle():
    for _ in range(3):
        await asyncio.sleep(0)


class TestTsServerHostInit:
    """Test TsServerHost initialization."""

    def test_init_default(self):
        host = TsServerHost()
        assert host._command == DEFAULT_COMMAND
        assert host._process is None
        assert not host.started
        assert host._pending == {}

    def test_init_with_command(self):
        host = TsServerHost(command=["node", "/opt/ts/tsserver.js"], request_timeout=1.0)
        assert host._command == ["node", "/opt/ts/tsserver.js"]
        assert host._request_timeout == 1.0

    def test_implements_backend_protocol(self):
        assert isinstance(TsServerHost(), TypeScriptBackend)


class TestTsServerHostNotStarted:
    """Test TsServerHost methods when not started."""

    @pytest.fixture
    def host(self):
        return TsServerHost()

    def test_sync_calls_are_dropped(self, host):
        # Should not raise
        host.open_file("/a.ts")
        host.update_file("/a.ts", "let a = 1")
        host.change_line_in_file("/a.ts", 1, "let a = 2")
        host.get_errors_across_project("/a.ts")

    @pytest.mark.asyncio
    async def test_query_rejects(self, host):
        with pytest.raises(TsServerError):
            await host.get_quick_info("/a.ts", 1, 1)

    @pytest.mark.asyncio
    async def test_stop_not_started(self, host):
        # Should not raise
        await host.stop()

    @pytest.mark.asyncio
    async def test_start_missing_executable(self):
        host = TsServerHost(command=["/nonexistent/tsserver-binary"])
        await host.start()
        assert not host.started


class TestTsServerHostCommands:
    """Test the commands written to tsserver."""

    @pytest.fixture
    def host(self):
        host = TsServerHost()
        host._process = MagicMock()
        host._process.stdin.drain = AsyncMock()
        return host

    def test_open_file(self, host):
        host.open_file("/src/a.ts")

        message = _written(host)[0]
        assert message["type"] == "request"
        assert message["command"] == "open"
        assert message["arguments"] == {"file": "/src/a.ts"}

    def test_update_file_reopens_with_content(self, host):
        host.update_file("/src/a.ts", "let a = 1\nlet b = 2")

        message = _written(host)[0]
        assert message["command"] == "open"
        assert message["arguments"]["fileContent"] == "let a = 1\nlet b = 2"

    def test_change_line_replaces_whole_line(self, host):
        host.change_line_in_file("/src/a.ts", 3, "const c = 3")

        args = _written(host)[0]["arguments"]
        assert args == {
            "file": "/src/a.ts",
            "line": 3,
            "offset": 1,
            "endLine": 4,
            "endOffset": 1,
            "insertString": "const c = 3\n",
        }

    def test_sequence_numbers_increase(self, host):
        host.open_file("/a.ts")
        host.open_file("/b.ts")
        host.close_file("/a.ts")

        assert [m["seq"] for m in _written(host)] == [1, 2, 3]
        assert _written(host)[2]["command"] == "close"

    def test_errors_across_project(self, host):
        host.get_errors_across_project("/src/a.ts")

        message = _written(host)[0]
        assert message["command"] == "geterrForProject"
        assert message["arguments"]["file"] == "/src/a.ts"


class TestTsServerHostResponses:
    """Test matching responses to pending requests."""

    @pytest.fixture
    def host(self):
        host = TsServerHost(request_timeout=0.5)
        host._process = MagicMock()
        host._process.stdin.drain = AsyncMock()
        return host

    @pytest.mark.asyncio
    async def test_successful_response(self, host):
        task = asyncio.create_task(host.get_quick_info("/a.ts", 2, 5))
        await _settle()

        request = _written(host)[0]
        assert request["command"] == "quickinfo"
        assert request["arguments"] == {"file": "/a.ts", "line": 2, "offset": 5}

        host._handle_message(
            {
                "type": "response",
                "request_seq": request["seq"],
                "command": "quickinfo",
                "success": True,
                "body": {"displayString": "const a: 1"},
            }
        )

        assert await task == {"displayString": "const a: 1"}
        assert host._pending == {}

    @pytest.mark.asyncio
    async def test_failed_response(self, host):
        task = asyncio.create_task(host.get_navigation_tree("/a.ts"))
        await _settle()

        request = _written(host)[0]
        host._handle_message(
            {
                "type": "response",
                "request_seq": request["seq"],
                "command": "navtree",
                "success": False,
                "message": "No Project.",
            }
        )

        with pytest.raises(TsServerError, match="No Project."):
            await task

    @pytest.mark.asyncio
    async def test_empty_completion_body(self, host):
        task = asyncio.create_task(host.get_completions("/a.ts", 1, 2, "a"))
        await _settle()

        request = _written(host)[0]
        assert request["arguments"]["prefix"] == "a"
        host._handle_message({"type": "response", "request_seq": request["seq"], "success": True})

        assert await task == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        host = TsServerHost(request_timeout=0.01)
        host._process = MagicMock()
        host._process.stdin.drain = AsyncMock()

        with pytest.raises(TsServerError, match="timed out"):
            await host.get_signature_help("/a.ts", 1, 1)

    @pytest.mark.asyncio
    async def test_unknown_response_ignored(self, host):
        # Should not raise
        host._handle_message({"type": "response", "request_seq": 999, "success": True})

    @pytest.mark.asyncio
    async def test_exit_fails_pending(self, host):
        task = asyncio.create_task(host.find_all_references("/a.ts", 1, 1))
        await _settle()

        host._fail_pending("tsserver exited")

        with pytest.raises(TsServerError, match="exited"):
            await task


class TestTsServerHostShutdown:
    """Test process teardown."""

    @pytest.mark.asyncio
    async def test_stop_sends_exit_and_closes_stdin(self):
        host = TsServerHost()
        process = MagicMock()
        process.wait = AsyncMock(return_value=0)
        host._process = process

        await host.stop()

        sent = json.loads(process.stdin.write.call_args.args[0].decode("utf-8"))
        assert sent["command"] == "exit"
        process.stdin.close.assert_called_once()
        process.kill.assert_not_called()
        assert not host.started

    @pytest.mark.asyncio
    async def test_output_closed_marks_process_gone(self):
        host = TsServerHost(request_timeout=5.0)
        host._process = MagicMock()
        host._process.stdin.drain = AsyncMock()

        reader = asyncio.StreamReader()
        reader.feed_eof()
        await host._read_loop(reader)

        assert not host.started
        # Fails immediately instead of waiting for the timeout
        with pytest.raises(TsServerError, match="not running"):
            await asyncio.wait_for(host.get_quick_info("/a.ts", 1, 1), timeout=0.5)


class TestTsServerHostEvents:
    """Test event dispatch."""

    def test_event_callbacks(self):
        host = TsServerHost()
        first, second = MagicMock(), MagicMock()
        host.on("semanticDiag", first)
        host.on("semanticDiag", second)

        body = {"file": "/a.ts", "diagnostics": []}
        host._handle_message({"type": "event", "event": "semanticDiag", "body": body})

        first.assert_called_once_with(body)
        second.assert_called_once_with(body)

    def test_event_without_callback(self):
        host = TsServerHost()
        # Should not raise
        host._handle_message({"type": "event", "event": "projectLoadingFinish", "body": {}})

    def test_failing_callback_does_not_stop_others(self):
        host = TsServerHost()
        later = MagicMock()
        host.on("syntaxDiag", MagicMock(side_effect=ValueError("boom")))
        host.on("syntaxDiag", later)

        host._handle_message({"type": "event", "event": "syntaxDiag", "body": {"file": "/a.ts"}})

        later.assert_called_once()


class TestFraming:
    """Test Content-Length framing."""

    def test_parse_header(self):
        assert parse_header(b"Content-Length: 42\r\n") == ("content-length", "42")
        assert parse_header(b"\r\n") is None

    @pytest.mark.asyncio
    async def test_read_messages(self):
        reader = asyncio.StreamReader()
        reader.feed_data(_frame({"seq": 0, "type": "event", "event": "typingsInstallerPid"}))
        reader.feed_data(_frame({"seq": 0, "type": "response", "request_seq": 1, "success": True}))
        reader.feed_eof()

        host = TsServerHost()
        first = await host._read_message(reader)
        second = await host._read_message(reader)
        third = await host._read_message(reader)

        assert first["event"] == "typingsInstallerPid"
        assert second["request_seq"] == 1
        assert third is None

    @pytest.mark.asyncio
    async def test_read_loop_dispatches_events(self):
        reader = asyncio.StreamReader()
        reader.feed_data(
            _frame({"seq": 0, "type": "event", "event": "semanticDiag", "body": {"file": "/a.ts"}})
        )
        reader.feed_eof()

        host = TsServerHost()
        callback = MagicMock()
        host.on("semanticDiag", callback)

        await host._read_loop(reader)

        callback.assert_called_once_with({"file": "/a.ts"})
