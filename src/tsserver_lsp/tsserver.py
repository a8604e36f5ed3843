"""
tsserver host for tsserver LSP.

This module implements the TypeScriptBackend protocol by spawning a
`tsserver` child process and speaking its protocol:
- Requests are written to stdin as one JSON object per line
- Responses and events are read from stdout, framed by Content-Length headers
- Responses are matched to pending requests by `request_seq`
- Events (semanticDiag, syntaxDiag, ...) are forwarded to registered callbacks
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_COMMAND: list[str] = ["tsserver"]


class TsServerError(Exception):
    """A tsserver request failed, timed out, or the process is gone."""


def parse_header(line: bytes) -> tuple[str, str] | None:
    """Split a `Name: value` header line; None for the blank separator line."""
    text = line.decode("utf-8").strip()
    if not text or ":" not in text:
        return None
    name, value = text.split(":", 1)
    return name.strip().lower(), value.strip()


class TsServerHost:
    """TypeScript backend that delegates to a tsserver child process."""

    def __init__(self, command: list[str] | None = None, request_timeout: float = 5.0) -> None:
        """Initialize the host.

        Args:
            command: Command to spawn tsserver (default: ["tsserver"]).
            request_timeout: Seconds to wait for a response before failing.
        """
        self._command = command or list(DEFAULT_COMMAND)
        self._request_timeout = request_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._seq = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._event_callbacks: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

    @property
    def started(self) -> bool:
        return self._process is not None

    async def start(self) -> None:
        """Spawn tsserver and start reading its output."""
        logger.info(f"TSSERVER: starting: command={self._command}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"TSSERVER: failed to start {self._command}: {e}")
            self._process = None
            return

        self._reader_task = asyncio.create_task(self._read_loop(self._process.stdout))
        logger.info("TSSERVER: process spawned")

    async def stop(self) -> None:
        """Ask tsserver to exit and tear the process down."""
        if self._process is None:
            return

        self._send("exit", None)
        process, self._process = self._process, None
        if process.stdin is not None:
            process.stdin.close()

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        try:
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            logger.debug("TSSERVER: exit timed out, killing process")
            process.kill()

        self._fail_pending("tsserver stopped")

    def on(self, event: str, callback: Callable[[dict[str, Any]], None]) -> None:
        """Register a callback for tsserver events named `event`."""
        self._event_callbacks.setdefault(event, []).append(callback)

    # ------------------------------------------------------------------
    # Wire protocol
    # ------------------------------------------------------------------

    def _next_message(self, command: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        self._seq += 1
        message: dict[str, Any] = {"seq": self._seq, "type": "request", "command": command}
        if arguments is not None:
            message["arguments"] = arguments
        return message

    def _write(self, message: dict[str, Any]) -> None:
        assert self._process is not None and self._process.stdin is not None
        self._process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))

    def _send(self, command: str, arguments: dict[str, Any] | None) -> None:
        """Write a command without waiting for an answer."""
        if self._process is None:
            logger.debug(f"TSSERVER: not running, dropping '{command}'")
            return
        self._write(self._next_message(command, arguments))

    async def _request(self, command: str, arguments: dict[str, Any]) -> Any:
        """Write a command and wait for its response body."""
        if self._process is None:
            raise TsServerError(f"tsserver is not running ('{command}')")

        message = self._next_message(command, arguments)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message["seq"]] = future

        self._write(message)
        await self._process.stdin.drain()

        try:
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError:
            raise TsServerError(f"Request '{command}' timed out") from None
        finally:
            self._pending.pop(message["seq"], None)

    async def _read_message(self, reader: asyncio.StreamReader) -> dict[str, Any] | None:
        """Read one Content-Length framed message; None at end of stream."""
        headers: dict[str, str] = {}
        while True:
            line = await reader.readline()
            if not line:
                return None
            header = parse_header(line)
            if header is None:
                if headers:
                    break
                continue
            headers[header[0]] = header[1]

        length = int(headers.get("content-length", 0))
        body = await reader.readexactly(length)
        return json.loads(body.decode("utf-8"))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                message = await self._read_message(reader)
                if message is None:
                    break
                self._handle_message(message)
        except (asyncio.IncompleteReadError, ValueError) as e:
            logger.error(f"TSSERVER: unreadable output: {e}")
        finally:
            # No more responses can arrive; later requests fail fast
            if self._process is not None:
                logger.warning("TSSERVER: process output closed")
                self._process = None
            self._fail_pending("tsserver exited")

    def _handle_message(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "response":
            future = self._pending.get(message.get("request_seq"))
            if future is None or future.done():
                return
            if message.get("success", False):
                future.set_result(message.get("body"))
            else:
                future.set_exception(
                    TsServerError(message.get("message") or f"'{message.get('command')}' failed")
                )
        elif kind == "event":
            event = message.get("event", "")
            for callback in self._event_callbacks.get(event, []):
                try:
                    callback(message.get("body") or {})
                except Exception as e:
                    logger.error(f"TSSERVER: '{event}' callback failed: {e}")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TsServerError(reason))
        self._pending.clear()

    # ------------------------------------------------------------------
    # Document sync
    # ------------------------------------------------------------------

    def open_file(self, path: str) -> None:
        self._send("open", {"file": path})

    def close_file(self, path: str) -> None:
        self._send("close", {"file": path})

    def update_file(self, path: str, text: str) -> None:
        # Re-opening with fileContent replaces tsserver's copy of an open file
        self._send("open", {"file": path, "fileContent": text})

    def change_line_in_file(self, path: str, line_number: int, text: str) -> None:
        self._send(
            "change",
            {
                "file": path,
                "line": line_number,
                "offset": 1,
                "endLine": line_number + 1,
                "endOffset": 1,
                "insertString": text + "\n",
            },
        )

    def get_errors_across_project(self, path: str) -> None:
        self._send("geterrForProject", {"file": path, "delay": 0})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_quick_info(self, path: str, line: int, offset: int) -> dict[str, Any]:
        return await self._request("quickinfo", {"file": path, "line": line, "offset": offset})

    async def get_completions(
        self, path: str, line: int, offset: int, prefix: str
    ) -> list[dict[str, Any]]:
        return await self._request(
            "completions", {"file": path, "line": line, "offset": offset, "prefix": prefix}
        ) or []

    async def get_completion_details(
        self, path: str, line: int, offset: int, names: list[str]
    ) -> list[dict[str, Any]]:
        return await self._request(
            "completionEntryDetails",
            {"file": path, "line": line, "offset": offset, "entryNames": names},
        ) or []

    async def find_all_references(self, path: str, line: int, offset: int) -> dict[str, Any]:
        return await self._request("references", {"file": path, "line": line, "offset": offset})

    async def get_type_definition(self, path: str, line: int, offset: int) -> list[dict[str, Any]]:
        return await self._request(
            "typeDefinition", {"file": path, "line": line, "offset": offset}
        ) or []

    async def get_formatting_edits(
        self, path: str, line: int, offset: int, end_line: int, end_offset: int
    ) -> list[dict[str, Any]]:
        return await self._request(
            "format",
            {
                "file": path,
                "line": line,
                "offset": offset,
                "endLine": end_line,
                "endOffset": end_offset,
            },
        ) or []

    async def get_signature_help(self, path: str, line: int, offset: int) -> dict[str, Any]:
        return await self._request("signatureHelp", {"file": path, "line": line, "offset": offset})

    async def get_navigation_tree(self, path: str) -> dict[str, Any]:
        return await self._request("navtree", {"file": path})
