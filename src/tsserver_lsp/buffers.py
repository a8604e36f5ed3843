"""
Buffer mirroring for tsserver LSP.

Keeps an in-memory, line-indexed copy of each open document so positional
queries (completion prefixes, formatting ranges) can be answered locally,
and pushes buffer changes to tsserver:
- Full-buffer updates are throttled (trailing edge)
- Single-line updates are sent immediately
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from lsprotocol import types as lsp
from pygls.workspace import PositionCodec

if TYPE_CHECKING:
    from tsserver_lsp.backend import TypeScriptBackend

logger = logging.getLogger(__name__)


class BufferMirror:
    """Per-document line arrays; index is the editor line number minus one.

    Editor columns are in the client's position units (UTF-16 by default);
    `position_codec` maps them to and from Python string indices.
    """

    def __init__(self, position_codec: PositionCodec | None = None) -> None:
        self._lines: dict[str, list[str]] = {}
        self.position_codec = position_codec or PositionCodec()

    def __contains__(self, path: str) -> bool:
        return path in self._lines

    def replace_all(self, path: str, lines: list[str]) -> None:
        """Replace the whole line sequence for `path`."""
        self._lines[path] = list(lines)

    def replace_line(self, path: str, line_number: int, text: str) -> None:
        """Replace exactly one line (1-based `line_number`)."""
        lines = self._lines.setdefault(path, [])
        index = line_number - 1
        if index < 0:
            raise IndexError(f"line number must be >= 1, got {line_number}")
        if index >= len(lines):
            lines.extend([""] * (index + 1 - len(lines)))
        lines[index] = text

    def apply_range_edit(self, path: str, edit_range: lsp.Range, text: str) -> None:
        """Splice `text` between two zero-based editor positions of the buffer."""
        lines = self._lines.get(path, [])
        start = self._offset_at(lines, edit_range.start)
        end = self._offset_at(lines, edit_range.end)
        source = "\n".join(lines)
        self._lines[path] = (source[:start] + text + source[end:]).split("\n")

    def _offset_at(self, lines: list[str], position: lsp.Position) -> int:
        """Absolute string offset of an editor position in the joined buffer (clamped)."""
        if position.line >= len(lines):
            return sum(len(line) + 1 for line in lines) - 1 if lines else 0
        offset = sum(len(line) + 1 for line in lines[: position.line])
        return offset + self._line_index(lines, position.line, position.character)

    def _line_index(self, lines: list[str], index: int, character: int) -> int:
        line = lines[index]
        if character >= self.position_codec.client_num_units(line):
            return len(line)
        pos = self.position_codec.position_from_client_units(
            lines, lsp.Position(line=index, character=character)
        )
        return pos.character

    def to_string_column(self, path: str, line_number: int, column: int) -> int:
        """Map a 1-based editor column on a 1-based line to a 1-based string column."""
        lines = self._lines.get(path, [])
        if not 1 <= line_number <= len(lines) or column <= 1:
            return column
        return self._line_index(lines, line_number - 1, column - 1) + 1

    def line_length(self, path: str, line_number: int) -> int:
        """Length of the 1-based line in editor position units."""
        return self.position_codec.client_num_units(self.get_line(path, line_number))

    def get_lines(self, path: str) -> list[str]:
        return self._lines.get(path, [])

    def get_line(self, path: str, line_number: int) -> str:
        """Return the 1-based line, or an empty string if it is not mirrored."""
        lines = self._lines.get(path, [])
        if 1 <= line_number <= len(lines):
            return lines[line_number - 1]
        return ""

    def text(self, path: str) -> str:
        return "\n".join(self._lines.get(path, []))

    def discard(self, path: str) -> None:
        self._lines.pop(path, None)


class OpenDocuments:
    """The set of paths that tsserver has been told are open."""

    def __init__(self) -> None:
        self._paths: set[str] = set()

    def mark_open(self, path: str) -> bool:
        """Record `path` as open. Returns True only the first time."""
        if path in self._paths:
            return False
        self._paths.add(path)
        return True

    def mark_closed(self, path: str) -> None:
        self._paths.discard(path)

    def is_open(self, path: str) -> bool:
        return path in self._paths


class Throttle:
    """Trailing-edge throttle on the asyncio event loop.

    The first call in a window schedules delivery `interval` seconds later;
    further calls in the same window only replace the pending arguments.
    Intermediate calls are dropped, not queued.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        interval: float,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._func = func
        self.interval = interval
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._args: tuple[Any, ...] = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any) -> None:
        self._args = args
        if self._handle is None:
            loop = self._loop or asyncio.get_running_loop()
            self._handle = loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        self._func(*args)

    def flush(self) -> None:
        """Deliver the pending call now, if there is one."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        """Drop the pending call, if there is one."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._args = ()


class BufferSynchronizer:
    """Applies editor buffer events to the mirror and pushes them to tsserver."""

    def __init__(
        self,
        backend: TypeScriptBackend,
        mirror: BufferMirror | None = None,
        throttle_interval: float = 0.05,
    ) -> None:
        self.backend = backend
        self.mirror = mirror if mirror is not None else BufferMirror()
        self.open_documents = OpenDocuments()
        self.throttle_interval = throttle_interval
        # One throttle per path so edits in one buffer never drop another's sync
        self._full_syncs: dict[str, Throttle] = {}

    def _push_full_text(self, path: str, text: str) -> None:
        logger.debug(f"Syncing full buffer for {path}")
        self.backend.update_file(path, text)

    def _throttle_for(self, path: str) -> Throttle:
        throttle = self._full_syncs.get(path)
        if throttle is None:
            throttle = Throttle(self._push_full_text, self.throttle_interval)
            self._full_syncs[path] = throttle
        return throttle

    def ensure_open(self, path: str) -> None:
        """Open `path` in tsserver unless it is already open."""
        if self.open_documents.mark_open(path):
            self.backend.open_file(path)

    def schedule_full_sync(self, path: str) -> None:
        """Schedule a throttled push of the mirrored text for `path`."""
        self._throttle_for(path)(path, self.mirror.text(path))

    def on_buffer_update(self, path: str, lines: list[str], version: int | None = None) -> None:
        """Handle a full-buffer update from the editor."""
        if not path:
            return

        self.ensure_open(path)
        self.mirror.replace_all(path, lines)
        logger.debug(f"Buffer update for {path} (version {version}, {len(lines)} lines)")
        self.schedule_full_sync(path)

    def on_buffer_update_incremental(self, path: str, line: str, line_number: int) -> None:
        """Handle a single-line update (1-based `line_number`) from the editor."""
        if not path:
            return

        self.ensure_open(path)
        self.mirror.replace_line(path, line_number, line)
        self.backend.change_line_in_file(path, line_number, line)

    def flush(self) -> None:
        """Deliver every pending full-buffer sync now."""
        for throttle in list(self._full_syncs.values()):
            throttle.flush()

    def close(self, path: str) -> None:
        """Forget `path` locally and close it in tsserver."""
        throttle = self._full_syncs.pop(path, None)
        if throttle is not None:
            throttle.cancel()
        self.mirror.discard(path)
        if self.open_documents.is_open(path):
            self.open_documents.mark_closed(path)
            self.backend.close_file(path)
