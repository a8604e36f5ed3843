"""
TypeScript backend protocol for tsserver LSP.

Defines the interface the bridge expects from a TypeScript analysis
backend. TsServerHost (a spawned tsserver process) is the real
implementation; tests use mocks.

All positions crossing this interface are one-based (line, offset).
Sync calls (open/update/change) are fire-and-forget; queries are async
and return raw tsserver response bodies.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable


@runtime_checkable
class TypeScriptBackend(Protocol):
    """Protocol for TypeScript analysis backends."""

    async def start(self) -> None:
        """Start the backend. Called once after the editor handshake."""
        ...

    async def stop(self) -> None:
        """Stop the backend. Called during server shutdown."""
        ...

    def on(self, event: str, callback: Callable[[dict[str, Any]], None]) -> None:
        """Register a callback for an asynchronous backend event.

        Args:
            event: Event name (e.g. "semanticDiag").
            callback: Called with the event body.
        """
        ...

    def open_file(self, path: str) -> None:
        """Tell the backend that `path` is open in the editor."""
        ...

    def close_file(self, path: str) -> None:
        """Tell the backend that `path` was closed in the editor."""
        ...

    def update_file(self, path: str, text: str) -> None:
        """Replace the backend's copy of `path` with `text`."""
        ...

    def change_line_in_file(self, path: str, line_number: int, text: str) -> None:
        """Replace one line (1-based) of the backend's copy of `path`."""
        ...

    async def get_quick_info(self, path: str, line: int, offset: int) -> dict[str, Any]:
        """Get the `quickinfo` body at a position."""
        ...

    async def get_completions(
        self, path: str, line: int, offset: int, prefix: str
    ) -> list[dict[str, Any]]:
        """Get raw completion entries (`{name, kind, ...}`) at a position.

        Args:
            path: File path.
            line: 1-based line number.
            offset: 1-based offset.
            prefix: Identifier prefix typed before the cursor.

        Returns:
            List of completion entries.
        """
        ...

    async def get_completion_details(
        self, path: str, line: int, offset: int, names: list[str]
    ) -> list[dict[str, Any]]:
        """Get `completionEntryDetails` for the given entry names."""
        ...

    async def find_all_references(self, path: str, line: int, offset: int) -> dict[str, Any]:
        """Get the `references` body (`{refs, symbolName}`) at a position."""
        ...

    async def get_type_definition(self, path: str, line: int, offset: int) -> list[dict[str, Any]]:
        """Get the type definition file spans at a position."""
        ...

    async def get_formatting_edits(
        self, path: str, line: int, offset: int, end_line: int, end_offset: int
    ) -> list[dict[str, Any]]:
        """Get formatting code edits for a range.

        Args:
            path: File path.
            line: 1-based start line.
            offset: 1-based start offset.
            end_line: 1-based end line.
            end_offset: 1-based end offset.

        Returns:
            List of `{start, end, newText}` edits.
        """
        ...

    async def get_signature_help(self, path: str, line: int, offset: int) -> dict[str, Any]:
        """Get the `signatureHelp` body at a position."""
        ...

    async def get_navigation_tree(self, path: str) -> dict[str, Any]:
        """Get the navigation tree root for `path`."""
        ...

    def get_errors_across_project(self, path: str) -> None:
        """Ask for project-wide diagnostics; results arrive as events."""
        ...
