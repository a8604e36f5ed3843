"""
TypeScript bridge for tsserver LSP.

Wires the protocol dispatcher to tsserver:
- Editor protocol requests/notifications are routed through the dispatcher
  to handlers that translate positions and payloads for tsserver
- Editor buffer events update the buffer mirror and sync tsserver
- tsserver events (semantic diagnostics) and navigation-tree highlights
  are published to the editor through dispatcher subscriptions
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lsprotocol import types as lsp

from tsserver_lsp.buffers import BufferMirror, BufferSynchronizer
from tsserver_lsp.completions import CompletionResolver, CompletionResult
from tsserver_lsp.dispatcher import ProtocolDispatcher
from tsserver_lsp.highlights import HighlightEntry, highlights_from_navtree
from tsserver_lsp.translator import (
    DIAGNOSTIC_SOURCE,
    CompletionDetail,
    DefinitionResult,
    FormattingResult,
    ReferencesResult,
    SignatureHelpResult,
    convert_definition,
    convert_diagnostics,
    convert_formatting_edits,
    convert_quick_info,
    convert_references,
    convert_signature_help,
    to_backend_position,
    unwrap_file_uri,
)

if TYPE_CHECKING:
    from pygls.workspace import PositionCodec

    from tsserver_lsp.backend import TypeScriptBackend

logger = logging.getLogger(__name__)

LANGUAGE = "typescript"

# Outbound event names
LOG_MESSAGE = "window/logMessage"
PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"
HIGHLIGHTS = "typescript/highlights"


@dataclass
class DiagnosticsEvent:
    source: str
    file: str
    diagnostics: list[lsp.Diagnostic] = field(default_factory=list)


@dataclass
class HighlightsEvent:
    file: str
    language: str
    highlights: list[HighlightEntry] = field(default_factory=list)


class TypeScriptBridge:
    """Routes editor protocol traffic and buffer events to a TypeScript backend."""

    def __init__(
        self,
        backend: TypeScriptBackend,
        dispatcher: ProtocolDispatcher | None = None,
        throttle_interval: float = 0.05,
        position_codec: PositionCodec | None = None,
    ) -> None:
        self.backend = backend
        self.dispatcher = dispatcher or ProtocolDispatcher()
        self.sync = BufferSynchronizer(
            backend, BufferMirror(position_codec), throttle_interval=throttle_interval
        )
        self.mirror = self.sync.mirror
        self.completions = CompletionResolver(backend, self.mirror)

    def activate(self) -> None:
        """Register every handler and announce the bridge to the editor."""
        d = self.dispatcher

        d.register_notification_handler(lsp.TEXT_DOCUMENT_DID_OPEN, self._did_open)
        d.register_notification_handler(lsp.TEXT_DOCUMENT_DID_CHANGE, self._did_change)

        d.register_request_handler(lsp.TEXT_DOCUMENT_HOVER, self._hover)
        d.register_request_handler(lsp.TEXT_DOCUMENT_COMPLETION, self._completion)
        d.register_request_handler(lsp.COMPLETION_ITEM_RESOLVE, self._completion_resolve)
        d.register_request_handler(lsp.TEXT_DOCUMENT_DEFINITION, self._definition)
        d.register_request_handler(lsp.TEXT_DOCUMENT_REFERENCES, self._references)
        d.register_request_handler(lsp.TEXT_DOCUMENT_FORMATTING, self._formatting)
        d.register_request_handler(lsp.TEXT_DOCUMENT_SIGNATURE_HELP, self._signature_help)

        self.backend.on("semanticDiag", self._on_semantic_diag)

        d.publish(LOG_MESSAGE, "tsserver-lsp bridge activated")

    def deactivate(self) -> None:
        """Deliver pending buffer syncs and drop every registration."""
        self.sync.flush()
        self.dispatcher.clear()

    # ========================================================================
    # Editor buffer events
    # ========================================================================

    def on_buffer_update(self, path: str, lines: list[str], version: int | None = None) -> None:
        self.sync.on_buffer_update(path, lines, version)

    def on_buffer_update_incremental(self, path: str, line: str, line_number: int) -> None:
        self.sync.on_buffer_update_incremental(path, line, line_number)

    async def on_buffer_enter(self, path: str) -> None:
        """Open the buffer in tsserver and publish its highlights."""
        if not path:
            return
        self.sync.ensure_open(path)
        await self.refresh_highlights(path)

    async def on_buffer_saved(self, path: str) -> None:
        """Request project diagnostics and republish highlights for a saved buffer."""
        if not path:
            return
        self.sync.flush()
        self.backend.get_errors_across_project(path)
        await self.refresh_highlights(path)

    def on_buffer_closed(self, path: str) -> None:
        self.sync.close(path)

    async def refresh_highlights(self, path: str) -> None:
        tree = await self.backend.get_navigation_tree(path)
        highlights = highlights_from_navtree(tree)
        logger.debug(f"Publishing {len(highlights)} highlights for {path}")
        self.dispatcher.publish(HIGHLIGHTS, HighlightsEvent(file=path, language=LANGUAGE, highlights=highlights))

    # ========================================================================
    # Backend events
    # ========================================================================

    def _on_semantic_diag(self, body: dict[str, Any]) -> None:
        file_name = body.get("file", "")
        diagnostics = convert_diagnostics(body)
        logger.debug(f"Received {len(diagnostics)} diagnostics for {file_name}")
        self.dispatcher.publish(
            PUBLISH_DIAGNOSTICS,
            DiagnosticsEvent(source=DIAGNOSTIC_SOURCE, file=file_name, diagnostics=diagnostics),
        )

    # ========================================================================
    # Notifications
    # ========================================================================

    def _did_open(self, name: str, params: lsp.DidOpenTextDocumentParams) -> None:
        path = unwrap_file_uri(params.text_document.uri)
        self.sync.ensure_open(path)
        # tsserver reads the file from disk on open; keep a local copy for prefixes
        if params.text_document.text is not None:
            self.mirror.replace_all(path, params.text_document.text.split("\n"))

    def _did_change(self, name: str, params: lsp.DidChangeTextDocumentParams) -> None:
        path = unwrap_file_uri(params.text_document.uri)
        changes = params.content_changes or []
        if not changes:
            return

        self.sync.ensure_open(path)
        for change in changes:
            change_range = getattr(change, "range", None)
            if change_range is None:
                self.mirror.replace_all(path, change.text.split("\n"))
            else:
                self.mirror.apply_range_edit(path, change_range, change.text)

        self.sync.schedule_full_sync(path)

    # ========================================================================
    # Requests
    # ========================================================================

    async def _hover(self, name: str, params: lsp.TextDocumentPositionParams) -> lsp.Hover:
        path = unwrap_file_uri(params.text_document.uri)
        pos = to_backend_position(params.position)
        body = await self.backend.get_quick_info(path, pos.line, pos.offset)
        return convert_quick_info(body)

    async def _completion(self, name: str, params: lsp.CompletionParams) -> CompletionResult:
        path = unwrap_file_uri(params.text_document.uri)
        pos = to_backend_position(params.position)
        return await self.completions.get_completions(path, pos.line, pos.offset)

    async def _completion_resolve(self, name: str, item: lsp.CompletionItem) -> CompletionDetail | None:
        data = item.data if isinstance(item.data, dict) else {}
        if "line" not in data or "offset" not in data:
            return None
        return await self.completions.get_completion_details(
            data.get("file", ""), data["line"], data["offset"], item.label
        )

    async def _definition(self, name: str, params: lsp.TextDocumentPositionParams) -> DefinitionResult | None:
        path = unwrap_file_uri(params.text_document.uri)
        pos = to_backend_position(params.position)
        body = await self.backend.get_type_definition(path, pos.line, pos.offset)
        return convert_definition(body)

    async def _references(self, name: str, params: lsp.TextDocumentPositionParams) -> ReferencesResult:
        path = unwrap_file_uri(params.text_document.uri)
        pos = to_backend_position(params.position)
        body = await self.backend.find_all_references(path, pos.line, pos.offset)
        return convert_references(body)

    async def _formatting(self, name: str, params: lsp.DocumentFormattingParams) -> FormattingResult:
        path = unwrap_file_uri(params.text_document.uri)
        last_line = max(len(self.mirror.get_lines(path)), 1)
        end_offset = self.mirror.line_length(path, last_line) + 1
        body = await self.backend.get_formatting_edits(path, 1, 1, last_line, end_offset)
        return convert_formatting_edits(body, path)

    async def _signature_help(self, name: str, params: lsp.TextDocumentPositionParams) -> SignatureHelpResult:
        path = unwrap_file_uri(params.text_document.uri)
        pos = to_backend_position(params.position)
        body = await self.backend.get_signature_help(path, pos.line, pos.offset)
        return convert_signature_help(body)
