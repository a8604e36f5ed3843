"""
tsserver Language Server

Main LSP server implementation using pygls. Editor traffic is routed
through the TypeScript bridge's dispatcher; results are converted back
to lsprotocol types here.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lsprotocol import types as lsp
from pygls.lsp.server import LanguageServer

from tsserver_lsp import __version__
from tsserver_lsp.bridge import (
    HIGHLIGHTS,
    LOG_MESSAGE,
    PUBLISH_DIAGNOSTICS,
    DiagnosticsEvent,
    HighlightsEvent,
    TypeScriptBridge,
)
from tsserver_lsp.completions import to_completion_items
from tsserver_lsp.translator import (
    definition_location,
    formatting_text_edits,
    reference_locations,
    signature_help_to_lsp,
    to_backend_position,
    to_file_uri,
    unwrap_file_uri,
)
from tsserver_lsp.tsserver import DEFAULT_COMMAND, TsServerHost

if TYPE_CHECKING:
    from pygls.workspace import PositionCodec

    from tsserver_lsp.backend import TypeScriptBackend

# Configure logging: WARNING by default to avoid flooding stderr
# (Neovim treats all stderr as [ERROR])
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

HIGHLIGHTS_NOTIFICATION = "$/typescript/highlights"


@dataclass
class BridgeConfig:
    """Backend settings from CLI args, overridden by initializationOptions."""

    tsserver_command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
    sync_throttle: float = 0.05
    request_timeout: float = 5.0

    def update_from_options(self, opts: Any) -> None:
        if not isinstance(opts, dict):
            return
        command = opts.get("tsserverPath")
        if isinstance(command, str):
            self.tsserver_command = [command]
        elif isinstance(command, list) and command:
            self.tsserver_command = [str(part) for part in command]
        if "syncThrottle" in opts:
            self.sync_throttle = float(opts["syncThrottle"])
        if "requestTimeout" in opts:
            self.request_timeout = float(opts["requestTimeout"])


class TypeScriptLanguageServer(LanguageServer):
    """Language Server bridging TypeScript files to tsserver."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)

        self.config = BridgeConfig()
        self.backend: TypeScriptBackend | None = None
        self.bridge: TypeScriptBridge | None = None

    def create_bridge(
        self, backend: TypeScriptBackend, position_codec: PositionCodec | None = None
    ) -> TypeScriptBridge:
        """Create the bridge and subscribe the editor-facing sinks."""
        self.backend = backend
        self.bridge = TypeScriptBridge(
            backend,
            throttle_interval=self.config.sync_throttle,
            position_codec=position_codec,
        )

        self.bridge.dispatcher.subscribe(LOG_MESSAGE, self._log_message_sink)
        self.bridge.dispatcher.subscribe(PUBLISH_DIAGNOSTICS, self._diagnostics_sink)
        self.bridge.dispatcher.subscribe(HIGHLIGHTS, self._highlights_sink)
        return self.bridge

    def _log_message_sink(self, message: Any) -> None:
        self.window_log_message(
            lsp.LogMessageParams(type=lsp.MessageType.Info, message=str(message))
        )

    def _diagnostics_sink(self, event: DiagnosticsEvent) -> None:
        self.text_document_publish_diagnostics(
            lsp.PublishDiagnosticsParams(uri=to_file_uri(event.file), diagnostics=event.diagnostics)
        )

    def _highlights_sink(self, event: HighlightsEvent) -> None:
        self.protocol.notify(
            HIGHLIGHTS_NOTIFICATION,
            {
                "uri": to_file_uri(event.file),
                "language": event.language,
                "highlights": [
                    {
                        "highlightKind": int(h.highlight_kind) if h.highlight_kind is not None else None,
                        "token": h.token,
                    }
                    for h in event.highlights
                ],
            },
        )

    async def send_bridge_request(self, uri: str, name: str, params: Any) -> Any:
        """Route a request through the bridge; failures are logged, not raised."""
        if self.bridge is None:
            return None
        try:
            return await self.bridge.dispatcher.send_request(uri, name, params)
        except Exception as e:
            logger.debug(f"{name} failed for {uri}: {e}")
            return None


# Create server instance
server = TypeScriptLanguageServer(
    name="tsserver-lsp",
    version=__version__,
)


# ============================================================================
# Lifecycle Events
# ============================================================================


@server.feature(lsp.INITIALIZE)
async def initialize(params: lsp.InitializeParams) -> None:
    """Handle the initialize request - configure the backend from initializationOptions."""
    server.config.update_from_options(params.initialization_options or {})

    # Started in `initialized` after the handshake completes. The workspace
    # codec carries the negotiated position encoding.
    server.create_bridge(
        TsServerHost(
            command=server.config.tsserver_command,
            request_timeout=server.config.request_timeout,
        ),
        position_codec=server.workspace.position_codec,
    )


@server.feature(lsp.INITIALIZED)
async def initialized(params: lsp.InitializedParams) -> None:
    """Handle the initialized notification, start tsserver and activate the bridge."""
    if server.backend is None or server.bridge is None:
        return

    await server.backend.start()
    server.bridge.activate()

    # Documents opened while tsserver was starting
    for uri in list(server.workspace.text_documents):
        doc = server.workspace.get_text_document(uri)
        server.bridge.on_buffer_update(unwrap_file_uri(uri), doc.source.split("\n"), doc.version)


@server.feature(lsp.SHUTDOWN)
async def shutdown(params: Any) -> None:
    """Handle the shutdown request."""
    if server.bridge is not None:
        server.bridge.deactivate()
    if server.backend is not None:
        await server.backend.stop()


# ============================================================================
# Document Events
# ============================================================================


@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
async def did_open(params: lsp.DidOpenTextDocumentParams) -> None:
    """Handle document open."""
    uri = params.text_document.uri
    logger.debug(f"Document opened: {uri}")
    if server.bridge is None:
        return

    server.bridge.dispatcher.send_notification(uri, lsp.TEXT_DOCUMENT_DID_OPEN, params)
    try:
        await server.bridge.on_buffer_enter(unwrap_file_uri(uri))
    except Exception as e:
        logger.debug(f"Highlights failed for {uri}: {e}")


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
async def did_change(params: lsp.DidChangeTextDocumentParams) -> None:
    """Handle document change."""
    uri = params.text_document.uri
    logger.debug(f"Document changed: {uri}")
    if server.bridge is None:
        return

    server.bridge.dispatcher.send_notification(uri, lsp.TEXT_DOCUMENT_DID_CHANGE, params)


@server.feature(lsp.TEXT_DOCUMENT_DID_SAVE)
async def did_save(params: lsp.DidSaveTextDocumentParams) -> None:
    """Handle document save."""
    uri = params.text_document.uri
    logger.debug(f"Document saved: {uri}")
    if server.bridge is None:
        return

    try:
        await server.bridge.on_buffer_saved(unwrap_file_uri(uri))
    except Exception as e:
        logger.debug(f"Save handling failed for {uri}: {e}")


@server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
async def did_close(params: lsp.DidCloseTextDocumentParams) -> None:
    """Handle document close."""
    uri = params.text_document.uri
    logger.debug(f"Document closed: {uri}")
    if server.bridge is not None:
        server.bridge.on_buffer_closed(unwrap_file_uri(uri))

    # Clear diagnostics
    server.text_document_publish_diagnostics(
        lsp.PublishDiagnosticsParams(uri=uri, diagnostics=[])
    )


# ============================================================================
# Hover
# ============================================================================


@server.feature(lsp.TEXT_DOCUMENT_HOVER)
async def hover(params: lsp.HoverParams) -> lsp.Hover | None:
    """Provide hover information."""
    return await server.send_bridge_request(
        params.text_document.uri, lsp.TEXT_DOCUMENT_HOVER, params
    )


# ============================================================================
# Completion
# ============================================================================


@server.feature(
    lsp.TEXT_DOCUMENT_COMPLETION,
    lsp.CompletionOptions(
        trigger_characters=["."],
        resolve_provider=True,
    ),
)
async def completion(params: lsp.CompletionParams) -> lsp.CompletionList | None:
    """Provide completions."""
    uri = params.text_document.uri
    result = await server.send_bridge_request(uri, lsp.TEXT_DOCUMENT_COMPLETION, params)
    if result is None:
        return None

    pos = to_backend_position(params.position)
    data = {"file": unwrap_file_uri(uri), "line": pos.line, "offset": pos.offset}
    return lsp.CompletionList(is_incomplete=False, items=to_completion_items(result, data))


@server.feature(lsp.COMPLETION_ITEM_RESOLVE)
async def completion_resolve(item: lsp.CompletionItem) -> lsp.CompletionItem:
    """Resolve additional completion item details."""
    file_name = item.data.get("file") if isinstance(item.data, dict) else None
    detail = await server.send_bridge_request(file_name, lsp.COMPLETION_ITEM_RESOLVE, item)
    if detail is not None:
        item.detail = detail.detail
        if detail.documentation:
            item.documentation = detail.documentation
    return item


# ============================================================================
# Go to Definition
# ============================================================================


@server.feature(lsp.TEXT_DOCUMENT_DEFINITION)
async def definition(params: lsp.DefinitionParams) -> lsp.Location | None:
    """Provide go-to-definition."""
    result = await server.send_bridge_request(
        params.text_document.uri, lsp.TEXT_DOCUMENT_DEFINITION, params
    )
    return definition_location(result) if result is not None else None


# ============================================================================
# Find References
# ============================================================================


@server.feature(lsp.TEXT_DOCUMENT_REFERENCES)
async def references(params: lsp.ReferenceParams) -> list[lsp.Location] | None:
    """Provide find references."""
    result = await server.send_bridge_request(
        params.text_document.uri, lsp.TEXT_DOCUMENT_REFERENCES, params
    )
    if result is None:
        return None
    return reference_locations(result) or None


# ============================================================================
# Formatting
# ============================================================================


@server.feature(lsp.TEXT_DOCUMENT_FORMATTING)
async def formatting(params: lsp.DocumentFormattingParams) -> list[lsp.TextEdit] | None:
    """Provide whole-document formatting edits."""
    result = await server.send_bridge_request(
        params.text_document.uri, lsp.TEXT_DOCUMENT_FORMATTING, params
    )
    if result is None:
        return None
    return formatting_text_edits(result)


# ============================================================================
# Signature Help
# ============================================================================


@server.feature(
    lsp.TEXT_DOCUMENT_SIGNATURE_HELP,
    lsp.SignatureHelpOptions(
        trigger_characters=["(", ","],
        retrigger_characters=[","],
    ),
)
async def signature_help(params: lsp.SignatureHelpParams) -> lsp.SignatureHelp | None:
    """Provide signature help."""
    result = await server.send_bridge_request(
        params.text_document.uri, lsp.TEXT_DOCUMENT_SIGNATURE_HELP, params
    )
    if result is None:
        return None
    return signature_help_to_lsp(result)


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the language server."""
    parser = argparse.ArgumentParser(
        description="TypeScript Language Server backed by tsserver",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--stdio",
        action="store_true",
        default=True,
        help="Use stdio for communication (default)",
    )
    parser.add_argument(
        "--tcp",
        action="store_true",
        help="Use TCP for communication",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="TCP host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=2089,
        help="TCP port (default: 2089)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Set the logging level (default: WARNING)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tsserver-lsp {__version__}",
    )
    parser.add_argument(
        "--tsserver-path",
        nargs="+",
        help='Command to start tsserver (default: "tsserver")',
    )
    parser.add_argument(
        "--sync-throttle",
        type=float,
        default=0.05,
        help="Seconds between full-buffer syncs to tsserver (default: 0.05)",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=5.0,
        help="Seconds to wait for a tsserver response (default: 5.0)",
    )

    args = parser.parse_args()

    # Set log level
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Store backend configuration for use during initialization
    if args.tsserver_path:
        server.config.tsserver_command = args.tsserver_path
    server.config.sync_throttle = args.sync_throttle
    server.config.request_timeout = args.request_timeout

    if args.tcp:
        logger.info(f"Starting tsserver-lsp in TCP mode on {args.host}:{args.port}")
        server.start_tcp(args.host, args.port)
    else:
        logger.info("Starting tsserver-lsp in stdio mode")
        server.start_io()


if __name__ == "__main__":
    main()
