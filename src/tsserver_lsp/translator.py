"""
Coordinate and shape translation for tsserver LSP.

Pure conversion functions between the editor's view of the world
(zero-based line/character, document URIs) and tsserver's view
(one-based line/offset, file paths), plus reshaping of raw tsserver
response bodies into editor-facing results.

Raw bodies are plain dicts as decoded from tsserver's JSON output.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import quote, unquote

from lsprotocol import types as lsp

DIAGNOSTIC_SOURCE = "typescript-compiler"


# ============================================================================
# Positions
# ============================================================================


@dataclass(frozen=True)
class BackendPosition:
    """A tsserver position: one-based line and one-based offset."""

    line: int
    offset: int


def to_backend_position(position: lsp.Position) -> BackendPosition:
    """Convert a zero-based editor position to a one-based backend position."""
    return BackendPosition(line=position.line + 1, offset=position.character + 1)


def to_editor_position(position: BackendPosition) -> lsp.Position:
    """Convert a one-based backend position to a zero-based editor position."""
    return lsp.Position(line=position.line - 1, character=position.offset - 1)


def _backend_position(raw: Mapping[str, Any] | None) -> BackendPosition:
    raw = raw or {}
    return BackendPosition(line=raw.get("line", 1), offset=raw.get("offset", 1))


# ============================================================================
# Document URIs
# ============================================================================


def file_prefix(platform: str | None = None) -> str:
    """Return the file URI prefix used on `platform` (defaults to this host)."""
    if (platform or sys.platform) == "win32":
        return "file:///"
    return "file://"


def unwrap_file_uri(uri: str, platform: str | None = None) -> str:
    """Turn a file URI into a local path, percent-decoding it.

    A value without the file prefix is treated as an already-local path
    and only percent-decoded.
    """
    prefix = file_prefix(platform)
    if uri.startswith(prefix):
        uri = uri[len(prefix):]
    return unquote(uri)


def to_file_uri(path: str, platform: str | None = None) -> str:
    """Inverse of unwrap_file_uri."""
    return file_prefix(platform) + quote(path.replace("\\", "/"), safe="/:")


# ============================================================================
# Kind lookups
# ============================================================================

COMPLETION_KINDS: Mapping[str, lsp.CompletionItemKind] = MappingProxyType({
    "let": lsp.CompletionItemKind.Variable,
    "interface": lsp.CompletionItemKind.Interface,
    "alias": lsp.CompletionItemKind.Reference,
    "color": lsp.CompletionItemKind.Color,
    "const": lsp.CompletionItemKind.Value,
    "constructor": lsp.CompletionItemKind.Constructor,
    "class": lsp.CompletionItemKind.Class,
    "type": lsp.CompletionItemKind.Class,
    "directory": lsp.CompletionItemKind.File,
    "file": lsp.CompletionItemKind.File,
    "script": lsp.CompletionItemKind.File,
    "var": lsp.CompletionItemKind.Variable,
    "property": lsp.CompletionItemKind.Property,
    "parameter": lsp.CompletionItemKind.Variable,
    "module": lsp.CompletionItemKind.Module,
    "external module name": lsp.CompletionItemKind.Module,
    "method": lsp.CompletionItemKind.Method,
    "function": lsp.CompletionItemKind.Function,
    "unit": lsp.CompletionItemKind.Unit,
    "keyword": lsp.CompletionItemKind.Keyword,
    "text": lsp.CompletionItemKind.Text,
})

# Highlight categories for navigation tree nodes. "function" and "method"
# are deliberately crossed; editors key their colours off these values.
HIGHLIGHT_KINDS: Mapping[str, lsp.SymbolKind] = MappingProxyType({
    "let": lsp.SymbolKind.Variable,
    "const": lsp.SymbolKind.Constant,
    "var": lsp.SymbolKind.Variable,
    "alias": lsp.SymbolKind.Package,
    "function": lsp.SymbolKind.Method,
    "method": lsp.SymbolKind.Function,
    "property": lsp.SymbolKind.Property,
    "class": lsp.SymbolKind.Class,
    "interface": lsp.SymbolKind.Interface,
})


def completion_kind(kind: str | None) -> lsp.CompletionItemKind | None:
    """Map a tsserver kind string to a completion kind, or None if unmapped."""
    if not kind:
        return None
    return COMPLETION_KINDS.get(kind)


def highlight_kind(kind: str | None) -> lsp.SymbolKind | None:
    """Map a tsserver kind string to a highlight category, or None if unmapped."""
    if not kind:
        return None
    return HIGHLIGHT_KINDS.get(kind)


# ============================================================================
# Display parts
# ============================================================================


def to_display_string(display_parts: Any) -> str:
    """Concatenate `{text, kind}` display parts into a flat string."""
    if not isinstance(display_parts, list):
        return ""
    return "".join(part.get("text", "") for part in display_parts if isinstance(part, dict))


def _text_or_parts(value: Any) -> str:
    # Newer tsservers send documentation as display parts instead of a string
    if isinstance(value, str):
        return value
    return to_display_string(value)


# ============================================================================
# References
# ============================================================================


@dataclass
class ReferenceItem:
    full_path: str
    line: int
    column: int
    line_text: str


@dataclass
class ReferencesResult:
    token_name: str
    items: list[ReferenceItem] = field(default_factory=list)


def convert_references(body: Mapping[str, Any] | None) -> ReferencesResult:
    """Reshape a `references` body.

    Line and column are tsserver's one-based start line and offset,
    passed through unchanged.
    """
    body = body or {}
    items = []
    for ref in body.get("refs") or []:
        start = _backend_position(ref.get("start"))
        items.append(
            ReferenceItem(
                full_path=ref.get("file", ""),
                line=start.line,
                column=start.offset,
                line_text=ref.get("lineText", ""),
            )
        )
    return ReferencesResult(token_name=body.get("symbolName", ""), items=items)


def reference_locations(result: ReferencesResult) -> list[lsp.Location]:
    """Convert a references result to zero-based LSP locations."""
    locations = []
    for item in result.items:
        start = to_editor_position(BackendPosition(item.line, item.column))
        locations.append(
            lsp.Location(
                uri=to_file_uri(item.full_path),
                range=lsp.Range(start=start, end=start),
            )
        )
    return locations


# ============================================================================
# Definitions
# ============================================================================


@dataclass
class DefinitionResult:
    file_path: str
    line: int
    column: int


def convert_definitions(body: Any) -> list[DefinitionResult]:
    """Reshape every candidate of a (type)definition body, in backend order."""
    if not isinstance(body, list):
        return []
    results = []
    for span in body:
        start = _backend_position(span.get("start"))
        results.append(
            DefinitionResult(file_path=span.get("file", ""), line=start.line, column=start.offset)
        )
    return results


def select_definition(candidates: list[DefinitionResult]) -> DefinitionResult | None:
    """Pick the navigation target among several candidates.

    tsserver orders candidates by relevance, so the first one wins.
    """
    return candidates[0] if candidates else None


def convert_definition(body: Any) -> DefinitionResult | None:
    """Reshape a (type)definition body into a single navigation target."""
    return select_definition(convert_definitions(body))


def definition_location(result: DefinitionResult) -> lsp.Location:
    start = to_editor_position(BackendPosition(result.line, result.column))
    return lsp.Location(uri=to_file_uri(result.file_path), range=lsp.Range(start=start, end=start))


# ============================================================================
# Formatting
# ============================================================================


@dataclass
class EditPoint:
    line: int
    column: int


@dataclass
class FormattingEdit:
    start: EditPoint
    end: EditPoint
    new_value: str


@dataclass
class FormattingResult:
    file_path: str
    version: int | None
    edits: list[FormattingEdit] = field(default_factory=list)


def convert_formatting_edits(
    body: Any, file_path: str, version: int | None = None
) -> FormattingResult:
    """Reshape a `format` body; offsets are passed through unchanged."""
    edits = []
    for edit in body if isinstance(body, list) else []:
        start = _backend_position(edit.get("start"))
        end = _backend_position(edit.get("end"))
        edits.append(
            FormattingEdit(
                start=EditPoint(line=start.line, column=start.offset),
                end=EditPoint(line=end.line, column=end.offset),
                new_value=edit.get("newText", ""),
            )
        )
    return FormattingResult(file_path=file_path, version=version, edits=edits)


def formatting_text_edits(result: FormattingResult) -> list[lsp.TextEdit]:
    """Convert formatting edits to zero-based LSP text edits."""
    return [
        lsp.TextEdit(
            range=lsp.Range(
                start=to_editor_position(BackendPosition(edit.start.line, edit.start.column)),
                end=to_editor_position(BackendPosition(edit.end.line, edit.end.column)),
            ),
            new_text=edit.new_value,
        )
        for edit in result.edits
    ]


# ============================================================================
# Quick info
# ============================================================================


def convert_quick_info(body: Mapping[str, Any] | None) -> lsp.Hover:
    """Wrap a `quickinfo` body as `{contents: [displayString, documentation]}`."""
    body = body or {}
    return lsp.Hover(
        contents=[
            _text_or_parts(body.get("displayString")),
            _text_or_parts(body.get("documentation")),
        ]
    )


# ============================================================================
# Diagnostics
# ============================================================================


def convert_diagnostics(body: Mapping[str, Any] | None) -> list[lsp.Diagnostic]:
    """Convert a `semanticDiag` event body to editor diagnostics.

    Lines become zero-based; offsets are passed through. Every diagnostic
    is reported as an error.
    """
    body = body or {}
    diagnostics = []
    for diag in body.get("diagnostics") or []:
        start = _backend_position(diag.get("start"))
        end = _backend_position(diag.get("end"))
        diagnostics.append(
            lsp.Diagnostic(
                range=lsp.Range(
                    start=lsp.Position(line=start.line - 1, character=start.offset),
                    end=lsp.Position(line=end.line - 1, character=end.offset),
                ),
                message=diag.get("text", ""),
                severity=lsp.DiagnosticSeverity.Error,
                source=DIAGNOSTIC_SOURCE,
            )
        )
    return diagnostics


# ============================================================================
# Signature help
# ============================================================================


@dataclass
class SignatureParameter:
    text: str
    documentation: str


@dataclass
class SignatureItem:
    variable_arguments: bool
    prefix: str
    suffix: str
    separator: str
    parameters: list[SignatureParameter] = field(default_factory=list)


@dataclass
class SignatureHelpResult:
    items: list[SignatureItem] = field(default_factory=list)
    selected_item_index: int | None = None
    argument_count: int | None = None
    argument_index: int | None = None


def convert_signature_help(body: Mapping[str, Any] | None) -> SignatureHelpResult:
    """Reshape a `signatureHelp` body by flattening its display parts."""
    body = body or {}
    items = []
    for item in body.get("items") or []:
        items.append(
            SignatureItem(
                variable_arguments=bool(item.get("isVariadic", False)),
                prefix=to_display_string(item.get("prefixDisplayParts")),
                suffix=to_display_string(item.get("suffixDisplayParts")),
                separator=to_display_string(item.get("separatorDisplayParts")),
                parameters=[
                    SignatureParameter(
                        text=to_display_string(param.get("displayParts")),
                        documentation=to_display_string(param.get("documentation")),
                    )
                    for param in item.get("parameters") or []
                ],
            )
        )
    return SignatureHelpResult(
        items=items,
        selected_item_index=body.get("selectedItemIndex"),
        argument_count=body.get("argumentCount"),
        argument_index=body.get("argumentIndex"),
    )


def signature_help_to_lsp(result: SignatureHelpResult) -> lsp.SignatureHelp | None:
    """Render signature items as LSP signature information."""
    if not result.items:
        return None

    signatures = []
    for item in result.items:
        label = item.prefix + item.separator.join(p.text for p in item.parameters) + item.suffix
        signatures.append(
            lsp.SignatureInformation(
                label=label,
                parameters=[
                    lsp.ParameterInformation(
                        label=p.text,
                        documentation=p.documentation or None,
                    )
                    for p in item.parameters
                ],
            )
        )

    return lsp.SignatureHelp(
        signatures=signatures,
        active_signature=result.selected_item_index,
        active_parameter=result.argument_index,
    )


# ============================================================================
# Completion details
# ============================================================================


@dataclass
class CompletionDetail:
    label: str
    kind: lsp.CompletionItemKind | None
    documentation: str | None
    detail: str


def convert_completion_details(body: Any) -> CompletionDetail | None:
    """Reshape the first entry of a `completionEntryDetails` body."""
    if not isinstance(body, list) or not body:
        return None

    entry = body[0]
    documentation = entry.get("documentation")
    return CompletionDetail(
        label=entry.get("name", ""),
        kind=completion_kind(entry.get("kind")),
        documentation=documentation[0].get("text") if documentation else None,
        detail=to_display_string(entry.get("displayParts")),
    )
