"""
Completion provider for tsserver LSP.

Derives the identifier prefix under the cursor from the buffer mirror,
skips the tsserver round-trip when there is nothing useful to complete,
and filters tsserver's completion entries against the prefix.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lsprotocol import types as lsp

from tsserver_lsp.translator import CompletionDetail, completion_kind, convert_completion_details

if TYPE_CHECKING:
    from tsserver_lsp.backend import TypeScriptBackend
    from tsserver_lsp.buffers import BufferMirror

logger = logging.getLogger(__name__)

_IDENTIFIER_CHAR = re.compile(r"[_a-z]", re.IGNORECASE)
MEMBER_ACCESS = "."


@dataclass
class CompletionEntry:
    label: str
    kind: lsp.CompletionItemKind | None


@dataclass
class CompletionResult:
    base: str
    completions: list[CompletionEntry] = field(default_factory=list)


def resolve_prefix(line_text: str, column: int) -> tuple[str, int]:
    """Scan left from a one-based cursor column collecting identifier characters.

    Returns:
        The prefix and the index of the first character left of it
        (-1 when the prefix runs to the start of the line).
    """
    col = min(column - 2, len(line_text) - 1)
    prefix = ""
    while col >= 0:
        char = line_text[col]
        if not _IDENTIFIER_CHAR.match(char):
            break
        prefix = char + prefix
        col -= 1
    return prefix, col


class CompletionResolver:
    """Provides filtered completions for mirrored TypeScript buffers."""

    def __init__(self, backend: TypeScriptBackend, mirror: BufferMirror):
        self.backend = backend
        self.mirror = mirror

    async def get_completions(self, path: str, line: int, column: int) -> CompletionResult:
        """Get completions at a one-based line and column (editor units).

        The prefix is scanned in string indices; tsserver is still asked
        at the editor column.
        """
        if column <= 1:
            return CompletionResult(base="")

        current_line = self.mirror.get_line(path, line)
        prefix, base_pos = resolve_prefix(current_line, self.mirror.to_string_column(path, line, column))

        preceding = current_line[base_pos] if base_pos >= 0 else ""
        if not prefix and preceding != MEMBER_ACCESS:
            return CompletionResult(base=prefix)

        logger.debug(f"Get completions: current line '{current_line}', prefix '{prefix}'")

        entries = await self.backend.get_completions(path, line, column, prefix)

        completions = [
            CompletionEntry(label=entry.get("name", ""), kind=completion_kind(entry.get("kind")))
            for entry in entries or []
            if not prefix or entry.get("name", "").startswith(prefix)
        ]
        return CompletionResult(base=prefix, completions=completions)

    async def get_completion_details(
        self, path: str, line: int, column: int, label: str
    ) -> CompletionDetail | None:
        """Get documentation and signature detail for one completion label."""
        if not path:
            return None

        details = await self.backend.get_completion_details(path, line, column, [label])
        return convert_completion_details(details)


def to_completion_items(
    result: CompletionResult, data: dict | None = None
) -> list[lsp.CompletionItem]:
    """Convert a completion result to LSP completion items.

    `data` (file and one-based position) is attached to every item so
    completionItem/resolve can ask tsserver for details later.
    """
    return [
        lsp.CompletionItem(label=entry.label, kind=entry.kind, data=data)
        for entry in result.completions
    ]
