"""
Highlights derived from tsserver navigation trees.

Flattens the hierarchical `navtree` response into a list of
(category, token) entries, one per span per node, in pre-order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from lsprotocol import types as lsp

from tsserver_lsp.translator import highlight_kind


@dataclass
class HighlightEntry:
    highlight_kind: lsp.SymbolKind | None
    token: str


def flatten_navigation_tree(
    nodes: list[Mapping[str, Any]] | None,
    highlights: list[HighlightEntry] | None = None,
    lookup: Callable[[str | None], lsp.SymbolKind | None] = highlight_kind,
) -> list[HighlightEntry]:
    """Append one highlight per span of every node, parents before children.

    Unmapped kinds produce entries with a None category. A node without
    spans contributes nothing but its children are still visited.
    """
    if highlights is None:
        highlights = []
    if not nodes:
        return highlights

    for node in nodes:
        category = lookup(node.get("kind"))
        for _span in node.get("spans") or []:
            highlights.append(HighlightEntry(highlight_kind=category, token=node.get("text", "")))

        if node.get("childItems"):
            flatten_navigation_tree(node["childItems"], highlights, lookup)

    return highlights


def highlights_from_navtree(tree: Mapping[str, Any] | None) -> list[HighlightEntry]:
    """Flatten the children of a navtree root (the root is the file itself)."""
    if not tree:
        return []
    return flatten_navigation_tree(tree.get("childItems"))
