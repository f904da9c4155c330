"""Design-document-to-core mapping adapter.

This keeps the JSON node layout of exported design documents out of the core.
Both the REST export shape (``style.fontSize``, ``absoluteBoundingBox``) and a
flat shape (``fontSize``, ``x``/``y``) are accepted.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional

from copytune.core.models import AncestorRef, SceneElement

TEXT_NODE_TYPE = "TEXT"

Node = dict[str, Any]


def _font_size(node: Node) -> Optional[float]:
    value = node.get("fontSize")
    if value is None:
        value = (node.get("style") or {}).get("fontSize")
    # Mixed styles are exported as a string sentinel.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _position(node: Node) -> tuple[float, float]:
    box = node.get("absoluteBoundingBox") or {}
    x = node.get("x", box.get("x", 0.0))
    y = node.get("y", box.get("y", 0.0))
    try:
        return float(x), float(y)
    except (TypeError, ValueError):
        return 0.0, 0.0


def ancestor_ref(node: Node) -> AncestorRef:
    return AncestorRef(name=str(node.get("name", "")), node_type=str(node.get("type", "")).upper())


def element_from_node(node: Node, ancestors: tuple[AncestorRef, ...]) -> SceneElement:
    """Build a SceneElement from a text node and its nearest-first ancestors."""

    return SceneElement(
        id=str(node.get("id", "")),
        name=str(node.get("name", "")),
        text=str(node.get("characters", "")),
        ancestors=ancestors,
        font_size=_font_size(node),
        position=_position(node),
    )


def iter_text_nodes(
    node: Node, ancestors: tuple[AncestorRef, ...] = ()
) -> Iterator[tuple[Node, tuple[AncestorRef, ...]]]:
    """Yield every text node below ``node`` (inclusive) in document order."""

    if str(node.get("type", "")).upper() == TEXT_NODE_TYPE:
        yield node, ancestors
        return
    child_ancestors = (ancestor_ref(node), *ancestors)
    for child in node.get("children") or []:
        if isinstance(child, dict):
            yield from iter_text_nodes(child, child_ancestors)


def iter_nodes_with_ancestors(
    node: Node, ancestors: tuple[AncestorRef, ...] = ()
) -> Iterator[tuple[Node, tuple[AncestorRef, ...]]]:
    """Yield every node with its nearest-first ancestor chain."""

    yield node, ancestors
    child_ancestors = (ancestor_ref(node), *ancestors)
    for child in node.get("children") or []:
        if isinstance(child, dict):
            yield from iter_nodes_with_ancestors(child, child_ancestors)
