"""JSON design-document host adapter.

Implements the core DocumentHostPort over an exported design document held
in memory. Edits are written back with ``save()``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional, Sequence

from copytune.adapters.scene_mapper import (
    TEXT_NODE_TYPE,
    Node,
    element_from_node,
    iter_nodes_with_ancestors,
    iter_text_nodes,
)
from copytune.core.models import AncestorRef, SceneElement

LOGGER = logging.getLogger(__name__)

PAGE_NODE_TYPES = frozenset({"CANVAS", "PAGE"})


def _font_family(node: Node) -> Optional[str]:
    font_name = node.get("fontName")
    if isinstance(font_name, dict) and font_name.get("family"):
        return str(font_name["family"])
    family = (node.get("style") or {}).get("fontFamily")
    return str(family) if family else None


class JsonDocumentHost:
    """Scan and edit text nodes of one page of a JSON design document."""

    def __init__(
        self,
        document: dict[str, Any],
        path: Optional[str] = None,
        page: Optional[str] = None,
        missing_fonts: Iterable[str] = (),
    ) -> None:
        self._document = document
        self._path = path
        self._page_name = page
        self._missing_fonts = {family.lower() for family in missing_fonts}
        self.dirty = False

    @classmethod
    def from_file(cls, path: str, page: Optional[str] = None, missing_fonts: Iterable[str] = ()) -> "JsonDocumentHost":
        with open(path, "r", encoding="utf-8") as handle:
            return cls(json.load(handle), path=path, page=page, missing_fonts=missing_fonts)

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def project_name(self) -> str:
        return str(self._document.get("name") or self._root().get("name") or "未命名项目")

    def _root(self) -> Node:
        return self._document.get("document", self._document)

    def _page(self) -> Node:
        root = self._root()
        pages = [child for child in root.get("children") or [] if str(child.get("type", "")).upper() in PAGE_NODE_TYPES]
        if not pages:
            return root
        if self._page_name:
            for page in pages:
                if page.get("name") == self._page_name:
                    return page
            raise KeyError(f"Page not found: {self._page_name}")
        return pages[0]

    def _indexed(self) -> dict[str, tuple[Node, tuple[AncestorRef, ...]]]:
        return {str(node.get("id")): (node, ancestors) for node, ancestors in iter_nodes_with_ancestors(self._root()) if "id" in node}

    async def scan(self, selection: Optional[Sequence[str]] = None) -> list[SceneElement]:
        """Return text elements of the whole page or below the selected ids."""

        index = self._indexed()
        if selection is None:
            page = self._page()
            starts = [index.get(str(page.get("id")), (page, ()))]
        else:
            starts = [index[node_id] for node_id in selection if node_id in index]

        elements: list[SceneElement] = []
        seen: set[str] = set()
        for start, ancestors in starts:
            for node, node_ancestors in iter_text_nodes(start, ancestors):
                element = element_from_node(node, node_ancestors)
                if element.id in seen:
                    continue
                seen.add(element.id)
                elements.append(element)
        return elements

    async def set_text(self, element_id: str, text: str) -> bool:
        """Replace a text node's characters; ``False`` when it cannot be edited."""

        entry = self._indexed().get(element_id)
        if entry is None:
            LOGGER.warning("Node %s no longer exists", element_id)
            return False
        node, _ = entry
        if str(node.get("type", "")).upper() != TEXT_NODE_TYPE:
            LOGGER.warning("Node %s is not a text node", element_id)
            return False
        family = _font_family(node)
        if family and family.lower() in self._missing_fonts:
            LOGGER.warning("Font %s for node %s cannot be loaded", family, element_id)
            return False
        node["characters"] = text
        self.dirty = True
        return True

    def save(self, path: Optional[str] = None) -> None:
        target = path or self._path
        if not target:
            raise ValueError("No path to save the document to")
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(self._document, handle, ensure_ascii=False, indent=2)
        self.dirty = False
