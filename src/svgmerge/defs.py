"""Shared definition pool for the composite document."""
from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional

from .layout import LayoutItem
from .markup import Element, clone

logger = logging.getLogger(__name__)


def definition_containers(root: Element) -> Iterator[Element]:
    """Yield every ``defs`` below ``root``; a ``defs`` inside another is part of its content."""
    for child in root.elements():
        if child.local == "defs":
            yield child
        else:
            yield from definition_containers(child)


class DefinitionPool:
    """Gradients, filters, symbols and friends hoisted out of every fragment.

    The ``<defs>`` container is only created once something is merged, and it
    is always the first child of the canvas so references resolve no matter
    which fragment is drawn first. Ids are first-write-wins.
    """

    def __init__(self, canvas: Element) -> None:
        self._canvas = canvas
        self._container: Optional[Element] = None
        self._by_id: Dict[str, Element] = {}

    @property
    def container(self) -> Optional[Element]:
        return self._container

    def __contains__(self, def_id: str) -> bool:
        return def_id in self._by_id

    def __len__(self) -> int:
        return len(self._container.elements()) if self._container is not None else 0

    def get(self, def_id: str) -> Optional[Element]:
        return self._by_id.get(def_id)

    def _ensure_container(self) -> Element:
        if self._container is None:
            self._container = Element("defs")
            self._canvas.children.insert(0, self._container)
        return self._container

    def merge(
        self,
        fragment_root: Element,
        item: Optional[LayoutItem] = None,
    ) -> int:
        added = 0
        for defs in definition_containers(fragment_root):
            for child in defs.elements():
                def_id = child.get("id")
                if def_id and def_id in self._by_id:
                    logger.debug("dropping duplicate definition id=%s from %s", def_id, item.url if item else "fragment")
                    continue
                copy = clone(child)
                self._ensure_container().children.append(copy)
                if def_id:
                    self._by_id[def_id] = copy
                added += 1
        return added
