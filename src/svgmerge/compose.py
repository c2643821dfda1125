"""Assemble every layout item onto one fixed-size SVG canvas."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .defs import DefinitionPool
from .diagnostics import Diagnostics
from .errors import FragmentError
from .layout import LayoutItem
from .markup import SVG_NS, XLINK_NS, Document, Element, clone
from .normalize import Fragment, fmt, group_attributes, normalize
from .resolver import ContentResolver, MarkupContent, RasterContent

logger = logging.getLogger(__name__)

# Visible window; content may be positioned outside it.
CANVAS_MIN_X = -150
CANVAS_MAX_X = 1050
CANVAS_MIN_Y = 0
CANVAS_MAX_Y = 600
CANVAS_WIDTH = CANVAS_MAX_X - CANVAS_MIN_X
CANVAS_HEIGHT = CANVAS_MAX_Y - CANVAS_MIN_Y


def new_canvas() -> Element:
    root = Element(
        "svg",
        {
            "xmlns": SVG_NS,
            "xmlns:xlink": XLINK_NS,
            "width": fmt(CANVAS_WIDTH),
            "height": fmt(CANVAS_HEIGHT),
            "viewBox": f"{fmt(CANVAS_MIN_X)} {fmt(CANVAS_MIN_Y)} {fmt(CANVAS_WIDTH)} {fmt(CANVAS_HEIGHT)}",
        },
    )
    root.children.append(
        Element(
            "rect",
            {
                "x": fmt(CANVAS_MIN_X),
                "y": fmt(CANVAS_MIN_Y),
                "width": fmt(CANVAS_WIDTH),
                "height": fmt(CANVAS_HEIGHT),
                "fill": "none",
            },
        )
    )
    return root


def _strip_definitions(element: Element) -> Element:
    """Clone ``element`` without nested ``defs``; their content lives in the pool."""
    copy = Element(element.name, dict(element.attrs))
    for child in element.children:
        if isinstance(child, Element):
            if child.local != "defs":
                copy.children.append(_strip_definitions(child))
        else:
            copy.children.append(clone(child))
    return copy


class Composer:
    def __init__(self, resolver: ContentResolver, diagnostics: Diagnostics) -> None:
        self.resolver = resolver
        self.diagnostics = diagnostics
        self.root = new_canvas()
        self.pool = DefinitionPool(self.root)
        self.placed = 0

    def add(self, index: int, item: LayoutItem) -> bool:
        """Place one item; a failing item is reported and leaves the canvas untouched."""
        try:
            content = self.resolver.resolve(item, self.diagnostics, index)
            if isinstance(content, RasterContent):
                self.root.children.append(self._image(index, item, content))
            else:
                self._place_fragment(index, item, content)
        except FragmentError as exc:
            logger.info("skipping item %d: %s", index, exc)
            self.diagnostics.warn(f"Error processing item: {exc}", index=index, item=item)
            return False
        self.placed += 1
        return True

    def compose(self, items: Sequence[LayoutItem]) -> Document:
        for index, item in enumerate(items):
            self.add(index, item)
        return Document(self.root)

    def _item_id(self, index: int, item: LayoutItem) -> str:
        return item.id or f"item-{index}"

    def _image(self, index: int, item: LayoutItem, content: RasterContent) -> Element:
        return Element(
            "image",
            {
                "id": self._item_id(index, item),
                "x": fmt(item.x),
                "y": fmt(item.y),
                "width": fmt(item.width),
                "height": fmt(item.height),
                "href": content.href,
            },
        )

    def _place_fragment(self, index: int, item: LayoutItem, content: MarkupContent) -> None:
        fragment = normalize(content.text, item)
        group = self._group(index, item, fragment)
        self.pool.merge(fragment.root, item)
        self._hoist_namespaces(index, item, fragment.root)
        self.root.children.append(group)

    def _group(self, index: int, item: LayoutItem, fragment: Fragment) -> Element:
        group = Element("g", {"id": self._item_id(index, item), "transform": fragment.transform})
        group.attrs.update(group_attributes(fragment.root))
        for child in fragment.root.elements():
            if child.local == "defs":
                continue
            group.children.append(_strip_definitions(child))
        return group

    def _hoist_namespaces(self, index: int, item: LayoutItem, fragment_root: Element) -> None:
        for key, uri in fragment_root.attrs.items():
            if not key.startswith("xmlns:"):
                continue
            bound = self.root.get(key)
            if bound is None:
                self.root.set(key, uri)
            elif bound != uri:
                self.diagnostics.warn(
                    f"namespace prefix {key[6:]!r} is already bound to {bound}; keeping it over {uri}",
                    index=index,
                    item=item,
                )


def compose(
    items: Sequence[LayoutItem],
    resolver: ContentResolver,
    diagnostics: Optional[Diagnostics] = None,
) -> Document:
    composer = Composer(resolver, diagnostics if diagnostics is not None else Diagnostics())
    return composer.compose(items)


def positioned_elements(document: Document) -> List[Element]:
    """Top-level groups and images placed for layout items, in draw order."""
    return [child for child in document.root.elements() if child.local in ("g", "image")]
