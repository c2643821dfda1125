"""Owned XML tree used for SVG fragments and the composite document.

Names are kept exactly as written in the source (``xlink:href``,
``svg:rect``) and namespace declarations stay ordinary ``xmlns``/``xmlns:p``
attributes, so a subtree can be moved between documents and serialized
without namespace rewriting.
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Union

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
XML_NS = "http://www.w3.org/XML/1998/namespace"

RAW_TEXT_ELEMENTS = {"script", "style"}

# Tree walks are recursive; deeper documents are rejected at parse time.
MAX_DEPTH = 128


class MarkupError(ValueError):
    """Raised when markup is not well-formed XML."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


@dataclass
class Text:
    value: str


@dataclass
class Comment:
    value: str


@dataclass
class ProcessingInstruction:
    target: str
    value: str = ""


@dataclass
class Element:
    name: str
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)

    @property
    def local(self) -> str:
        return local_name(self.name)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.attrs.get(key, default)

    def set(self, key: str, value: str) -> None:
        self.attrs[key] = value

    def elements(self) -> List["Element"]:
        """Direct element children, skipping text, comments and PIs."""
        return [child for child in self.children if isinstance(child, Element)]

    def iter(self) -> Iterator["Element"]:
        """Depth-first walk over this element and every descendant element."""
        yield self
        for child in self.children:
            if isinstance(child, Element):
                yield from child.iter()

    def text(self) -> str:
        return "".join(child.value for child in self.children if isinstance(child, Text))


Node = Union[Element, Text, Comment, ProcessingInstruction]


@dataclass
class Document:
    root: Element
    prolog: List[Union[Comment, ProcessingInstruction]] = field(default_factory=list)


def local_name(name: str) -> str:
    return name.split(":", 1)[1] if ":" in name else name


def clone(node: Node) -> Node:
    if isinstance(node, Element):
        return Element(node.name, dict(node.attrs), [clone(child) for child in node.children])
    return replace(node)


def append(parent: Element, node: Node) -> Node:
    if isinstance(node, Text) and parent.children and isinstance(parent.children[-1], Text):
        parent.children[-1].value += node.value
        return parent.children[-1]
    parent.children.append(node)
    return node


class _TreeBuilder:
    """``XMLParser`` target that rebuilds qualified names from namespace events."""

    def __init__(self, max_depth: int = MAX_DEPTH) -> None:
        self._max_depth = max_depth
        self._stack: List[Element] = []
        self._scopes: List[Dict[str, str]] = [{"xml": XML_NS}]
        self._pending: List[tuple[str, str]] = []
        self._prolog: List[Union[Comment, ProcessingInstruction]] = []
        self._root: Optional[Element] = None

    def start_ns(self, prefix: str, uri: str) -> None:
        self._pending.append((prefix or "", uri))

    def start(self, tag: str, attrib: Dict[str, str]) -> None:
        scope = dict(self._scopes[-1])
        attrs: Dict[str, str] = {}
        for prefix, uri in self._pending:
            scope[prefix] = uri
            attrs[f"xmlns:{prefix}" if prefix else "xmlns"] = uri
        self._pending = []
        if len(self._stack) >= self._max_depth:
            raise MarkupError(f"elements are nested deeper than {self._max_depth} levels")
        self._scopes.append(scope)
        for key, value in attrib.items():
            attrs[self._qualify(key, scope, attribute=True)] = value

        element = Element(self._qualify(tag, scope, attribute=False), attrs)
        if self._stack:
            self._stack[-1].children.append(element)
        elif self._root is None:
            self._root = element
        self._stack.append(element)

    def end(self, tag: str) -> Element:
        self._scopes.pop()
        return self._stack.pop()

    def data(self, data: str) -> None:
        if self._stack:
            append(self._stack[-1], Text(data))

    def comment(self, text: str) -> None:
        if self._stack:
            self._stack[-1].children.append(Comment(text))
        elif self._root is None:
            self._prolog.append(Comment(text))

    def pi(self, target: str, text: Optional[str] = None) -> None:
        node = ProcessingInstruction(target, text or "")
        if self._stack:
            self._stack[-1].children.append(node)
        elif self._root is None:
            self._prolog.append(node)

    def close(self) -> Document:
        if self._root is None:
            raise MarkupError("document has no root element")
        return Document(self._root, self._prolog)

    @staticmethod
    def _qualify(name: str, scope: Dict[str, str], *, attribute: bool) -> str:
        if not name.startswith("{"):
            return name
        uri, local = name[1:].split("}", 1)
        candidates = [prefix for prefix, bound in scope.items() if bound == uri]
        if not attribute and "" in candidates:
            return local
        named = sorted(prefix for prefix in candidates if prefix)
        if named:
            return f"{named[-1]}:{local}"
        return local


def parse(text: str, max_depth: int = MAX_DEPTH) -> Document:
    builder = _TreeBuilder(max_depth)
    parser = ET.XMLParser(target=builder)
    try:
        parser.feed(text)
        return parser.close()
    except ET.ParseError as exc:
        line, column = getattr(exc, "position", (None, None))
        raise MarkupError(f"failed to parse XML: {exc}", line, column) from exc


_TEXT_ESCAPES = {"&": "&amp;", "<": "&lt;", ">": "&gt;"}
_ATTR_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    '"': "&quot;",
    "\n": "&#10;",
    "\r": "&#13;",
    "\t": "&#9;",
}
_TEXT_RE = re.compile(r"[&<>]")
_ATTR_RE = re.compile(r'[&<"\n\r\t]')


def escape_text(value: str) -> str:
    return _TEXT_RE.sub(lambda m: _TEXT_ESCAPES[m.group(0)], value)


def escape_attr(value: str) -> str:
    return _ATTR_RE.sub(lambda m: _ATTR_ESCAPES[m.group(0)], value)


def _cdata(value: str) -> str:
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def serialize(node: Union[Document, Node]) -> str:
    parts: List[str] = []
    if isinstance(node, Document):
        for item in node.prolog:
            _write(item, parts, raw_text=False)
        _write(node.root, parts, raw_text=False)
    else:
        _write(node, parts, raw_text=False)
    return "".join(parts)


def _write(node: Node, parts: List[str], *, raw_text: bool) -> None:
    if isinstance(node, Text):
        if raw_text and _TEXT_RE.search(node.value):
            parts.append(_cdata(node.value))
        else:
            parts.append(escape_text(node.value))
        return
    if isinstance(node, Comment):
        parts.append(f"<!--{node.value}-->")
        return
    if isinstance(node, ProcessingInstruction):
        body = f" {node.value}" if node.value else ""
        parts.append(f"<?{node.target}{body}?>")
        return

    parts.append(f"<{node.name}")
    for key, value in node.attrs.items():
        parts.append(f' {key}="{escape_attr(value)}"')
    if not node.children:
        parts.append("/>")
        return
    parts.append(">")
    child_raw = node.local in RAW_TEXT_ELEMENTS
    for child in node.children:
        _write(child, parts, raw_text=child_raw)
    parts.append(f"</{node.name}>")


__all__ = [
    "Comment",
    "Document",
    "Element",
    "MarkupError",
    "Node",
    "ProcessingInstruction",
    "SVG_NS",
    "Text",
    "XLINK_NS",
    "append",
    "clone",
    "local_name",
    "parse",
    "serialize",
]
