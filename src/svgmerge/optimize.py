"""Size optimizer for SVG markup, organised as named, individually switchable passes.

``optimize(text)`` runs every pass of ``PRESET_DEFAULT`` in order. Callers
turn passes off with ``overrides={"collapse_groups": False, ...}``; an
unknown pass name is an error so a typo cannot silently re-enable a pass.
"""
from __future__ import annotations

import re
from typing import Callable, Dict, List, Mapping, Optional, Set

from .markup import Comment, Document, Element, ProcessingInstruction, Text, local_name, parse, serialize
from .normalize import parse_length, parse_view_box

PassFn = Callable[[Document], None]
PASSES: Dict[str, PassFn] = {}

PRESET_DEFAULT = (
    "remove_proc_inst",
    "remove_comments",
    "remove_metadata",
    "remove_editors_ns_data",
    "cleanup_attrs",
    "inline_styles",
    "minify_styles",
    "cleanup_ids",
    "remove_useless_defs",
    "remove_unknowns_and_defaults",
    "remove_non_inheritable_group_attrs",
    "remove_hidden_elems",
    "remove_empty_text",
    "convert_shape_to_path",
    "move_elems_attrs_to_group",
    "move_group_attrs_to_elems",
    "collapse_groups",
    "convert_path_data",
    "merge_paths",
    "remove_empty_attrs",
    "remove_empty_containers",
    "remove_view_box",
    "remove_whitespace",
)

EDITOR_NAMESPACES = {
    "http://inkscape.sourceforge.net/DTD/sodipodi-0.dtd",
    "http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd",
    "http://www.inkscape.org/namespaces/inkscape",
    "http://ns.adobe.com/AdobeIllustrator/10.0/",
    "http://ns.adobe.com/Graphs/1.0/",
    "http://ns.adobe.com/AdobeSVGViewerExtensions/3.0/",
    "http://ns.adobe.com/Variables/1.0/",
    "http://ns.adobe.com/SaveForWeb/1.0/",
    "http://ns.adobe.com/Extensibility/1.0/",
    "http://ns.adobe.com/Flows/1.0/",
    "http://ns.adobe.com/ImageReplacement/1.0/",
    "http://ns.adobe.com/GenericCustomNamespace/1.0/",
    "http://ns.adobe.com/XPath/1.0/",
    "http://www.bohemiancoding.com/sketch/ns",
}

TEXT_CONTENT_ELEMENTS = {"text", "tspan", "textPath", "title", "desc", "style", "script"}
CONTAINER_ELEMENTS = {"a", "clipPath", "defs", "g", "marker", "mask", "pattern", "switch", "symbol"}
REFERENCED_CONTAINERS = {"clipPath", "marker", "mask", "pattern"}

ATTRIBUTE_DEFAULTS = {
    "clip-rule": "nonzero",
    "fill-opacity": "1",
    "fill-rule": "nonzero",
    "opacity": "1",
    "stroke": "none",
    "stroke-dashoffset": "0",
    "stroke-linecap": "butt",
    "stroke-linejoin": "miter",
    "stroke-miterlimit": "4",
    "stroke-opacity": "1",
    "stroke-width": "1",
    "visibility": "visible",
}

INHERITABLE_ATTRIBUTES = (
    "clip-rule",
    "color",
    "fill",
    "fill-opacity",
    "fill-rule",
    "font-family",
    "font-size",
    "font-style",
    "font-weight",
    "stroke",
    "stroke-dasharray",
    "stroke-linecap",
    "stroke-linejoin",
    "stroke-opacity",
    "stroke-width",
    "visibility",
)

NON_INHERITABLE_GROUP_ATTRIBUTES = {
    "alignment-baseline",
    "baseline-shift",
    "clip",
    "dominant-baseline",
    "flood-color",
    "flood-opacity",
    "lighting-color",
    "overflow",
    "stop-color",
    "stop-opacity",
}

PATH_LIKE_ELEMENTS = {"circle", "ellipse", "g", "image", "line", "path", "polygon", "polyline", "rect", "text", "use"}

_URL_REF_RE = re.compile(r"""url\(\s*['"]?#([^'")\s]+)['"]?\s*\)""")
_TIMING_REF_RE = re.compile(r"([A-Za-z_][\w-]*)\.(?:begin|end|repeat|click|activate|focusin|focusout|mouse\w+)\b")
_PATH_TOKEN_RE = re.compile(r"[MmLlHhVvCcSsQqTtAaZz]|[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_CSS_RULE_RE = re.compile(r"([^{}]+)\{([^{}]*)\}")
_CLASS_SELECTOR_RE = re.compile(r"^\.([A-Za-z_][A-Za-z0-9_-]*)$")


def _register(name: str) -> Callable[[PassFn], PassFn]:
    def decorator(fn: PassFn) -> PassFn:
        PASSES[name] = fn
        return fn

    return decorator


def enabled_passes(overrides: Optional[Mapping[str, bool]] = None) -> List[str]:
    overrides = dict(overrides or {})
    unknown = sorted(set(overrides) - set(PASSES))
    if unknown:
        raise ValueError(f"unknown optimizer pass(es): {', '.join(unknown)}")
    return [name for name in PRESET_DEFAULT if overrides.get(name, True)]


def optimize(svg_text: str, overrides: Optional[Mapping[str, bool]] = None) -> str:
    names = enabled_passes(overrides)
    document = parse(svg_text)
    for name in names:
        PASSES[name](document)
    return serialize(document)


def _prune(element: Element, drop: Callable[[Element], bool]) -> None:
    kept = []
    for child in element.children:
        if isinstance(child, Element):
            if drop(child):
                continue
            _prune(child, drop)
        kept.append(child)
    element.children = kept


def _prefix(name: str) -> Optional[str]:
    return name.split(":", 1)[0] if ":" in name else None


def _is_blank(node) -> bool:
    return isinstance(node, Text) and not node.value.strip()


def _number(value: Optional[str]) -> Optional[float]:
    return parse_length(value, None)


def _fmt3(value: float) -> str:
    text = f"{round(value, 3):.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


@_register("remove_proc_inst")
def _remove_proc_inst(document: Document) -> None:
    document.prolog = [node for node in document.prolog if not isinstance(node, ProcessingInstruction)]
    for element in document.root.iter():
        element.children = [child for child in element.children if not isinstance(child, ProcessingInstruction)]


@_register("remove_comments")
def _remove_comments(document: Document) -> None:
    def keep(node) -> bool:
        # <!--! ... --> marks a comment that must survive (licences).
        return not isinstance(node, Comment) or node.value.startswith("!")

    document.prolog = [node for node in document.prolog if keep(node)]
    for element in document.root.iter():
        element.children = [child for child in element.children if keep(child)]


@_register("remove_metadata")
def _remove_metadata(document: Document) -> None:
    _prune(document.root, lambda element: element.local == "metadata")


@_register("remove_editors_ns_data")
def _remove_editors_ns_data(document: Document) -> None:
    prefixes: Set[str] = set()
    for element in document.root.iter():
        for key, value in element.attrs.items():
            if key.startswith("xmlns:") and value in EDITOR_NAMESPACES:
                prefixes.add(key[6:])
    if not prefixes:
        return
    _prune(document.root, lambda element: _prefix(element.name) in prefixes)
    for element in document.root.iter():
        element.attrs = {
            key: value
            for key, value in element.attrs.items()
            if _prefix(key) not in prefixes and not (key.startswith("xmlns:") and key[6:] in prefixes)
        }


@_register("cleanup_attrs")
def _cleanup_attrs(document: Document) -> None:
    for element in document.root.iter():
        for key, value in element.attrs.items():
            element.attrs[key] = re.sub(r"\s+", " ", value).strip()


def _simple_class_rules(css: str) -> Optional[List[tuple[str, Dict[str, str]]]]:
    """Parse a stylesheet made only of ``.class { ... }`` rules, else ``None``."""
    css = re.sub(r"/\*.*?\*/", "", css, flags=re.DOTALL)
    if "@" in css:
        return None
    rules: List[tuple[str, Dict[str, str]]] = []
    consumed = 0
    for match in _CSS_RULE_RE.finditer(css):
        if css[consumed:match.start()].strip():
            return None
        consumed = match.end()
        declarations: Dict[str, str] = {}
        for decl in match.group(2).split(";"):
            if ":" not in decl:
                continue
            key, value = decl.split(":", 1)
            if key.strip() and value.strip():
                declarations[key.strip().lower()] = value.strip()
        for selector in match.group(1).split(","):
            selector_match = _CLASS_SELECTOR_RE.match(selector.strip())
            if selector_match is None:
                return None
            rules.append((selector_match.group(1), declarations))
    if css[consumed:].strip():
        return None
    return rules


@_register("inline_styles")
def _inline_styles(document: Document) -> None:
    inlined: List[Element] = []
    for style in [element for element in document.root.iter() if element.local == "style"]:
        if style.get("media"):
            continue
        rules = _simple_class_rules(style.text())
        if rules is None:
            continue
        for element in document.root.iter():
            classes = set((element.get("class") or "").split())
            if not classes:
                continue
            merged: Dict[str, str] = {}
            for class_name, declarations in rules:
                if class_name in classes:
                    merged.update(declarations)
            if not merged:
                continue
            inline = ";".join(f"{key}:{value}" for key, value in merged.items())
            existing = element.get("style")
            element.set("style", f"{inline};{existing}" if existing else inline)
        inlined.append(style)
    if inlined:
        _prune(document.root, lambda element: any(element is style for style in inlined))


def _minify_css(css: str) -> str:
    css = re.sub(r"/\*.*?\*/", "", css, flags=re.DOTALL)
    css = re.sub(r"\s+", " ", css)
    css = re.sub(r"\s*([{}:;,])\s*", r"\1", css)
    return css.replace(";}", "}").strip().rstrip(";")


@_register("minify_styles")
def _minify_styles(document: Document) -> None:
    for element in document.root.iter():
        if "style" in element.attrs:
            element.attrs["style"] = _minify_css(element.attrs["style"])
        if element.local == "style":
            css = _minify_css(element.text())
            others = [child for child in element.children if not isinstance(child, Text)]
            element.children = ([Text(css)] if css else []) + others


def _referenced_ids(root: Element) -> Set[str]:
    refs: Set[str] = set()
    for element in root.iter():
        for key, value in element.attrs.items():
            refs.update(_URL_REF_RE.findall(value))
            if local_name(key) == "href" and value.startswith("#"):
                refs.add(value[1:])
            if key in ("begin", "end"):
                refs.update(_TIMING_REF_RE.findall(value))
        if element.local == "style":
            refs.update(_URL_REF_RE.findall(element.text()))
    return refs


def _short_id(index: int) -> str:
    letters = "abcdefghijklmnopqrstuvwxyz"
    name = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, len(letters))
        name = letters[remainder] + name
    return name


@_register("cleanup_ids")
def _cleanup_ids(document: Document) -> None:
    refs = _referenced_ids(document.root)
    renames: Dict[str, str] = {}
    for element in document.root.iter():
        element_id = element.get("id")
        if element_id is None:
            continue
        if element_id not in refs:
            del element.attrs["id"]
            continue
        renames.setdefault(element_id, _short_id(len(renames)))
        element.attrs["id"] = renames[element_id]
    if not renames:
        return

    def rename_urls(value: str) -> str:
        return _URL_REF_RE.sub(lambda m: f"url(#{renames.get(m.group(1), m.group(1))})", value)

    for element in document.root.iter():
        for key, value in element.attrs.items():
            if key == "id":
                continue
            value = rename_urls(value)
            if local_name(key) == "href" and value.startswith("#"):
                value = "#" + renames.get(value[1:], value[1:])
            if key in ("begin", "end"):
                value = _TIMING_REF_RE.sub(
                    lambda m: renames.get(m.group(1), m.group(1)) + m.group(0)[len(m.group(1)):], value
                )
            element.attrs[key] = value
        if element.local == "style":
            for child in element.children:
                if isinstance(child, Text):
                    child.value = rename_urls(child.value)


@_register("remove_useless_defs")
def _remove_useless_defs(document: Document) -> None:
    for defs in [element for element in document.root.iter() if element.local == "defs"]:
        defs.children = [
            child
            for child in defs.children
            if not isinstance(child, Element)
            or child.local == "style"
            or any(node.get("id") for node in child.iter())
        ]


@_register("remove_unknowns_and_defaults")
def _remove_unknowns_and_defaults(document: Document) -> None:
    def walk(element: Element, inherited: Set[str]) -> None:
        for key, default in ATTRIBUTE_DEFAULTS.items():
            if element.attrs.get(key) == default and key not in inherited:
                del element.attrs[key]
        below = inherited | (set(element.attrs) & set(ATTRIBUTE_DEFAULTS))
        for child in element.elements():
            walk(child, below)

    walk(document.root, set())


@_register("remove_non_inheritable_group_attrs")
def _remove_non_inheritable_group_attrs(document: Document) -> None:
    for element in document.root.iter():
        if element.local == "g":
            for key in NON_INHERITABLE_GROUP_ATTRIBUTES & set(element.attrs):
                del element.attrs[key]


def _is_hidden(element: Element) -> bool:
    if element.get("display") == "none" or element.get("opacity") == "0":
        return True
    local = element.local
    if local == "circle":
        return _number(element.get("r")) == 0
    if local == "ellipse":
        return _number(element.get("rx")) == 0 or _number(element.get("ry")) == 0
    if local in ("rect", "image", "pattern"):
        return _number(element.get("width")) == 0 or _number(element.get("height")) == 0
    if local == "path":
        return not (element.get("d") or "").strip()
    if local in ("polyline", "polygon"):
        return not (element.get("points") or "").strip()
    return False


@_register("remove_hidden_elems")
def _remove_hidden_elems(document: Document) -> None:
    def walk(element: Element) -> None:
        kept = []
        for child in element.children:
            if isinstance(child, Element):
                if child.local == "defs":
                    kept.append(child)
                    continue
                if _is_hidden(child):
                    continue
                walk(child)
            kept.append(child)
        element.children = kept

    walk(document.root)


@_register("remove_empty_text")
def _remove_empty_text(document: Document) -> None:
    def empty(element: Element) -> bool:
        if element.local in ("text", "tspan"):
            return not element.children
        if element.local == "tref":
            return not (element.get("xlink:href") or element.get("href"))
        return False

    _prune(document.root, empty)


def _shape_path_data(element: Element) -> Optional[str]:
    local = element.local
    if local == "rect":
        if element.get("rx") or element.get("ry"):
            return None
        x = parse_length(element.get("x"), 0.0)
        y = parse_length(element.get("y"), 0.0)
        width = _number(element.get("width"))
        height = _number(element.get("height"))
        if None in (x, y, width, height):
            return None
        return f"M{_fmt3(x)} {_fmt3(y)}H{_fmt3(x + width)}V{_fmt3(y + height)}H{_fmt3(x)}z"
    if local == "line":
        coords = [parse_length(element.get(key), 0.0) for key in ("x1", "y1", "x2", "y2")]
        if None in coords:
            return None
        return "M{} {} {} {}".format(*(_fmt3(value) for value in coords))
    if local in ("polyline", "polygon"):
        numbers = re.findall(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", element.get("points") or "")
        if len(numbers) < 4 or len(numbers) % 2:
            return None
        points = [_fmt3(float(value)) for value in numbers]
        pairs = [f"{points[i]} {points[i + 1]}" for i in range(0, len(points), 2)]
        return "M" + " ".join(pairs) + ("z" if local == "polygon" else "")
    return None


_SHAPE_GEOMETRY = {
    "rect": ("x", "y", "width", "height"),
    "line": ("x1", "y1", "x2", "y2"),
    "polyline": ("points",),
    "polygon": ("points",),
}


@_register("convert_shape_to_path")
def _convert_shape_to_path(document: Document) -> None:
    for element in document.root.iter():
        geometry = _SHAPE_GEOMETRY.get(element.local)
        if geometry is None:
            continue
        if any((element.get(key) or "").strip().endswith("%") for key in geometry):
            continue
        path_data = _shape_path_data(element)
        if path_data is None:
            continue
        element.name = element.name[: len(element.name) - len(element.local)] + "path"
        element.attrs = {key: value for key, value in element.attrs.items() if key not in geometry}
        element.attrs["d"] = path_data


@_register("move_elems_attrs_to_group")
def _move_elems_attrs_to_group(document: Document) -> None:
    for group in reversed(list(document.root.iter())):
        if group.local != "g":
            continue
        children = group.elements()
        if len(children) < 2 or any(isinstance(c, Text) and c.value.strip() for c in group.children):
            continue
        for key in INHERITABLE_ATTRIBUTES:
            if key in group.attrs:
                continue
            values = {child.get(key) for child in children}
            if len(values) == 1 and None not in values:
                group.attrs[key] = values.pop()
                for child in children:
                    del child.attrs[key]


@_register("move_group_attrs_to_elems")
def _move_group_attrs_to_elems(document: Document) -> None:
    for group in document.root.iter():
        if group.local != "g" or "transform" not in group.attrs:
            continue
        if any(key in group.attrs for key in ("id", "clip-path", "mask", "filter")):
            continue
        children = group.elements()
        if not children or any(child.local not in PATH_LIKE_ELEMENTS for child in children):
            continue
        transform = group.attrs.pop("transform")
        for child in children:
            existing = child.get("transform")
            child.set("transform", f"{transform} {existing}" if existing else transform)


@_register("collapse_groups")
def _collapse_groups(document: Document) -> None:
    def walk(element: Element) -> None:
        flattened = []
        for child in element.children:
            if isinstance(child, Element):
                walk(child)
                if child.local == "g" and not child.attrs:
                    flattened.extend(child.children)
                    continue
            flattened.append(child)
        element.children = flattened

    walk(document.root)


def _clean_path_data(d: str) -> str:
    parts: List[str] = []
    previous_was_command = True
    for token in _PATH_TOKEN_RE.findall(d):
        if token.isalpha():
            parts.append(token)
            previous_was_command = True
            continue
        number = _fmt3(float(token))
        parts.append(number if previous_was_command else f" {number}")
        previous_was_command = False
    return "".join(parts)


@_register("convert_path_data")
def _convert_path_data(document: Document) -> None:
    for element in document.root.iter():
        if element.local == "path" and element.get("d"):
            element.attrs["d"] = _clean_path_data(element.attrs["d"])


_UNMERGEABLE_PATH_ATTRS = {"id", "marker-start", "marker-mid", "marker-end", "clip-path", "mask"}


def _mergeable(path: Element) -> bool:
    return (
        path.local == "path"
        and not path.children
        and (path.get("d") or "").lstrip().startswith("M")
        and not (_UNMERGEABLE_PATH_ATTRS & set(path.attrs))
    )


@_register("merge_paths")
def _merge_paths(document: Document) -> None:
    for element in document.root.iter():
        merged = []
        previous: Optional[Element] = None
        for child in element.children:
            if _is_blank(child):
                merged.append(child)
                continue
            if isinstance(child, Element) and previous is not None and _mergeable(child):
                same = {k: v for k, v in previous.attrs.items() if k != "d"} == {
                    k: v for k, v in child.attrs.items() if k != "d"
                }
                if same:
                    previous.attrs["d"] = f"{previous.attrs['d']} {child.attrs['d']}"
                    continue
            previous = child if isinstance(child, Element) and _mergeable(child) else None
            merged.append(child)
        element.children = merged


@_register("remove_empty_attrs")
def _remove_empty_attrs(document: Document) -> None:
    for element in document.root.iter():
        element.attrs = {key: value for key, value in element.attrs.items() if value.strip()}


@_register("remove_empty_containers")
def _remove_empty_containers(document: Document) -> None:
    def empty(element: Element) -> bool:
        if element.local not in CONTAINER_ELEMENTS or element.elements():
            return False
        return not (element.local in REFERENCED_CONTAINERS and element.get("id"))

    def walk(element: Element) -> None:
        kept = []
        for child in element.children:
            if isinstance(child, Element):
                walk(child)
                if empty(child):
                    continue
            kept.append(child)
        element.children = kept

    walk(document.root)


@_register("remove_view_box")
def _remove_view_box(document: Document) -> None:
    root = document.root
    view_box = parse_view_box(root.get("viewBox"))
    if view_box is None:
        return
    width = root.get("width") or ""
    height = root.get("height") or ""
    if width.endswith("%") or height.endswith("%"):
        return
    min_x, min_y, vb_width, vb_height = view_box
    if (min_x, min_y) == (0, 0) and (_number(width), _number(height)) == (vb_width, vb_height):
        del root.attrs["viewBox"]


@_register("remove_whitespace")
def _remove_whitespace(document: Document) -> None:
    def walk(element: Element, preserve: bool) -> None:
        preserve = preserve or element.get("xml:space") == "preserve" or element.local in TEXT_CONTENT_ELEMENTS
        if not preserve:
            element.children = [child for child in element.children if not _is_blank(child)]
        for child in element.elements():
            walk(child, preserve)

    walk(document.root, False)
