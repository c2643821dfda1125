"""Parse a fragment and work out how it maps onto its layout slot."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import FragmentParseError
from .layout import LayoutItem
from .markup import Element, MarkupError, parse

# Root attributes that still mean something on the wrapping <g>.
GROUP_ATTRIBUTES = ("style", "class", "version", "baseProfile", "xml:space", "preserveAspectRatio")


@dataclass(frozen=True)
class Fragment:
    root: Element
    width: float
    height: float
    transform: str


def normalize(markup: str, item: LayoutItem) -> Fragment:
    try:
        document = parse(markup)
    except MarkupError as exc:
        raise FragmentParseError(item, f"failed to parse SVG from {item.url}: {exc}") from exc
    root = document.root
    if root.local != "svg":
        raise FragmentParseError(item, f"expected an <svg> root in {item.url}, found <{root.name}>")

    width, height = intrinsic_size(root, item)
    return Fragment(root, width, height, placement_transform(item, width, height))


def intrinsic_size(root: Element, item: LayoutItem) -> Tuple[float, float]:
    width = _positive(parse_length(root.get("width"), None))
    height = _positive(parse_length(root.get("height"), None))
    if width is not None and height is not None:
        return width, height

    view_box = parse_view_box(root.get("viewBox"))
    if view_box is not None:
        _, _, vb_width, vb_height = view_box
        if vb_width > 0 and vb_height > 0:
            return vb_width, vb_height

    return item.width, item.height


def placement_transform(item: LayoutItem, width: float, height: float) -> str:
    translate = f"translate({fmt(item.x)}, {fmt(item.y)})"
    if width == item.width and height == item.height:
        return translate
    return f"{translate} scale({fmt(item.width / width)}, {fmt(item.height / height)})"


def group_attributes(root: Element) -> Dict[str, str]:
    return {
        key: root.attrs[key]
        for key in GROUP_ATTRIBUTES
        if key in root.attrs and not key.startswith("xmlns")
    }


def parse_view_box(value: Optional[str]) -> Optional[Tuple[float, float, float, float]]:
    if not value:
        return None
    parts = [part for part in re.split(r"[\s,]+", value.strip()) if part]
    if len(parts) < 4:
        return None
    try:
        min_x, min_y, width, height = (float(part) for part in parts[:4])
    except ValueError:
        return None
    return min_x, min_y, width, height


def parse_length(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    value = value.strip()
    if value.endswith("%"):
        return default
    match = re.match(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", value)
    if match:
        return float(match.group(0))
    return default


def fmt(value: float) -> str:
    if math.isclose(value, round(value), rel_tol=0.0, abs_tol=1e-9):
        return str(int(round(value)))
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def _positive(value: Optional[float]) -> Optional[float]:
    if value is None or value <= 0 or not math.isfinite(value):
        return None
    return value
