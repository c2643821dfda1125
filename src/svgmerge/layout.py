"""Layout input: the ordered list of fragments to place on the canvas."""
from __future__ import annotations

import enum
import json
import math
from dataclasses import dataclass
from typing import Any, List, Optional


class LayoutError(ValueError):
    """Raised when the layout input is not a well-formed list of items."""

    code = "E_LAYOUT"


class ItemType(str, enum.Enum):
    SVG = "svg"
    IMAGE = "image"
    PNG = "png"
    JPG = "jpg"
    JPEG = "jpeg"
    GIF = "gif"

    @property
    def is_vector(self) -> bool:
        return self is ItemType.SVG

    @property
    def mime_type(self) -> str:
        if self is ItemType.SVG:
            return "image/svg+xml"
        if self in (ItemType.JPG, ItemType.JPEG):
            return "image/jpeg"
        if self is ItemType.GIF:
            return "image/gif"
        return "image/png"


@dataclass(frozen=True)
class LayoutItem:
    url: str
    type: ItemType
    x: float
    y: float
    width: float
    height: float
    id: Optional[str] = None

    def describe(self) -> str:
        return f"{self.type.value} {self.url}"


def parse_layout(text: str) -> List[LayoutItem]:
    """Parse the JSON layout; any structural problem aborts the whole run."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LayoutError(f"Invalid layout JSON: {exc}") from exc
    if not isinstance(data, list):
        raise LayoutError("Invalid layout JSON: Layout must be a JSON array")
    return [_parse_item(index, entry) for index, entry in enumerate(data)]


def _parse_item(index: int, entry: Any) -> LayoutItem:
    if not isinstance(entry, dict):
        raise LayoutError(f"layout item {index} must be an object")

    url = entry.get("url")
    if not isinstance(url, str) or not url:
        raise LayoutError(f'layout item {index} needs a non-empty "url" string')

    raw_type = entry.get("type")
    try:
        item_type = ItemType(raw_type)
    except ValueError:
        allowed = ", ".join(member.value for member in ItemType)
        raise LayoutError(f'layout item {index} has unknown type {raw_type!r} (expected one of: {allowed})') from None

    numbers = {key: _number(index, entry, key) for key in ("x", "y", "width", "height")}
    if numbers["width"] <= 0 or numbers["height"] <= 0:
        raise LayoutError(f"layout item {index} must have positive width and height")

    item_id = entry.get("id")
    if item_id is not None and not isinstance(item_id, str):
        item_id = str(item_id)

    return LayoutItem(url=url, type=item_type, id=item_id or None, **numbers)


def _number(index: int, entry: dict, key: str) -> float:
    value = entry.get(key)
    # bool is an int subclass; true/false are not coordinates.
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise LayoutError(f'layout item {index} needs a numeric "{key}"')
    return float(value)
