"""Public API for svgmerge."""
from .compose import compose
from .errors import AssetNotFoundError, FetchError, FragmentError, FragmentParseError, UnsupportedSchemeError
from .layout import ItemType, LayoutError, LayoutItem, parse_layout
from .pipeline import MergeResult, merge_layout
from .postprocess import postprocess, repair_escaping

__all__ = [
    "AssetNotFoundError",
    "FetchError",
    "FragmentError",
    "FragmentParseError",
    "ItemType",
    "LayoutError",
    "LayoutItem",
    "MergeResult",
    "UnsupportedSchemeError",
    "compose",
    "merge_layout",
    "parse_layout",
    "postprocess",
    "repair_escaping",
]
