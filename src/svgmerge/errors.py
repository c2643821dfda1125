"""Recoverable per-fragment failures."""
from __future__ import annotations

from .layout import LayoutItem


class FragmentError(ValueError):
    """A single layout item could not be placed; the run continues without it."""

    code = "E_FRAGMENT"

    def __init__(self, item: LayoutItem, message: str) -> None:
        super().__init__(message)
        self.item = item
        self.message = message

    def __str__(self) -> str:
        return self.message


class UnsupportedSchemeError(FragmentError):
    code = "E_UNSUPPORTED_SCHEME"


class AssetNotFoundError(FragmentError):
    code = "E_ASSET_NOT_FOUND"


class FetchError(FragmentError):
    code = "E_FETCH"


class FragmentParseError(FragmentError):
    code = "E_PARSE_XML"
