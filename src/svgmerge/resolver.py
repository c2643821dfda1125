"""Fetch or read the raw content behind a layout item."""
from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import requests
from PIL import Image, UnidentifiedImageError

from .assets import normalize_asset_path
from .diagnostics import Diagnostics
from .errors import AssetNotFoundError, FetchError, UnsupportedSchemeError
from .layout import LayoutItem
from .markup import SVG_NS, XLINK_NS, escape_attr
from .normalize import fmt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_ASSET_DIR = "images"
BLOB_PREFIX = "blob:"

_VECTOR_CONTENT_HINTS = ("svg", "xml", "text/")


@dataclass(frozen=True)
class MarkupContent:
    """SVG markup, either fetched as is or a wrapper built around a raster."""

    text: str
    source: str


@dataclass(frozen=True)
class RasterContent:
    """Embedded raster, placed as a plain ``<image>`` element."""

    href: str
    mime_type: str
    source: str


Content = Union[MarkupContent, RasterContent]


def data_uri(payload: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def sniff_mime_type(payload: bytes) -> Optional[str]:
    """Identify raster bytes with Pillow; ``None`` when the format is unknown."""
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError):
        return None
    return Image.MIME.get(image_format) if image_format else None


def raster_wrapper(href: str, width: float, height: float) -> str:
    return (
        f'<svg xmlns="{SVG_NS}" xmlns:xlink="{XLINK_NS}" width="{fmt(width)}" height="{fmt(height)}">'
        f'<image width="{fmt(width)}" height="{fmt(height)}" href="{escape_attr(href)}"/>'
        "</svg>"
    )


def _declared_type(response: requests.Response) -> str:
    return (response.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()


def _response_text(response: requests.Response) -> str:
    if "charset" in (response.headers.get("Content-Type") or "").lower() and response.encoding:
        try:
            return response.content.decode(response.encoding, errors="replace")
        except LookupError:
            logger.info("unknown charset %r from %s; decoding as UTF-8", response.encoding, response.url)
    return response.content.decode("utf-8-sig", errors="replace")


class ContentResolver:
    def __init__(
        self,
        asset_index: Dict[str, Path],
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        asset_dir: str = DEFAULT_ASSET_DIR,
    ) -> None:
        self.asset_index = asset_index
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.asset_dir = asset_dir

    def resolve(self, item: LayoutItem, diagnostics: Diagnostics, index: Optional[int] = None) -> Content:
        url = item.url
        if url.startswith(("http://", "https://")):
            return self._resolve_remote(item, diagnostics, index)
        if url.startswith(BLOB_PREFIX):
            relative = normalize_asset_path(f"{self.asset_dir}/{url[len(BLOB_PREFIX):].lstrip('/')}")
            return self._resolve_local(item, relative)
        if url.startswith(f"{self.asset_dir}/"):
            return self._resolve_local(item, normalize_asset_path(url))
        raise UnsupportedSchemeError(item, f"Unsupported URL format: {url}")

    def _fetch(self, item: LayoutItem) -> requests.Response:
        logger.info("Fetching remote URL: %s", item.url)
        try:
            response = self.session.get(item.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(item, f"Failed to fetch {item.url}: {exc}") from exc
        return response

    def _resolve_remote(self, item: LayoutItem, diagnostics: Diagnostics, index: Optional[int]) -> Content:
        response = self._fetch(item)
        declared = _declared_type(response)
        if item.type.is_vector:
            if declared and not any(hint in declared for hint in _VECTOR_CONTENT_HINTS):
                diagnostics.warn(
                    f"expected SVG but server declared {declared!r}; using the body anyway",
                    index=index,
                    item=item,
                )
            return MarkupContent(_response_text(response), item.url)

        payload = response.content
        mime_type = sniff_mime_type(payload) or declared or item.type.mime_type
        return RasterContent(data_uri(payload, mime_type), mime_type, item.url)

    def _resolve_local(self, item: LayoutItem, relative: str) -> MarkupContent:
        logger.info("Reading local file: %s", relative)
        path = self.asset_index.get(relative)
        if path is None:
            raise AssetNotFoundError(item, f"Local asset not found: {relative}")
        try:
            payload = path.read_bytes()
        except OSError as exc:
            raise FetchError(item, f"failed to read local asset {relative}: {exc}") from exc

        if item.type.is_vector:
            return MarkupContent(payload.decode("utf-8-sig", errors="replace"), relative)
        mime_type = sniff_mime_type(payload) or item.type.mime_type
        href = data_uri(payload, mime_type)
        return MarkupContent(raster_wrapper(href, item.width, item.height), relative)
