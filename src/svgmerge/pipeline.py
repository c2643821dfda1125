"""One full run: layout text in, composite SVG text out."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

import requests

from .assets import DEFAULT_ASSET_PATTERNS, build_asset_index
from .compose import Composer
from .diagnostics import Diagnostic, Diagnostics
from .layout import LayoutItem, parse_layout
from .postprocess import optimize_animation_safe, render
from .resolver import DEFAULT_TIMEOUT, ContentResolver


@dataclass
class MergeResult:
    merged: str
    optimized: Optional[str]
    placed: int
    items: List[LayoutItem]
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def output(self) -> str:
        return self.optimized if self.optimized is not None else self.merged


def merge_layout(
    layout_text: str,
    assets: Union[str, Iterable[str]] = DEFAULT_ASSET_PATTERNS,
    *,
    root: Optional[Path] = None,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
    optimize_output: bool = True,
) -> MergeResult:
    """Compose a layout into SVG text.

    The layout is parsed before anything else so a malformed layout raises
    ``LayoutError`` without globbing, fetching or parsing a single fragment.
    """
    items = parse_layout(layout_text)

    diagnostics = Diagnostics()
    asset_index = build_asset_index(assets, root=root, diagnostics=diagnostics)
    resolver = ContentResolver(asset_index, session=session, timeout=timeout)
    composer = Composer(resolver, diagnostics)
    document = composer.compose(items)

    merged = render(document)
    optimized = optimize_animation_safe(merged) if optimize_output else None
    return MergeResult(merged, optimized, composer.placed, items, diagnostics.drain())
