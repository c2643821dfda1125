"""Per-run collector for recoverable problems."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from .layout import LayoutItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    level: str
    message: str
    item_index: Optional[int] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        if self.item_index is None:
            return self.message
        return f"item {self.item_index} ({self.url}): {self.message}"


class Diagnostics:
    """Collects warnings while a layout is composed; the caller drains it."""

    def __init__(self) -> None:
        self._entries: List[Diagnostic] = []

    def warn(self, message: str, *, index: Optional[int] = None, item: Optional[LayoutItem] = None) -> Diagnostic:
        entry = Diagnostic("warning", message, index, item.url if item is not None else None)
        self._entries.append(entry)
        logger.debug("recorded %s", entry)
        return entry

    @property
    def entries(self) -> List[Diagnostic]:
        return list(self._entries)

    def drain(self) -> List[Diagnostic]:
        entries, self._entries = self._entries, []
        return entries

    def __len__(self) -> int:
        return len(self._entries)
