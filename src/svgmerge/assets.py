"""Local asset index built from glob patterns."""
from __future__ import annotations

import glob
import logging
import posixpath
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .diagnostics import Diagnostics

logger = logging.getLogger(__name__)

DEFAULT_ASSET_PATTERNS = "images/*.svg"


def split_patterns(patterns: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(patterns, str):
        patterns = patterns.split(",")
    return [pattern.strip() for pattern in patterns if pattern and pattern.strip()]


def normalize_asset_path(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return normalized[2:] if normalized.startswith("./") else normalized


def build_asset_index(
    patterns: Union[str, Iterable[str]],
    root: Optional[Path] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, Path]:
    """Map each matched file's path relative to ``root`` to its absolute path."""
    base = Path(root) if root is not None else Path.cwd()
    index: Dict[str, Path] = {}
    for pattern in split_patterns(patterns):
        matches = sorted(glob.glob(pattern, root_dir=base, recursive=True))
        if not matches:
            logger.info("asset pattern matched no files: %s", pattern)
            if diagnostics is not None:
                diagnostics.warn(f"asset pattern matched no files: {pattern}")
            continue
        for match in matches:
            absolute = (base / match).resolve()
            if absolute.is_file():
                index[normalize_asset_path(match)] = absolute
    return index
