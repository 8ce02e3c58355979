"""Utility helpers for walking project trees and keying files."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterable, Iterator

LOGGER = logging.getLogger(__name__)

INDEX_DIR_NAME = ".codecompass"
HIDDEN_PREFIX = "."

SKIP_DIRECTORIES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".idea",
        "node_modules",
        "build",
        "dist",
        "target",
        "out",
        "__pycache__",
        ".venv",
        "venv",
        INDEX_DIR_NAME,
    }
)

SOURCE_EXTENSIONS = frozenset(
    {
        "java", "kt", "kts", "scala", "groovy",
        "py", "js", "jsx", "ts", "tsx",
        "c", "h", "cpp", "cc", "hpp", "cs",
        "go", "rs", "php", "rb", "swift",
        "xml", "json", "yaml", "yml", "toml",
        "md",
    }
)


def is_skipped_directory(
    name: str, skip: Iterable[str] = SKIP_DIRECTORIES, hidden_prefix: str = HIDDEN_PREFIX
) -> bool:
    return name in skip or (bool(hidden_prefix) and name.startswith(hidden_prefix))


def iter_source_paths(
    root: Path,
    *,
    extensions: Iterable[str] = SOURCE_EXTENSIONS,
    skip_directories: Iterable[str] = SKIP_DIRECTORIES,
    hidden_prefix: str = HIDDEN_PREFIX,
) -> Iterator[Path]:
    """Yield indexable files under *root*, descending into directories.

    Noise directories (VCS metadata, build output, dependencies, hidden
    directories and the index directory itself) and symlinked directories
    are pruned without being entered. A file passed directly as *root* is yielded when its extension
    is allowed.
    """
    allowed = {ext.lower().lstrip(".") for ext in extensions}
    skip = frozenset(skip_directories)

    if root.is_file():
        if root.suffix.lower().lstrip(".") in allowed:
            yield root
        return

    try:
        children = sorted(root.iterdir())
    except OSError as exc:
        LOGGER.warning("Cannot list %s: %s", root, exc)
        return

    for child in children:
        if child.is_dir():
            # Directory symlinks are not followed; they can form cycles.
            if child.is_symlink() or is_skipped_directory(child.name, skip, hidden_prefix):
                continue
            yield from iter_source_paths(
                child,
                extensions=allowed,
                skip_directories=skip,
                hidden_prefix=hidden_prefix,
            )
        elif child.is_file() and child.suffix.lower().lstrip(".") in allowed:
            yield child


def collect_source_files(root: Path, **kwargs) -> list[Path]:
    """Materialise the indexing queue for *root*."""
    return list(iter_source_paths(root, **kwargs))


def compute_point_id(document_id: str) -> int:
    """Deterministic unsigned 63-bit point id for a document id."""
    digest = hashlib.sha256(document_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & 0x7FFF_FFFF_FFFF_FFFF
