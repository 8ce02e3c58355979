"""Source file loading: size cap, binary detection and document construction."""

from __future__ import annotations

import logging
from pathlib import Path

from codecompass.ingestion.metadata import detect_language, extract
from codecompass.models import Document

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 500_000
DEFAULT_SAMPLE_BYTES = 1_000
_ALLOWED_CONTROL = frozenset(b"\t\n\r")


def is_binary(data: bytes, sample_bytes: int = DEFAULT_SAMPLE_BYTES) -> bool:
    """Heuristically classify content as binary.

    The first ``sample_bytes`` bytes are inspected; NUL and other control
    bytes (tab, newline and carriage return excepted) are counted. More
    than 10% control bytes means binary.
    """
    sample = data[:sample_bytes]
    if not sample:
        return False
    control = sum(1 for byte in sample if byte < 32 and byte not in _ALLOWED_CONTROL)
    return control * 10 > len(sample)


def load_document(
    path: Path,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    sample_bytes: int = DEFAULT_SAMPLE_BYTES,
) -> Document | None:
    """Read *path* into a ``Document`` or return None when it must be skipped.

    Oversized and binary files are skipped; neither is an error. OSError
    from reading propagates to the caller.
    """
    path = Path(path).resolve()
    stat = path.stat()
    if stat.st_size > max_bytes:
        LOGGER.info("Skipping %s: %d bytes exceeds the %d byte limit", path, stat.st_size, max_bytes)
        return None

    data = path.read_bytes()
    if is_binary(data, sample_bytes):
        LOGGER.info("Skipping %s: content looks binary", path)
        return None

    content = data.decode("utf-8", errors="replace")
    extension = path.suffix.lower().lstrip(".")
    language = detect_language(extension)
    return Document(
        id=str(path),
        file_path=path,
        file_name=path.name,
        language=language,
        extension=extension,
        size=stat.st_size,
        last_modified=stat.st_mtime,
        content=content,
        structural_metadata=extract(language, content),
    )


def build_enhanced_text(document: Document) -> str:
    """Text that gets embedded: a short header of facts followed by the source."""
    header = [f"File: {document.file_name}", f"Language: {document.language}"]
    functions = document.metadata("functions")
    if functions:
        header.append(f"Functions: {functions}")
    classes = document.metadata("classes")
    if classes:
        header.append(f"Classes: {classes}")
    return "\n".join(header) + "\n\n" + document.content
