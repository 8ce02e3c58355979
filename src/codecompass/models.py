"""Core CodeCompass data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

METADATA_KEYS = ("functions", "classes", "imports", "package")


@dataclass(slots=True)
class Document:
    """One indexable source file."""

    id: str
    file_path: Path
    file_name: str
    language: str
    extension: str
    size: int
    last_modified: float
    content: str
    summary: str = ""
    structural_metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def file_type(self) -> str:
        return self.extension.lower() if self.extension else "unknown"

    def metadata(self, key: str) -> str:
        """Return a structural metadata value, empty when it was not extracted."""
        return self.structural_metadata.get(key, "")


@dataclass(slots=True)
class SearchResult:
    """A ranked match returned by the vector store."""

    id: str
    file_path: str
    summary: str
    similarity: float
    metadata: Dict[str, str] = field(default_factory=dict)
    content: str | None = None

    @property
    def language(self) -> str:
        return self.metadata.get("language", "")

    @property
    def file_name(self) -> str:
        return self.metadata.get("fileName") or Path(self.file_path).name

    def has_usable_context(self) -> bool:
        return bool((self.content and self.content.strip()) or self.summary.strip())


@dataclass(slots=True)
class CollectionConfig:
    """Vector collection settings persisted next to the project."""

    dimension: int
    distance: str = "Cosine"

    def to_dict(self) -> dict[str, object]:
        return {"dimension": self.dimension, "distance": self.distance}

    @classmethod
    def from_dict(cls, data: dict) -> "CollectionConfig":
        dimension = int(data["dimension"])
        if dimension <= 0:
            raise ValueError(f"Invalid dimension: {dimension}")
        return cls(dimension=dimension, distance=str(data.get("distance", "Cosine")))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ConversationTurn:
    text: str
    is_user: bool
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(slots=True)
class IndexProgress:
    """Snapshot handed to progress callbacks after each batch."""

    processed: int
    total: int
    current_file: Path | None = None

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(self.processed / self.total, 1.0)
