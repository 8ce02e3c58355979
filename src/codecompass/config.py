"""Application configuration defaults."""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Mapping

from codecompass.utils.files import INDEX_DIR_NAME
from codecompass.utils.retry import RetryPolicy

ENV_PREFIX = "CODECOMPASS_"


class ProviderKind(str, Enum):
    """Backends selectable for embedding and generation."""

    OLLAMA = "ollama"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: str | "ProviderKind") -> "ProviderKind":
        if isinstance(value, ProviderKind):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown provider '{value}' (expected one of: {choices})") from None


@dataclass(slots=True)
class AppConfig:
    embedding_provider: ProviderKind = ProviderKind.OLLAMA
    generation_provider: ProviderKind = ProviderKind.OLLAMA

    ollama_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"
    ollama_generation_model: str = "codellama:7b-code"

    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_api_key: str | None = None
    gemini_embedding_model: str = "embedding-001"
    gemini_generation_model: str = "gemini-1.5-pro"

    openrouter_url: str = "https://openrouter.ai/api/v1"
    openrouter_api_key: str | None = None
    openrouter_model: str = "google/gemini-2.0-flash-exp:free"

    local_model: str = "sentence-transformers/all-mpnet-base-v2"

    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    collection_prefix: str = "codecompass"
    index_dir_name: str = INDEX_DIR_NAME

    batch_size: int = 5
    max_file_bytes: int = 500_000
    binary_sample_bytes: int = 1_000
    retry_attempts: int = 3
    retry_delay: float = 2.0
    rate_limit_delay: float = 5.0
    request_timeout: float = 240.0
    probe_timeout: float = 5.0
    workers: int = 1
    similarity_threshold: float = 0.5
    question_threshold: float = 0.6
    default_dimension: int = 768

    def __post_init__(self) -> None:
        self.embedding_provider = ProviderKind.parse(self.embedding_provider)
        self.generation_provider = ProviderKind.parse(self.generation_provider)
        if self.generation_provider is ProviderKind.LOCAL:
            raise ValueError("The local provider only supports embeddings")
        if self.embedding_provider is ProviderKind.OPENROUTER:
            raise ValueError("OpenRouter does not provide embeddings")
        for name in ("batch_size", "max_file_bytes", "binary_sample_bytes", "retry_attempts",
                     "workers", "default_dimension"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")
        for name in ("similarity_threshold", "question_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "AppConfig":
        """Build a configuration from ``CODECOMPASS_*`` variables.

        Each field maps to the upper-cased variable name, e.g.
        ``CODECOMPASS_QDRANT_URL`` or ``CODECOMPASS_BATCH_SIZE``. Keyword
        overrides that are not None win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for item in fields(cls):
            key = ENV_PREFIX + item.name.upper()
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            values[item.name] = _coerce(key, raw, item.default)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            delay=self.retry_delay,
            rate_limit_delay=self.rate_limit_delay,
        )

    def index_dir(self, project_dir: Path) -> Path:
        return Path(project_dir) / self.index_dir_name

    def collection_name_for(self, project_dir: Path) -> str:
        """Stable collection name for a project directory."""
        resolved = Path(project_dir).expanduser().resolve()
        slug = re.sub(r"[^A-Za-z0-9]+", "_", resolved.name).strip("_").lower() or "project"
        digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:8]
        return f"{self.collection_prefix}_{slug}_{digest}"


def _coerce(key: str, raw: str, default: object) -> object:
    if isinstance(default, ProviderKind):
        try:
            return ProviderKind.parse(raw)
        except ValueError as exc:
            raise ValueError(f"{key}: {exc}") from None
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"{key} must be a number, got {raw!r}") from None
    return raw
