"""Caller-facing API tying providers, store, indexer and retrieval together."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Sequence

import httpx

from codecompass.config import AppConfig
from codecompass.embedding.base import EmbeddingProvider, GenerationProvider
from codecompass.embedding.registry import build_embedding_provider, build_generation_provider
from codecompass.exceptions import CodeCompassError
from codecompass.index.indexer import Indexer, IndexStats, ProgressCallback
from codecompass.index.search import RetrievalSession
from codecompass.index.storage import ConfirmReset, QdrantVectorStore, cleanup_index_files
from codecompass.models import ConversationTurn, SearchResult

LOGGER = logging.getLogger(__name__)

_WRITE_LOCKS: dict[Path, threading.Lock] = {}
_WRITE_LOCKS_GUARD = threading.Lock()


def project_write_lock(project_dir: Path) -> threading.Lock:
    """Process-wide lock serialising ingestion runs on one project."""
    with _WRITE_LOCKS_GUARD:
        return _WRITE_LOCKS.setdefault(project_dir, threading.Lock())


@dataclass(slots=True)
class ServiceStatus:
    embedding: bool
    generation: bool
    vector_store: bool

    @property
    def all_available(self) -> bool:
        return self.embedding and self.generation and self.vector_store

    def as_dict(self) -> dict[str, bool]:
        return {
            "embedding": self.embedding,
            "generation": self.generation,
            "vector_store": self.vector_store,
        }


class CodeCompass:
    """One project's index and the operations the UI layer needs."""

    def __init__(
        self,
        project_dir: Path,
        config: AppConfig | None = None,
        *,
        embedder: EmbeddingProvider | None = None,
        generator: GenerationProvider | None = None,
        http_client: httpx.Client | None = None,
        confirm_reset: ConfirmReset | None = None,
    ) -> None:
        self.project_dir = Path(project_dir).expanduser().resolve()
        self.config = config or AppConfig()
        self.embedder = embedder or build_embedding_provider(self.config, http_client)
        self.generator = generator or build_generation_provider(self.config, http_client)
        self._http_client = http_client
        self._confirm_reset = confirm_reset
        self._write_lock = project_write_lock(self.project_dir)
        self.store = self._connect_store()
        self.session = RetrievalSession(
            self.store,
            self.generator,
            retry_policy=self.config.retry_policy(),
            similarity_threshold=self.config.similarity_threshold,
        )

    @property
    def index_dir(self) -> Path:
        return self.config.index_dir(self.project_dir)

    def _connect_store(self) -> QdrantVectorStore:
        store = QdrantVectorStore(
            self.embedder,
            collection_name=self.config.collection_name_for(self.project_dir),
            url=self.config.qdrant_url,
            api_key=self.config.qdrant_api_key,
            timeout=self.config.request_timeout,
            probe_timeout=self.config.probe_timeout,
            retry_policy=self.config.retry_policy(),
            client=self._http_client,
            default_dimension=self.config.default_dimension,
            index_dir_name=self.config.index_dir_name,
            confirm_reset=self._confirm_reset,
        )
        store.connect(self.project_dir)
        return store

    def _indexer(self) -> Indexer:
        return Indexer(
            self.embedder,
            self.generator,
            self.store,
            batch_size=self.config.batch_size,
            max_file_bytes=self.config.max_file_bytes,
            binary_sample_bytes=self.config.binary_sample_bytes,
            retry_policy=self.config.retry_policy(),
            max_workers=self.config.workers,
        )

    def _run_indexer(
        self, progress: ProgressCallback | None, cancel_event: threading.Event | None
    ) -> IndexStats:
        try:
            self.store.ensure_collection()
        except CodeCompassError as exc:
            LOGGER.error("Cannot prepare collection %s: %s", self.store.collection_name, exc)
            return IndexStats(aborted=True)
        return self._indexer().index(self.project_dir, progress=progress, cancel_event=cancel_event)

    def index_project(
        self,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexStats:
        """Incremental ingestion: upserts every current file over the existing index."""
        with self._write_lock:
            if not self.store.health():
                LOGGER.error("Vector store at %s is not reachable", self.config.qdrant_url)
                return IndexStats(aborted=True)
            return self._run_indexer(progress, cancel_event)

    def reindex_all(
        self,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexStats:
        """Drop the collection and local index files, then ingest from scratch."""
        with self._write_lock:
            if not self.store.health():
                LOGGER.error("Vector store at %s is not reachable", self.config.qdrant_url)
                return IndexStats(aborted=True)
            try:
                self.store.delete_collection()
                cleanup_index_files(self.index_dir)
                store = self._connect_store()
            except (CodeCompassError, OSError) as exc:
                LOGGER.error("Cannot reset the index of %s: %s", self.project_dir, exc)
                return IndexStats(aborted=True)
            self.store.close()
            self.store = store
            self.session.store = self.store
            self.session.reset()
            return self._run_indexer(progress, cancel_event)

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> List[SearchResult]:
        return self.session.search(query, limit, filters, threshold)

    def document_count(self) -> int:
        return self.store.document_count()

    def generate_context(self, query: str, results: Sequence[SearchResult]) -> str:
        try:
            return self.session.generate_context(query, results)
        except Exception as exc:
            LOGGER.error("Context generation failed: %s", exc)
            return f"Failed to generate context: {exc}"

    def ask_question(
        self,
        question: str,
        results: Sequence[SearchResult],
        history: Sequence[ConversationTurn] | None = None,
    ) -> str:
        """Answer from explicit results; generation errors propagate."""
        return self.session.ask_question(question, results, history)

    def ask(
        self,
        question: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> tuple[str, List[SearchResult]]:
        """Conversational question with follow-up reuse of earlier results."""
        if threshold is None:
            threshold = self.config.question_threshold
        return self.session.ask(question, limit, filters, threshold)

    def check_services(self) -> ServiceStatus:
        return ServiceStatus(
            embedding=self.embedder.test_connection(),
            generation=self.generator.test_connection(),
            vector_store=self.store.health(),
        )

    def close(self) -> None:
        self.store.close()
        self.embedder.close()
        self.generator.close()

    def __enter__(self) -> "CodeCompass":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
