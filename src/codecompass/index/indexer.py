"""Source tree indexing pipeline."""

from __future__ import annotations

import gc
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from codecompass.embedding.base import EmbeddingProvider, GenerationProvider
from codecompass.exceptions import CodeCompassError, VectorStoreError, is_connectivity_error
from codecompass.index.storage import QdrantVectorStore
from codecompass.ingestion.source_loader import (
    DEFAULT_MAX_BYTES,
    DEFAULT_SAMPLE_BYTES,
    build_enhanced_text,
    load_document,
)
from codecompass.models import Document, IndexProgress
from codecompass.utils.files import collect_source_files
from codecompass.utils.retry import RetryPolicy
from codecompass.utils.text import truncate

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]

INDEXED = "indexed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False

    def increment(self, status: str, path: Path) -> None:
        if status == INDEXED:
            self.indexed += 1
        elif status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)

    @property
    def total(self) -> int:
        return self.indexed + self.skipped + self.failed


def fallback_summary(document: Document) -> str:
    """Summary used when the generative provider cannot produce one."""
    parts = [f"{document.language} file {document.file_name}."]
    classes = document.metadata("classes")
    if classes:
        parts.append(f"Classes: {truncate(classes, 200, suffix='...')}.")
    functions = document.metadata("functions")
    if functions:
        parts.append(f"Functions: {truncate(functions, 200, suffix='...')}.")
    return " ".join(parts)


class Indexer:
    """Coordinates collection, extraction, embedding and persistence of source files."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        generator: GenerationProvider,
        store: QdrantVectorStore,
        *,
        batch_size: int = 5,
        max_file_bytes: int = DEFAULT_MAX_BYTES,
        binary_sample_bytes: int = DEFAULT_SAMPLE_BYTES,
        retry_policy: RetryPolicy | None = None,
        max_workers: int = 1,
    ) -> None:
        self.embedder = embedder
        self.generator = generator
        self.store = store
        self.batch_size = max(1, batch_size)
        self.max_file_bytes = max_file_bytes
        self.binary_sample_bytes = binary_sample_bytes
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max(1, max_workers)

    def index(
        self,
        root: Path,
        *,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexStats:
        """Index every source file under *root*."""
        return self.index_files(
            collect_source_files(Path(root)), progress=progress, cancel_event=cancel_event
        )

    def index_files(
        self,
        files: Sequence[Path],
        *,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexStats:
        stats = IndexStats()
        if not files:
            LOGGER.warning("No source files found")
            return stats

        total = len(files)
        LOGGER.info("Indexing %d files in batches of %d", total, self.batch_size)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="codecompass-index") as pool:
            for start in range(0, total, self.batch_size):
                if _cancelled(cancel_event):
                    LOGGER.info("Indexing cancelled after %d of %d files", stats.total, total)
                    stats.cancelled = True
                    break

                batch = list(files[start : start + self.batch_size])
                connectivity_failures = self._run_batch(pool, batch, stats, cancel_event)

                self.store.flush()
                if progress is not None:
                    current = stats.processed_files[-1] if stats.processed_files else None
                    progress(IndexProgress(processed=stats.total, total=total, current_file=current))

                # release per-batch file contents
                gc.collect()

                if connectivity_failures and not self._reconnect():
                    LOGGER.error(
                        "Services unreachable after %d connectivity failures; aborting with %d files left",
                        connectivity_failures,
                        total - stats.total,
                    )
                    stats.aborted = True
                    break

        LOGGER.info(
            "Indexed: %d, skipped: %d, failed: %d", stats.indexed, stats.skipped, stats.failed
        )
        return stats

    def _run_batch(
        self,
        pool: ThreadPoolExecutor,
        batch: list[Path],
        stats: IndexStats,
        cancel_event: threading.Event | None,
    ) -> int:
        """Process one batch; returns how many files failed for connectivity reasons."""
        futures = [(path, pool.submit(self._guarded_index, path, cancel_event)) for path in batch]
        connectivity_failures = 0
        for path, future in futures:
            status, error = future.result()
            if status is None:
                stats.cancelled = True
                continue
            stats.increment(status, path)
            if error is not None and is_connectivity_error(error):
                connectivity_failures += 1
        return connectivity_failures

    def _guarded_index(
        self, path: Path, cancel_event: threading.Event | None
    ) -> tuple[str | None, BaseException | None]:
        if _cancelled(cancel_event):
            return None, None
        try:
            LOGGER.info("Processing: %s", path)
            return self.retry_policy.call(self._index_single, path, description=f"Indexing {path.name}"), None
        except Exception as e:
            LOGGER.error("Failed to process %s: %s", path, e)
            return FAILED, e

    def _index_single(self, path: Path) -> str:
        """Index one file; raises so the retry policy can try again."""
        document = load_document(
            path, max_bytes=self.max_file_bytes, sample_bytes=self.binary_sample_bytes
        )
        if document is None:
            return SKIPPED

        vector = self.embedder.embed(build_enhanced_text(document))
        document.summary = self._summarize(document)
        if not self.store.upsert(document, vector):
            error = self.store.last_error
            raise VectorStoreError(f"Could not store {path}: {error}") from error
        return INDEXED

    def _summarize(self, document: Document) -> str:
        try:
            return self.generator.summarize(document.content, document.file_name)
        except CodeCompassError as exc:
            LOGGER.warning("Summary unavailable for %s: %s", document.file_path, exc)
            return fallback_summary(document)

    def _reconnect(self) -> bool:
        """One consolidated reconnect attempt: embedding provider, then store."""
        LOGGER.warning("Connectivity problems detected, checking services")
        embedder_ok = self.embedder.test_connection()
        store_ok = embedder_ok and self.store.health()
        if embedder_ok and store_ok:
            LOGGER.info("Services reachable again, continuing")
            return True
        return False


def _cancelled(event: threading.Event | None) -> bool:
    return event is not None and event.is_set()
