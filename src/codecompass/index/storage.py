"""Qdrant vector store over its REST API, plus the persisted collection config."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

import httpx
import numpy as np

from codecompass.embedding.base import EmbeddingProvider
from codecompass.exceptions import (
    CodeCompassError,
    DimensionMismatchError,
    NotFoundError,
    VectorStoreError,
)
from codecompass.models import METADATA_KEYS, CollectionConfig, Document, SearchResult
from codecompass.utils.files import INDEX_DIR_NAME, compute_point_id
from codecompass.utils.http import request_json, send
from codecompass.utils.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_NAME = "codecompass_config.json"
LEGACY_INDEX_FILES = ("codemapper_config.json", "codemapper_index.dat", "codemapper_docs.dat")
DEFAULT_DIMENSION = 768
DISTANCE = "Cosine"
HNSW_CONFIG = {"m": 16, "ef_construct": 200}

_RESERVED_PAYLOAD_KEYS = frozenset({"id", "filePath", "summary", "content", "metadata"})

ConfirmReset = Callable[[int, int], bool]


def load_collection_config(index_dir: Path) -> CollectionConfig | None:
    """Read the persisted collection config; None when absent or unreadable."""
    path = Path(index_dir) / CONFIG_FILE_NAME
    if not path.exists():
        return None
    try:
        return CollectionConfig.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, KeyError, TypeError) as exc:
        LOGGER.warning("Ignoring unreadable collection config %s: %s", path, exc)
        return None


def save_collection_config(index_dir: Path, config: CollectionConfig) -> Path:
    index_dir = Path(index_dir)
    index_dir.mkdir(parents=True, exist_ok=True)
    path = index_dir / CONFIG_FILE_NAME
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    return path


def cleanup_index_files(index_dir: Path) -> list[Path]:
    """Delete local index artifacts (config and legacy cache files)."""
    removed: list[Path] = []
    for name in (CONFIG_FILE_NAME, *LEGACY_INDEX_FILES):
        path = Path(index_dir) / name
        if path.exists():
            path.unlink()
            removed.append(path)
            LOGGER.info("Deleted index file %s", path)
    return removed


def _vector_size(info: Mapping[str, Any]) -> int | None:
    """Dimension from a get-collection result, tolerating missing fields."""
    vectors = (((info.get("config") or {}).get("params") or {}).get("vectors")) or {}
    size = vectors.get("size") if isinstance(vectors, dict) else None
    if size is None and isinstance(vectors, dict) and len(vectors) == 1:
        named = next(iter(vectors.values()))
        size = named.get("size") if isinstance(named, dict) else None
    try:
        return int(size) if size is not None else None
    except (TypeError, ValueError):
        return None


def _score(hit: Mapping[str, Any]) -> float | None:
    """Similarity of a search hit, or ``None`` when absent or non-numeric."""
    try:
        return float(hit["score"])
    except (KeyError, TypeError, ValueError):
        return None


def build_filter(filters: Mapping[str, Any]) -> dict[str, Any]:
    """AND of equality clauses."""
    return {"must": [{"key": key, "match": {"value": value}} for key, value in filters.items()]}


class QdrantVectorStore:
    """Persistence layer for document embeddings in one Qdrant collection.

    The collection dimension is owned by the instance and only changes
    through ``connect``, ``ensure_collection`` or a dimension mismatch seen
    by ``upsert``. Writes must come from a single ingestion run at a time;
    searches may run concurrently with it.
    """

    service = "Qdrant"

    def __init__(
        self,
        embedder: EmbeddingProvider,
        *,
        collection_name: str,
        url: str = "http://localhost:6333",
        api_key: str | None = None,
        timeout: float = 240.0,
        probe_timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
        default_dimension: int = DEFAULT_DIMENSION,
        index_dir_name: str = INDEX_DIR_NAME,
        confirm_reset: ConfirmReset | None = None,
    ) -> None:
        self.embedder = embedder
        self.collection_name = collection_name
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_dimension = default_dimension
        self.index_dir_name = index_dir_name
        self.confirm_reset = confirm_reset
        self.dimension: int | None = None
        self.collection_exists = False
        self.index_dir: Path | None = None
        self.last_error: BaseException | None = None
        self._headers = {"api-key": api_key} if api_key else {}
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._lock = threading.RLock()

    # -- wire helpers -------------------------------------------------

    @property
    def _collection_path(self) -> str:
        return f"{self.url}/collections/{self.collection_name}"

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        kwargs.setdefault("timeout", self.timeout)
        return request_json(
            self._client, method, url, service=self.service, headers=self._headers, **kwargs
        )

    def _retry(self, description: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self.retry_policy.call(func, *args, description=f"Qdrant {description}", **kwargs)

    def _collection_info(self) -> dict[str, Any] | None:
        try:
            data = self._retry("get collection", self._request, "GET", self._collection_path)
        except NotFoundError:
            return None
        result = data.get("result")
        return result if isinstance(result, dict) else {}

    def _create_collection(self, dimension: int) -> None:
        body = {"vectors": {"size": dimension, "distance": DISTANCE}, "hnsw_config": HNSW_CONFIG}
        self._retry("create collection", self._request, "PUT", self._collection_path, json=body)
        LOGGER.info("Created collection %s (dimension %d)", self.collection_name, dimension)

    def _persist_dimension(self, dimension: int) -> None:
        if self.index_dir is None:
            return
        try:
            save_collection_config(self.index_dir, CollectionConfig(dimension=dimension, distance=DISTANCE))
        except OSError as exc:
            LOGGER.warning("Could not persist collection config in %s: %s", self.index_dir, exc)

    # -- lifecycle ----------------------------------------------------

    def connect(self, base_dir: Path) -> int:
        """Resolve the dimension and discover whether the collection exists.

        The dimension comes from the persisted config when present, else from
        one probe embedding, else from ``default_dimension``; the value used
        is persisted. The remote collection is only inspected, never
        modified, here.
        """
        self.index_dir = Path(base_dir) / self.index_dir_name
        stored = load_collection_config(self.index_dir)
        if stored is not None:
            dimension = stored.dimension
            LOGGER.debug("Loaded dimension %d from %s", dimension, self.index_dir)
        else:
            try:
                dimension = int(np.asarray(self.embedder.embed("dimension probe")).size)
                LOGGER.info("Measured embedding dimension %d", dimension)
            except Exception as exc:
                dimension = self.default_dimension
                LOGGER.warning(
                    "Could not measure embedding dimension (%s); using default %d", exc, dimension
                )

        with self._lock:
            self.dimension = dimension
            self._persist_dimension(dimension)
            try:
                self.collection_exists = self._collection_info() is not None
            except CodeCompassError as exc:
                self.collection_exists = False
                self.last_error = exc
                LOGGER.error("Cannot reach Qdrant at %s: %s", self.url, exc)
        return dimension

    def ensure_collection(self, dimension: int | None = None) -> None:
        """Create the collection, or recreate it when its dimension differs.

        Recreation deletes every stored point.
        """
        with self._lock:
            target = dimension or self.dimension or self.default_dimension
            info = self._collection_info()
            if info is None:
                self._create_collection(target)
            else:
                existing = _vector_size(info)
                if existing is not None and existing != target:
                    self._recreate(existing, target)
            if target != self.dimension:
                self.dimension = target
                self._persist_dimension(target)
            self.collection_exists = True

    def _recreate(self, old: int | None, new: int) -> None:
        if self.confirm_reset is not None and not self.confirm_reset(old or 0, new):
            raise DimensionMismatchError(old or 0, new)
        LOGGER.warning(
            "Embedding dimension changed from %s to %d: deleting collection %s; "
            "all previously indexed documents are lost",
            old,
            new,
            self.collection_name,
        )
        self._delete_remote()
        self._create_collection(new)

    def _handle_dimension_change(self, new: int) -> None:
        with self._lock:
            if self.dimension == new and self.collection_exists:
                return
            if self.dimension is not None and self.dimension != new and self.collection_exists:
                self._recreate(self.dimension, new)
                self.dimension = new
                self._persist_dimension(new)
            else:
                self.ensure_collection(new)

    def _delete_remote(self) -> bool:
        try:
            self._retry("delete collection", self._request, "DELETE", self._collection_path)
        except NotFoundError:
            return False
        return True

    def delete_collection(self) -> bool:
        """Drop the remote collection; True when something was deleted."""
        with self._lock:
            deleted = self._delete_remote()
            self.collection_exists = False
            if deleted:
                LOGGER.info("Deleted collection %s", self.collection_name)
            return deleted

    # -- writes -------------------------------------------------------

    def build_point(self, document: Document, vector: np.ndarray) -> dict[str, Any]:
        structural = {key: document.metadata(key) for key in METADATA_KEYS}
        extra: Dict[str, Any] = {
            key: value
            for key, value in document.structural_metadata.items()
            if key not in METADATA_KEYS
        }
        extra.update(
            {
                "extension": document.extension,
                "size": document.size,
                "lastModified": document.last_modified,
            }
        )
        payload = {
            "id": document.id,
            "filePath": str(document.file_path),
            "fileName": document.file_name,
            "summary": document.summary,
            "content": document.content,
            "fileType": document.file_type,
            "language": document.language,
            **structural,
            "metadata": extra,
        }
        return {
            "id": compute_point_id(document.id),
            "vector": [float(value) for value in vector],
            "payload": payload,
        }

    def upsert(self, document: Document, vector: np.ndarray) -> bool:
        """Store one document; returns False (and logs) instead of raising."""
        vector = np.asarray(vector, dtype="float32").ravel()
        try:
            if vector.size == 0:
                raise VectorStoreError("Refusing to store an empty embedding")
            if self.dimension is None or vector.size != self.dimension:
                self._handle_dimension_change(int(vector.size))
            elif not self.collection_exists:
                self.ensure_collection(self.dimension)
            point = self.build_point(document, vector)
            self._retry(
                "upsert",
                self._request,
                "PUT",
                f"{self._collection_path}/points",
                params={"wait": "true"},
                json={"points": [point]},
            )
        except CodeCompassError as exc:
            self.last_error = exc
            LOGGER.error("Failed to store %s: %s", document.file_path, exc)
            return False
        return True

    def flush(self) -> None:
        """Writes use ``wait=true`` and are durable once acknowledged."""
        return None

    # -- reads --------------------------------------------------------

    def _to_result(self, hit: Mapping[str, Any]) -> SearchResult | None:
        """Convert one search hit, or ``None`` when it cannot be used."""
        payload = hit.get("payload") or {}
        score = _score(hit)
        if not isinstance(payload, dict) or score is None:
            LOGGER.warning("Skipping malformed search hit %r", hit.get("id"))
            return None
        metadata: Dict[str, str] = {
            key: str(value)
            for key, value in payload.items()
            if key not in _RESERVED_PAYLOAD_KEYS and value is not None
        }
        nested = payload.get("metadata")
        if isinstance(nested, dict):
            for key, value in nested.items():
                metadata.setdefault(key, str(value))
        content = payload.get("content")
        return SearchResult(
            id=str(payload.get("id") or hit.get("id", "")),
            file_path=str(payload.get("filePath", "")),
            summary=str(payload.get("summary") or ""),
            similarity=score,
            metadata=metadata,
            content=content if isinstance(content, str) else None,
        )

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        similarity_threshold: float = 0.5,
    ) -> List[SearchResult]:
        """Nearest files to *query*, most similar first; empty on any failure."""
        if limit <= 0 or not query.strip():
            return []

        try:
            vector = np.asarray(self.embedder.embed(query), dtype="float32").ravel()
        except Exception as exc:
            LOGGER.error("Search unavailable, query embedding failed: %s", exc)
            return []

        dimension = self.dimension
        if dimension is not None and vector.size != dimension:
            LOGGER.warning(
                "Query embedding has dimension %d but collection uses %d; reindex required",
                vector.size,
                dimension,
            )
            return []

        body: dict[str, Any] = {
            "vector": [float(value) for value in vector],
            "limit": limit,
            "with_payload": True,
            "score_threshold": similarity_threshold,
        }
        if filters:
            body["filter"] = build_filter(filters)

        try:
            data = self._retry(
                "search", self._request, "POST", f"{self._collection_path}/points/search", json=body
            )
            hits = data.get("result") or []
            converted = [self._to_result(hit) for hit in hits if isinstance(hit, dict)]
            results = [result for result in converted if result is not None]
        except NotFoundError:
            LOGGER.info("Collection %s does not exist yet", self.collection_name)
            return []
        except CodeCompassError as exc:
            self.last_error = exc
            LOGGER.error("Search unavailable: %s", exc)
            return []

        results = [result for result in results if result.similarity >= similarity_threshold]
        results.sort(key=lambda result: result.similarity, reverse=True)
        return results[:limit]

    def health(self) -> bool:
        """Connectivity probe with the short timeout, retried before giving up."""
        try:
            self._retry(
                "health check",
                send,
                self._client,
                "GET",
                f"{self.url}/healthz",
                service=self.service,
                headers=self._headers,
                timeout=self.probe_timeout,
            )
        except CodeCompassError as exc:
            self.last_error = exc
            LOGGER.warning("Qdrant health check failed: %s", exc)
            return False
        return True

    def document_count(self) -> int:
        try:
            info = self._collection_info()
        except CodeCompassError as exc:
            LOGGER.warning("Could not read document count: %s", exc)
            return 0
        if not info:
            return 0
        count = info.get("points_count")
        if count is None:
            count = info.get("vectors_count")
        try:
            return int(count or 0)
        except (TypeError, ValueError):
            return 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
