"""Tests for the Qdrant vector store."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import numpy as np
import pytest

from codecompass.exceptions import DimensionMismatchError, VectorStoreError
from codecompass.index.storage import (
    CONFIG_FILE_NAME,
    LEGACY_INDEX_FILES,
    QdrantVectorStore,
    _vector_size,
    build_filter,
    cleanup_index_files,
    load_collection_config,
    save_collection_config,
)
from codecompass.models import CollectionConfig, Document
from codecompass.utils.files import compute_point_id
from codecompass.utils.retry import RetryPolicy

from conftest import QDRANT_URL, FakeEmbedder, FakeQdrant


def _doc(name: str, content: str, language: str, **structural: str) -> Document:
    return Document(
        id=f"/repo/{name}",
        file_path=Path(f"/repo/{name}"),
        file_name=name,
        language=language,
        extension=name.rsplit(".", 1)[-1],
        size=len(content),
        last_modified=1700000000.0,
        content=content,
        summary=f"Summary of {name}",
        structural_metadata=dict(structural),
    )


def _new_store(
    qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, **kwargs
) -> QdrantVectorStore:
    return QdrantVectorStore(
        embedder,
        collection_name="test_collection",
        url=QDRANT_URL,
        retry_policy=retry_policy,
        client=qdrant.client(),
        **kwargs,
    )


def _index(store: QdrantVectorStore, embedder: FakeEmbedder) -> list[Document]:
    documents = [
        _doc("a.py", "def foo(): return 1", "Python", functions="foo"),
        _doc("b.go", "package main func bar", "Go", functions="bar", package="main"),
        _doc("c.md", "Plain notes about the project", "Markdown"),
    ]
    for document in documents:
        assert store.upsert(document, embedder.embed(document.content))
    return documents


class TestCollectionConfigFile:
    """Tests for the persisted dimension file."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        path = save_collection_config(tmp_path / ".codecompass", CollectionConfig(dimension=384))

        assert path.name == CONFIG_FILE_NAME
        assert json.loads(path.read_text()) == {"dimension": 384, "distance": "Cosine"}
        assert load_collection_config(tmp_path / ".codecompass") == CollectionConfig(dimension=384)

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_collection_config(tmp_path) is None

    def test_corrupt_file_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("{not json")
        assert load_collection_config(tmp_path) is None

    def test_cleanup_removes_config_and_legacy_files(self, tmp_path: Path) -> None:
        for name in (CONFIG_FILE_NAME, *LEGACY_INDEX_FILES):
            (tmp_path / name).write_text("x")
        (tmp_path / "unrelated.txt").write_text("keep")

        removed = cleanup_index_files(tmp_path)

        assert len(removed) == 1 + len(LEGACY_INDEX_FILES)
        assert [p.name for p in tmp_path.iterdir()] == ["unrelated.txt"]


class TestHelpers:
    def test_build_filter(self) -> None:
        assert build_filter({"language": "Go"}) == {
            "must": [{"key": "language", "match": {"value": "Go"}}]
        }

    def test_vector_size_plain_and_named(self) -> None:
        assert _vector_size({"config": {"params": {"vectors": {"size": 8}}}}) == 8
        assert _vector_size({"config": {"params": {"vectors": {"code": {"size": 16}}}}}) == 16
        assert _vector_size({}) is None


class TestConnect:
    """Tests for dimension resolution on connect."""

    def test_probe_dimension_is_persisted(self, store: QdrantVectorStore, tmp_path: Path) -> None:
        assert store.dimension == 21
        assert store.collection_exists is False
        assert load_collection_config(tmp_path / ".codecompass") == CollectionConfig(dimension=21)

    def test_persisted_dimension_wins(
        self, qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path
    ) -> None:
        save_collection_config(tmp_path / ".codecompass", CollectionConfig(dimension=5))
        store = _new_store(qdrant, embedder, retry_policy)

        assert store.connect(tmp_path) == 5
        assert embedder.calls == []

    def test_default_dimension_when_probe_fails(
        self, qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path
    ) -> None:
        embedder.fail = True
        store = _new_store(qdrant, embedder, retry_policy)

        assert store.connect(tmp_path) == 768

    def test_connect_does_not_modify_remote(self, store: QdrantVectorStore, qdrant: FakeQdrant) -> None:
        assert qdrant.created == []
        assert all(request.method == "GET" for request in qdrant.requests)

    def test_connect_with_qdrant_down(
        self, qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path
    ) -> None:
        qdrant.down = True
        store = _new_store(qdrant, embedder, retry_policy)

        store.connect(tmp_path)

        assert store.collection_exists is False
        assert store.last_error is not None

    def test_existing_collection_detected(
        self, qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path
    ) -> None:
        qdrant.collections["test_collection"] = {"size": 21, "points": {}}
        store = _new_store(qdrant, embedder, retry_policy)

        store.connect(tmp_path)

        assert store.collection_exists is True


class TestEnsureCollection:
    """Tests for collection creation and recreation."""

    def test_creates_missing_collection(self, store: QdrantVectorStore, qdrant: FakeQdrant) -> None:
        store.ensure_collection()

        assert qdrant.created == [("test_collection", 21)]
        assert store.collection_exists is True

    def test_idempotent(self, store: QdrantVectorStore, qdrant: FakeQdrant) -> None:
        store.ensure_collection()
        store.ensure_collection()

        assert qdrant.created == [("test_collection", 21)]
        assert qdrant.deleted == []

    def test_recreates_on_dimension_change(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, tmp_path: Path
    ) -> None:
        store.ensure_collection()
        store.ensure_collection(8)

        assert qdrant.deleted == ["test_collection"]
        assert qdrant.collections["test_collection"]["size"] == 8
        assert store.dimension == 8
        assert load_collection_config(tmp_path / ".codecompass").dimension == 8


class TestUpsert:
    """Tests for storing documents."""

    def test_creates_collection_on_first_write(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, embedder: FakeEmbedder
    ) -> None:
        document = _doc("a.py", "def foo(): return 1", "Python", functions="foo")

        assert store.upsert(document, embedder.embed(document.content))
        assert qdrant.created == [("test_collection", 21)]
        assert len(qdrant.points("test_collection")) == 1

    def test_payload_layout(self, store: QdrantVectorStore, qdrant: FakeQdrant, embedder: FakeEmbedder) -> None:
        document = _doc("b.go", "package main func bar", "Go", functions="bar", package="main", extra="x")
        store.upsert(document, embedder.embed(document.content))

        _, payload = qdrant.points("test_collection")[compute_point_id(document.id)]

        assert payload["id"] == "/repo/b.go"
        assert payload["filePath"] == "/repo/b.go"
        assert payload["fileName"] == "b.go"
        assert payload["summary"] == "Summary of b.go"
        assert payload["content"] == "package main func bar"
        assert payload["fileType"] == "go"
        assert payload["language"] == "Go"
        assert payload["functions"] == "bar"
        assert payload["classes"] == ""
        assert payload["imports"] == ""
        assert payload["package"] == "main"
        assert payload["metadata"] == {
            "extra": "x",
            "extension": "go",
            "size": len("package main func bar"),
            "lastModified": 1700000000.0,
        }

    def test_same_document_overwrites(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, embedder: FakeEmbedder
    ) -> None:
        document = _doc("a.py", "def foo(): return 1", "Python")
        store.upsert(document, embedder.embed(document.content))
        document.summary = "updated"
        store.upsert(document, embedder.embed(document.content))

        points = qdrant.points("test_collection")
        assert len(points) == 1
        assert next(iter(points.values()))[1]["summary"] == "updated"

    def test_dimension_change_recreates_once(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, tmp_path: Path
    ) -> None:
        """A new embedding size drops and recreates the collection exactly once."""
        store.ensure_collection()
        first = _doc("a.py", "x", "Python")
        second = _doc("b.py", "y", "Python")

        assert store.upsert(first, np.ones(4, dtype="float32"))
        assert store.upsert(second, np.ones(4, dtype="float32"))

        assert qdrant.deleted == ["test_collection"]
        assert qdrant.created == [("test_collection", 21), ("test_collection", 4)]
        assert store.dimension == 4
        assert load_collection_config(tmp_path / ".codecompass").dimension == 4
        assert len(qdrant.points("test_collection")) == 2

    def test_refused_reset_keeps_data(
        self, qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path
    ) -> None:
        store = _new_store(qdrant, embedder, retry_policy, confirm_reset=lambda old, new: False)
        store.connect(tmp_path)
        store.ensure_collection()

        assert not store.upsert(_doc("a.py", "x", "Python"), np.ones(4, dtype="float32"))
        assert isinstance(store.last_error, DimensionMismatchError)
        assert (store.last_error.expected, store.last_error.actual) == (21, 4)
        assert qdrant.deleted == []
        assert store.dimension == 21

    def test_empty_vector_rejected(self, store: QdrantVectorStore) -> None:
        assert not store.upsert(_doc("a.py", "x", "Python"), np.array([], dtype="float32"))
        assert isinstance(store.last_error, VectorStoreError)

    def test_transient_failure_is_retried(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, embedder: FakeEmbedder, sleeps: list[float]
    ) -> None:
        qdrant.fail_upserts = 1
        document = _doc("a.py", "def foo", "Python")

        assert store.upsert(document, embedder.embed(document.content))
        assert sleeps == [2.0]

    def test_persistent_failure_returns_false(
        self, store: QdrantVectorStore, qdrant: FakeQdrant, embedder: FakeEmbedder
    ) -> None:
        store.ensure_collection()
        qdrant.fail_upserts = 10

        assert not store.upsert(_doc("a.py", "def foo", "Python"), embedder.embed("def foo"))
        assert store.last_error is not None


class TestSearch:
    """Tests for similarity search."""

    def test_ranked_above_threshold(self, store: QdrantVectorStore, embedder: FakeEmbedder) -> None:
        _index(store, embedder)

        results = store.search("foo function", limit=5, similarity_threshold=0.3)

        assert [result.file_name for result in results] == ["a.py"]
        assert results[0].summary == "Summary of a.py"
        assert results[0].content == "def foo(): return 1"
        assert results[0].language == "Python"
        assert results[0].metadata["functions"] == "foo"
        assert results[0].metadata["extension"] == "py"

    def test_zero_threshold_returns_everything_sorted(
        self, store: QdrantVectorStore, embedder: FakeEmbedder
    ) -> None:
        _index(store, embedder)

        results = store.search("foo function", limit=10, similarity_threshold=0.0)

        assert len(results) == 3
        assert results[0].file_name == "a.py"
        scores = [result.similarity for result in results]
        assert scores == sorted(scores, reverse=True)

    def test_limit(self, store: QdrantVectorStore, embedder: FakeEmbedder) -> None:
        _index(store, embedder)
        assert len(store.search("foo", limit=1, similarity_threshold=0.0)) == 1

    def test_filters_are_sent(
        self, store: QdrantVectorStore, embedder: FakeEmbedder, qdrant: FakeQdrant
    ) -> None:
        _index(store, embedder)

        results = store.search("bar", limit=10, filters={"language": "Go"}, similarity_threshold=0.0)

        assert [result.file_name for result in results] == ["b.go"]
        assert qdrant.last_search["filter"] == build_filter({"language": "Go"})
        assert qdrant.last_search["score_threshold"] == 0.0

    def test_client_side_threshold_and_order(self, embedder: FakeEmbedder, retry_policy: RetryPolicy) -> None:
        """Hits below the threshold are dropped even when the server returns them."""

        def handler(request: httpx.Request) -> httpx.Response:
            hits = [
                {"id": 1, "score": 0.4, "payload": {"id": "low", "filePath": "/low"}},
                {"id": 2, "score": 0.9, "payload": {"id": "high", "filePath": "/high"}},
                {"id": 3, "score": 0.6, "payload": {"id": "mid", "filePath": "/mid"}},
            ]
            return httpx.Response(200, json={"result": hits})

        store = QdrantVectorStore(
            embedder,
            collection_name="c",
            url=QDRANT_URL,
            retry_policy=retry_policy,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        results = store.search("foo", similarity_threshold=0.5)

        assert [result.id for result in results] == ["high", "mid"]
        assert all(result.similarity >= 0.5 for result in results)

    def test_malformed_hits_are_skipped(self, embedder: FakeEmbedder, retry_policy: RetryPolicy) -> None:
        """Hits without a usable score or payload are dropped, the rest are kept."""

        def handler(request: httpx.Request) -> httpx.Response:
            hits = [
                {"id": 1, "score": None, "payload": {"id": "null", "filePath": "/null"}},
                {"id": 2, "payload": {"id": "missing", "filePath": "/missing"}},
                {"id": 3, "score": "high", "payload": {"id": "text", "filePath": "/text"}},
                {"id": 4, "score": 0.8, "payload": ["not", "an", "object"]},
                {"id": 5, "score": 0.7, "payload": {"id": "good", "filePath": "/good"}},
            ]
            return httpx.Response(200, json={"result": hits})

        store = QdrantVectorStore(
            embedder,
            collection_name="c",
            url=QDRANT_URL,
            retry_policy=retry_policy,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        results = store.search("foo", similarity_threshold=0.0)

        assert [result.id for result in results] == ["good"]
        assert results[0].similarity == pytest.approx(0.7)

    def test_missing_collection(self, store: QdrantVectorStore) -> None:
        assert store.search("foo") == []

    def test_embedding_failure(self, store: QdrantVectorStore, embedder: FakeEmbedder) -> None:
        _index(store, embedder)
        embedder.fail = True
        assert store.search("foo", similarity_threshold=0.0) == []

    def test_dimension_mismatch(self, store: QdrantVectorStore, embedder: FakeEmbedder) -> None:
        _index(store, embedder)
        store.dimension = 99
        assert store.search("foo", similarity_threshold=0.0) == []

    def test_unreachable_store(
        self, store: QdrantVectorStore, embedder: FakeEmbedder, qdrant: FakeQdrant
    ) -> None:
        _index(store, embedder)
        qdrant.down = True

        assert store.search("foo", similarity_threshold=0.0) == []
        assert store.last_error is not None

    @pytest.mark.parametrize("query,limit", [("", 5), ("   ", 5), ("foo", 0)])
    def test_degenerate_queries(self, store: QdrantVectorStore, query: str, limit: int) -> None:
        assert store.search(query, limit=limit) == []


class TestMaintenance:
    """Tests for health, counting and deletion."""

    def test_health(self, store: QdrantVectorStore, qdrant: FakeQdrant, sleeps: list[float]) -> None:
        assert store.health() is True
        qdrant.down = True
        assert store.health() is False
        assert sleeps == [2.0, 2.0]

    def test_document_count(self, store: QdrantVectorStore, embedder: FakeEmbedder, qdrant: FakeQdrant) -> None:
        assert store.document_count() == 0
        _index(store, embedder)
        assert store.document_count() == 3
        qdrant.down = True
        assert store.document_count() == 0

    def test_delete_collection(self, store: QdrantVectorStore, qdrant: FakeQdrant) -> None:
        store.ensure_collection()

        assert store.delete_collection() is True
        assert store.collection_exists is False
        assert "test_collection" not in qdrant.collections
        assert store.delete_collection() is False

    def test_api_key_header(self, embedder: FakeEmbedder, retry_policy: RetryPolicy, qdrant: FakeQdrant) -> None:
        store = _new_store(qdrant, embedder, retry_policy, api_key="secret")
        store.health()
        assert qdrant.requests[-1].headers["api-key"] == "secret"
