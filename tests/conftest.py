"""Shared fakes: an in-memory Qdrant behind httpx.MockTransport and deterministic providers."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Sequence

import httpx
import numpy as np
import pytest

from codecompass.config import AppConfig
from codecompass.embedding.base import EmbeddingProvider, GenerationProvider
from codecompass.exceptions import ConnectivityError, EmbeddingError, GenerationError
from codecompass.index.storage import QdrantVectorStore
from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.retry import RetryPolicy
from codecompass.utils.text import tokenize

QDRANT_URL = "http://qdrant.test"

VOCABULARY = (
    "foo", "bar", "function", "functions", "def", "func", "package", "main",
    "return", "python", "go", "markdown", "notes", "project", "payment",
    "processor", "class", "user", "login", "database",
)

_COLLECTION_RE = re.compile(r"^/collections/([^/]+)(/points(?:/search)?)?$")


class FakeQdrant:
    """Implements the subset of the Qdrant REST API the store uses."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self.created: list[tuple[str, int]] = []
        self.deleted: list[str] = []
        self.requests: list[httpx.Request] = []
        self.down = False
        self.fail_upserts = 0
        self.fail_deletes = False
        self.last_search: dict[str, Any] | None = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=self.transport())

    def points(self, name: str) -> dict[int, tuple[np.ndarray, dict]]:
        return self.collections[name]["points"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/healthz":
            return httpx.Response(200, text="healthz check passed")

        match = _COLLECTION_RE.match(path)
        if not match:
            return httpx.Response(404, json={"status": {"error": "not found"}})
        name, suffix = match.group(1), match.group(2)
        payload = _json(request)

        if suffix is None:
            return self._collection(request.method, name, payload)
        if name not in self.collections:
            return httpx.Response(404, json={"status": {"error": f"Collection {name} not found"}})
        if suffix == "/points" and request.method == "PUT":
            return self._upsert(name, payload)
        if suffix == "/points/search" and request.method == "POST":
            return self._search(name, payload)
        return httpx.Response(405, json={"status": {"error": "method not allowed"}})

    def _collection(self, method: str, name: str, payload: dict) -> httpx.Response:
        if method == "GET":
            if name not in self.collections:
                return httpx.Response(404, json={"status": {"error": f"Collection {name} not found"}})
            collection = self.collections[name]
            return httpx.Response(
                200,
                json={
                    "result": {
                        "status": "green",
                        "points_count": len(collection["points"]),
                        "config": {"params": {"vectors": {"size": collection["size"], "distance": "Cosine"}}},
                    }
                },
            )
        if method == "PUT":
            size = payload["vectors"]["size"]
            self.collections[name] = {"size": size, "points": {}}
            self.created.append((name, size))
            return httpx.Response(200, json={"result": True})
        if method == "DELETE":
            if self.fail_deletes:
                return httpx.Response(503, json={"status": {"error": "service unavailable"}})
            if name not in self.collections:
                return httpx.Response(404, json={"status": {"error": "not found"}})
            del self.collections[name]
            self.deleted.append(name)
            return httpx.Response(200, json={"result": True})
        return httpx.Response(405, json={"status": {"error": "method not allowed"}})

    def _upsert(self, name: str, payload: dict) -> httpx.Response:
        if self.fail_upserts:
            self.fail_upserts -= 1
            return httpx.Response(503, json={"status": {"error": "service unavailable"}})
        collection = self.collections[name]
        for point in payload["points"]:
            vector = np.asarray(point["vector"], dtype="float32")
            if vector.size != collection["size"]:
                return httpx.Response(
                    400, json={"status": {"error": "Wrong input: Vector dimension error"}}
                )
            collection["points"][point["id"]] = (vector, point["payload"])
        return httpx.Response(200, json={"result": {"status": "completed"}})

    def _search(self, name: str, payload: dict) -> httpx.Response:
        self.last_search = payload
        collection = self.collections[name]
        query = np.asarray(payload["vector"], dtype="float32")
        threshold = payload.get("score_threshold")
        clauses = (payload.get("filter") or {}).get("must", [])
        hits = []
        for point_id, (vector, point_payload) in collection["points"].items():
            if any(point_payload.get(c["key"]) != c["match"]["value"] for c in clauses):
                continue
            score = _cosine(query, vector)
            if threshold is not None and score < threshold:
                continue
            hits.append({"id": point_id, "version": 0, "score": score, "payload": point_payload})
        hits.sort(key=lambda hit: hit["score"], reverse=True)
        return httpx.Response(200, json={"result": hits[: payload["limit"]]})


def _json(request: httpx.Request) -> dict:
    content = request.content
    return json.loads(content) if content else {}


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b) / denominator)


class FakeEmbedder(EmbeddingProvider):
    """Counts vocabulary words; unknown-only text lands in a trailing bucket."""

    name = "fake"

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY) -> None:
        self.vocabulary = list(vocabulary)
        self._positions = {word: index for index, word in enumerate(self.vocabulary)}
        self.calls: list[str] = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return len(self.vocabulary) + 1

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("fake embedding failed") from ConnectivityError("connection refused")
        vector = np.zeros(self.dimension, dtype="float32")
        for token in tokenize(text):
            position = self._positions.get(token)
            if position is not None:
                vector[position] += 1.0
        if not vector.any():
            vector[-1] = 1.0
        return vector


class FakeGenerator(GenerationProvider):
    name = "fake"

    def __init__(self) -> None:
        self.fail = False
        self.available = True
        self.answers: list[tuple[str, list[SearchResult], list[ConversationTurn]]] = []

    def summarize(self, code: str, file_name: str) -> str:
        if self.fail:
            raise GenerationError("fake generation failed")
        return f"Summary of {file_name}"

    def contextualize(self, query: str, results: Sequence[SearchResult]) -> str:
        if self.fail:
            raise GenerationError("fake generation failed")
        return f"Context for {query}: " + ", ".join(result.file_path for result in results)

    def answer(
        self,
        question: str,
        results: Sequence[SearchResult],
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        if self.fail:
            raise GenerationError("fake generation failed")
        self.answers.append((question, list(results), list(history)))
        return f"Answer to {question}"

    def test_connection(self) -> bool:
        return self.available


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retry_policy(sleeps: list[float]) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay=2.0, rate_limit_delay=5.0, sleep=sleeps.append)


@pytest.fixture
def qdrant() -> FakeQdrant:
    return FakeQdrant()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store(qdrant: FakeQdrant, embedder: FakeEmbedder, retry_policy: RetryPolicy, tmp_path: Path):
    store = QdrantVectorStore(
        embedder,
        collection_name="test_collection",
        url=QDRANT_URL,
        retry_policy=retry_policy,
        client=qdrant.client(),
    )
    store.connect(tmp_path)
    yield store
    store.close()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(qdrant_url=QDRANT_URL, retry_delay=0.0, rate_limit_delay=0.0)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "a.py").write_text("def foo():\n    return 1\n", encoding="utf-8")
    (root / "b.go").write_text("package main\n\nfunc bar() int {\n\treturn 2\n}\n", encoding="utf-8")
    (root / "c.md").write_text("Plain notes about the project.\n", encoding="utf-8")
    return root
