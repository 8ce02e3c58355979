"""Provider capability sets and the shared HTTP backend plumbing."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

import httpx
import numpy as np

from codecompass.exceptions import MalformedResponseError
from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.http import request_json
from codecompass.utils.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Turns text into a fixed-length float32 vector."""

    name = "embedding"

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Return the embedding of *text*; raises ``EmbeddingError`` on failure."""

    def test_connection(self) -> bool:
        """Probe the backend with a tiny embedding call. Never raises."""
        try:
            vector = self.embed("test")
        except Exception as exc:
            LOGGER.warning("%s embedding provider unavailable: %s", self.name, exc)
            return False
        return vector.size > 0

    def close(self) -> None:
        return None


class GenerationProvider(ABC):
    """Produces natural-language text about code."""

    name = "generation"

    @abstractmethod
    def summarize(self, code: str, file_name: str) -> str:
        ...

    @abstractmethod
    def contextualize(self, query: str, results: Sequence[SearchResult]) -> str:
        ...

    @abstractmethod
    def answer(
        self,
        question: str,
        results: Sequence[SearchResult],
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        ...

    @abstractmethod
    def test_connection(self) -> bool:
        ...

    def close(self) -> None:
        return None


def to_vector(values: Any, service: str) -> np.ndarray:
    """Validate a decoded JSON list of numbers as an embedding."""
    if not isinstance(values, list) or not values:
        raise MalformedResponseError(f"{service} response has no embedding values")
    try:
        vector = np.asarray(values, dtype="float32")
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError(f"{service} embedding contains non-numeric values") from exc
    if vector.ndim != 1:
        raise MalformedResponseError(f"{service} embedding is not a flat vector")
    return vector


class HTTPBackend:
    """Owns the httpx client, timeouts and retry policy of a remote backend."""

    service = "provider"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 240.0,
        probe_timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def _post(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return request_json(
            self._client,
            "POST",
            f"{self.base_url}/{path.lstrip('/')}",
            service=self.service,
            json=payload,
            params=params,
            headers=headers,
            timeout=timeout if timeout is not None else self.timeout,
        )

    def _probe(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Cheap GET with the short probe timeout. Never raises."""
        try:
            request_json(
                self._client,
                "GET",
                f"{self.base_url}/{path.lstrip('/')}",
                service=self.service,
                params=params,
                headers=headers,
                timeout=self.probe_timeout,
            )
        except Exception as exc:
            LOGGER.warning("%s is not reachable: %s", self.service, exc)
            return False
        return True

    def _call(self, description: str, func, *args, **kwargs):
        return self.retry_policy.call(func, *args, description=f"{self.service} {description}", **kwargs)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
