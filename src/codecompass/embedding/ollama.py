"""Ollama backend (local HTTP server) for embeddings and generation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from codecompass.embedding import prompts
from codecompass.embedding.base import EmbeddingProvider, GenerationProvider, HTTPBackend, to_vector
from codecompass.exceptions import (
    CodeCompassError,
    EmbeddingError,
    GenerationError,
    MalformedResponseError,
)
from codecompass.ingestion.metadata import detect_language
from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.text import truncate

LOGGER = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"
EMBED_PREFIX = "Represent this code for retrieval: "
MAX_EMBED_CHARS = 4_000


class OllamaEmbeddingProvider(HTTPBackend, EmbeddingProvider):
    service = "Ollama"
    name = "ollama"

    def __init__(self, model: str = "nomic-embed-text", base_url: str = DEFAULT_URL, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.model = model

    def _embed_once(self, text: str, timeout: float | None = None) -> np.ndarray:
        data = self._post(
            "/api/embeddings",
            {"model": self.model, "prompt": EMBED_PREFIX + truncate(text, MAX_EMBED_CHARS)},
            timeout=timeout,
        )
        return to_vector(data.get("embedding"), self.service)

    def embed(self, text: str) -> np.ndarray:
        try:
            return self._call("embedding", self._embed_once, text)
        except CodeCompassError as exc:
            raise EmbeddingError(f"Ollama embedding failed: {exc}") from exc

    def test_connection(self) -> bool:
        """Single embedding call with the probe timeout and no retries."""
        try:
            return self._embed_once("test", timeout=self.probe_timeout).size > 0
        except CodeCompassError as exc:
            LOGGER.warning("Ollama embedding provider unavailable: %s", exc)
            return False


class OllamaGenerationProvider(HTTPBackend, GenerationProvider):
    service = "Ollama"
    name = "ollama"

    def __init__(self, model: str = "codellama:7b-code", base_url: str = DEFAULT_URL, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.model = model

    def _generate_once(self, prompt: str) -> str:
        data = self._post("/api/generate", {"model": self.model, "prompt": prompt, "stream": False})
        text = data.get("response")
        if not isinstance(text, str):
            raise MalformedResponseError("Ollama response has no 'response' text")
        return text

    def generate(self, prompt: str) -> str:
        try:
            return self._call("generation", self._generate_once, prompt)
        except CodeCompassError as exc:
            raise GenerationError(f"Ollama generation failed: {exc}") from exc

    def summarize(self, code: str, file_name: str) -> str:
        language = detect_language(Path(file_name).suffix)
        return prompts.clean_summary(self.generate(prompts.summary_prompt(code, language)))

    def contextualize(self, query: str, results: Sequence[SearchResult]) -> str:
        return self.generate(prompts.context_prompt(query, results))

    def answer(
        self,
        question: str,
        results: Sequence[SearchResult],
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        messages = prompts.chat_messages(question, results, history)
        return self.generate(prompts.flatten_messages(messages))

    def test_connection(self) -> bool:
        return self._probe("/api/tags")
