"""Google Gemini backend for embeddings and generation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from codecompass.embedding import prompts
from codecompass.embedding.base import EmbeddingProvider, GenerationProvider, HTTPBackend, to_vector
from codecompass.exceptions import (
    AuthenticationError,
    CodeCompassError,
    EmbeddingError,
    GenerationError,
    MalformedResponseError,
)
from codecompass.ingestion.metadata import detect_language
from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.text import truncate

LOGGER = logging.getLogger(__name__)

DEFAULT_URL = "https://generativelanguage.googleapis.com/v1beta"
MAX_EMBED_CHARS = 8_000


class _GeminiBackend(HTTPBackend):
    service = "Gemini"

    def __init__(self, api_key: str | None, model: str, base_url: str = DEFAULT_URL, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.api_key = api_key
        self.model = model

    def _model_call(
        self, method: str, payload: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        if not self.api_key:
            raise AuthenticationError("Gemini API key is not configured")
        return self._post(
            f"/models/{self.model}:{method}", payload, params={"key": self.api_key}, timeout=timeout
        )


class GeminiEmbeddingProvider(_GeminiBackend, EmbeddingProvider):
    name = "gemini"

    def __init__(self, api_key: str | None, model: str = "embedding-001", **kwargs) -> None:
        super().__init__(api_key, model, **kwargs)

    def _embed_once(self, text: str, timeout: float | None = None) -> np.ndarray:
        data = self._model_call(
            "embedContent",
            {
                "model": f"models/{self.model}",
                "content": {"parts": [{"text": truncate(text, MAX_EMBED_CHARS)}]},
            },
            timeout=timeout,
        )
        embedding = data.get("embedding")
        values = embedding.get("values") if isinstance(embedding, dict) else None
        return to_vector(values, self.service)

    def embed(self, text: str) -> np.ndarray:
        try:
            return self._call("embedding", self._embed_once, text)
        except CodeCompassError as exc:
            raise EmbeddingError(f"Gemini embedding failed: {exc}") from exc

    def test_connection(self) -> bool:
        try:
            return self._embed_once("test", timeout=self.probe_timeout).size > 0
        except CodeCompassError as exc:
            LOGGER.warning("Gemini embedding provider unavailable: %s", exc)
            return False


class GeminiGenerationProvider(_GeminiBackend, GenerationProvider):
    name = "gemini"

    def __init__(self, api_key: str | None, model: str = "gemini-1.5-pro", **kwargs) -> None:
        super().__init__(api_key, model, **kwargs)

    def _generate_once(self, contents: list[dict[str, Any]], system: str | None = None) -> str:
        payload: dict[str, Any] = {"contents": contents}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        data = self._model_call("generateContent", payload)
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError("Gemini response has no candidate text") from exc

    def _generate(self, contents: list[dict[str, Any]], system: str | None = None) -> str:
        try:
            return self._call("generation", self._generate_once, contents, system)
        except CodeCompassError as exc:
            raise GenerationError(f"Gemini generation failed: {exc}") from exc

    def generate(self, prompt: str) -> str:
        return self._generate([{"role": "user", "parts": [{"text": prompt}]}])

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
        system = messages[0]["content"]
        contents = [
            {"role": "model" if message["role"] == "assistant" else "user", "parts": [{"text": message["content"]}]}
            for message in messages[1:]
        ]
        return self._generate(contents, system)

    def test_connection(self) -> bool:
        if not self.api_key:
            LOGGER.warning("Gemini API key is not configured")
            return False
        return self._probe("/models", params={"key": self.api_key})
