"""OpenRouter backend (OpenAI-compatible chat completions), generation only."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from codecompass.embedding import prompts
from codecompass.embedding.base import GenerationProvider, HTTPBackend
from codecompass.exceptions import (
    AuthenticationError,
    CodeCompassError,
    GenerationError,
    MalformedResponseError,
    ServiceError,
)
from codecompass.ingestion.metadata import detect_language
from codecompass.models import ConversationTurn, SearchResult

LOGGER = logging.getLogger(__name__)

DEFAULT_URL = "https://openrouter.ai/api/v1"


class OpenRouterGenerationProvider(HTTPBackend, GenerationProvider):
    service = "OpenRouter"
    name = "openrouter"

    def __init__(
        self,
        api_key: str | None,
        model: str = "google/gemini-2.0-flash-exp:free",
        base_url: str = DEFAULT_URL,
        *,
        temperature: float = 0.2,
        max_tokens: int = 1500,
        **kwargs,
    ) -> None:
        super().__init__(base_url, **kwargs)
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthenticationError("OpenRouter API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _complete_once(self, messages: list[dict[str, str]]) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        data = self._post("/chat/completions", payload, headers=self._headers())
        if "error" in data:
            raise ServiceError(f"OpenRouter returned an error: {data['error']}")
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError("OpenRouter response has no message content") from exc
        if not isinstance(content, str):
            raise MalformedResponseError("OpenRouter message content is not text")
        return content

    def complete(self, messages: list[dict[str, str]]) -> str:
        try:
            return self._call("completion", self._complete_once, messages)
        except CodeCompassError as exc:
            raise GenerationError(f"OpenRouter generation failed: {exc}") from exc

    def generate(self, prompt: str) -> str:
        return self.complete([{"role": "user", "content": prompt}])

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
        return self.complete(prompts.chat_messages(question, results, history))

    def test_connection(self) -> bool:
        if not self.api_key:
            LOGGER.warning("OpenRouter API key is not configured")
            return False
        return self._probe("/models", headers={"Authorization": f"Bearer {self.api_key}"})
