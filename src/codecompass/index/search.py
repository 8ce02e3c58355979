"""Query-time retrieval: similarity search, follow-up detection and answers."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Mapping, Sequence

from codecompass.embedding.base import GenerationProvider
from codecompass.embedding.prompts import NO_RESULTS_ANSWER
from codecompass.exceptions import CodeCompassError
from codecompass.index.storage import QdrantVectorStore
from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

FOLLOW_UP_CUES = (
    "it", "this", "that", "they", "them", "these", "those",
    "he", "she", "his", "her", "their", "its",
    "what about", "how about", "and", "also", "too",
    "can you", "could you", "would you", "will you",
)
CODE_KEYWORDS = (
    "class", "method", "function", "file", "code", "implement",
    "java", "kotlin", "python", "javascript", "typescript", "golang",
    "rust", "ruby", "php", "scala", "c++", "c#",
)
FALLBACK_THRESHOLD_DROP = 0.2

_CUE_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(cue).replace(r"\ ", r"\s+") for cue in FOLLOW_UP_CUES) + r")\b",
    re.IGNORECASE,
)
# Prefix match so "implementation", "classes" or "files" count as code vocabulary.
_CODE_PATTERN = re.compile(
    r"(?<![\w])(?:" + "|".join(re.escape(word) for word in CODE_KEYWORDS) + r")",
    re.IGNORECASE,
)


def is_follow_up(question: str, history: Sequence[ConversationTurn]) -> bool:
    """Whether *question* continues the previous exchange rather than starting a new topic.

    Needs at least two prior turns. Pronouns and continuation cues mark a
    follow-up. Otherwise explicit code vocabulary marks a new topic, even in
    a short question; short or code-free questions are follow-ups.
    """
    if len(history) < 2:
        return False
    if _CUE_PATTERN.search(question):
        return True
    if _CODE_PATTERN.search(question):
        return False
    return True


class RetrievalSession:
    """Conversation-scoped retrieval over one vector store."""

    def __init__(
        self,
        store: QdrantVectorStore,
        generator: GenerationProvider | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        similarity_threshold: float = 0.5,
    ) -> None:
        self.store = store
        self.generator = generator
        self.retry_policy = retry_policy or RetryPolicy()
        self.similarity_threshold = similarity_threshold
        self.history: list[ConversationTurn] = []
        self.last_results: list[SearchResult] = []

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> List[SearchResult]:
        """Search with whole-operation retries; empty when the store stays unusable."""
        threshold = self.similarity_threshold if threshold is None else threshold
        try:
            return self.retry_policy.call(
                self.store.search,
                query,
                limit,
                filters,
                threshold,
                description="Search",
            )
        except Exception as exc:
            LOGGER.error("Search failed for %r: %s", query, exc)
            return []

    def retrieve(
        self,
        question: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> List[SearchResult]:
        """Results for *question*, reusing the previous ones for follow-ups."""
        threshold = self.similarity_threshold if threshold is None else threshold
        follow_up = is_follow_up(question, self.history)

        if follow_up and self.last_results:
            reusable = [result for result in self.last_results if result.has_usable_context()]
            if reusable:
                LOGGER.debug("Follow-up question, reusing %d previous results", len(reusable))
                return reusable[:limit]

        results = self.search(question, limit, filters, threshold)
        if not results and follow_up:
            widened = max(0.0, threshold - FALLBACK_THRESHOLD_DROP)
            LOGGER.debug("No results for follow-up, retrying with threshold %.2f", widened)
            results = self.search(question, limit, filters, widened)

        if results:
            self.last_results = list(results)
        return results

    def generate_context(self, query: str, results: Sequence[SearchResult]) -> str:
        if self.generator is None:
            raise CodeCompassError("No generation provider configured")
        return self.generator.contextualize(query, results)

    def ask_question(
        self,
        question: str,
        results: Sequence[SearchResult],
        history: Sequence[ConversationTurn] | None = None,
    ) -> str:
        if self.generator is None:
            raise CodeCompassError("No generation provider configured")
        return self.generator.answer(question, results, self.history if history is None else history)

    def ask(
        self,
        question: str,
        limit: int = 10,
        filters: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> tuple[str, List[SearchResult]]:
        """Retrieve, answer and record both turns; generation errors propagate."""
        results = self.retrieve(question, limit, filters, threshold)
        if not results and not self.history:
            answer = NO_RESULTS_ANSWER
        else:
            answer = self.ask_question(question, results)
        self.history.append(ConversationTurn(text=question, is_user=True))
        self.history.append(ConversationTurn(text=answer, is_user=False))
        return answer, results

    def reset(self) -> None:
        self.history.clear()
        self.last_results = []
