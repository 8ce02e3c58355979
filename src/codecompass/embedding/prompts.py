"""Prompt construction shared by all generative backends."""

from __future__ import annotations

from typing import Sequence

from codecompass.models import ConversationTurn, SearchResult
from codecompass.utils.text import truncate

MAX_SUMMARY_INPUT_CHARS = 8_000
MAX_SUMMARY_CHARS = 500
MAX_ANSWER_FILE_CHARS = 6_000
CONTEXT_RESULTS = 5
ANSWER_RESULTS = 3
HISTORY_TURNS = 6
TRUNCATION_MARKER = "\n// ... [content truncated] ..."

SYSTEM_PROMPT = (
    "You are a helpful coding assistant with access to the user's codebase. "
    "Answer questions using the relevant files provided. Reference specific files, "
    "classes and functions when you can, and say so when the files do not contain "
    "enough information to answer."
)

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant files in the codebase for your question. "
    "Try rephrasing or asking about a different topic."
)


def summary_prompt(code: str, language: str) -> str:
    return (
        f"Generate a concise summary (max 3 sentences) of this {language} file. "
        "Include main classes, methods, and functionality:\n\n"
        + truncate(code, MAX_SUMMARY_INPUT_CHARS)
    )


def clean_summary(text: str) -> str:
    """Trim a generated summary to the stored length."""
    return truncate(text.strip(), MAX_SUMMARY_CHARS, suffix="...")


def context_prompt(query: str, results: Sequence[SearchResult]) -> str:
    lines = [
        f"Based on the following code files, provide context relevant to the query: {query}",
        "",
    ]
    for number, result in enumerate(results[:CONTEXT_RESULTS], start=1):
        lines.append(f"File {number}: {result.file_path}")
        lines.append(f"Language: {result.language or 'Unknown'}")
        lines.append(f"Summary: {result.summary}")
        lines.append(f"Similarity: {result.similarity:.2f}")
        classes = result.metadata.get("classes", "")
        if classes:
            lines.append(f"Classes: {classes}")
        functions = result.metadata.get("functions", "")
        if functions:
            lines.append(f"Functions: {functions}")
        lines.append("")
    lines.append("Explain how these files relate to the query and which ones matter most.")
    return "\n".join(lines)


def file_context(result: SearchResult) -> str:
    """Render one retrieved file for the answer prompt."""
    header = f"File: {result.file_path}"
    if result.content:
        body = truncate(result.content, MAX_ANSWER_FILE_CHARS)
        if len(result.content) > MAX_ANSWER_FILE_CHARS:
            body += TRUNCATION_MARKER
        return f"{header}\n```\n{body}\n```"

    lines = [header, f"// Summary: {result.summary}"]
    for key in ("classes", "functions", "imports"):
        value = result.metadata.get(key, "")
        if value:
            lines.append(f"// {key.capitalize()}: {value}")
    return "\n".join(lines)


def answer_prompt(question: str, results: Sequence[SearchResult]) -> str:
    """User message carrying the retrieved files and the question."""
    sections = [file_context(result) for result in results[:ANSWER_RESULTS]]
    context = "\n\n".join(sections) if sections else "(no relevant files found)"
    return f"Relevant files from the codebase:\n\n{context}\n\nQuestion: {question}"


def chat_messages(
    question: str,
    results: Sequence[SearchResult],
    history: Sequence[ConversationTurn] = (),
) -> list[dict[str, str]]:
    """OpenAI-style message list: system prompt, recent history, then the question."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    for turn in list(history)[-HISTORY_TURNS:]:
        messages.append({"role": "user" if turn.is_user else "assistant", "content": turn.text})
    messages.append({"role": "user", "content": answer_prompt(question, results)})
    return messages


def flatten_messages(messages: Sequence[dict[str, str]]) -> str:
    """Single prompt string for completion-style endpoints."""
    labels = {"system": "System", "user": "User", "assistant": "Assistant"}
    parts = [f"{labels.get(message['role'], message['role'])}: {message['content']}" for message in messages]
    parts.append("Assistant:")
    return "\n\n".join(parts)
