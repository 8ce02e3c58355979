"""FastAPI application exposing CodeCompass over HTTP."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from codecompass import __version__
from codecompass.config import AppConfig
from codecompass.exceptions import CodeCompassError
from codecompass.models import ConversationTurn, SearchResult
from codecompass.service import CodeCompass

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="CodeCompass", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    project: str | None = None
    limit: int = 10
    threshold: float | None = None
    filters: Dict[str, str] = Field(default_factory=dict)


class TurnPayload(BaseModel):
    text: str
    is_user: bool


class AskPayload(BaseModel):
    question: str
    project: str | None = None
    limit: int = 5
    threshold: float | None = None
    history: List[TurnPayload] = Field(default_factory=list)


class IndexPayload(BaseModel):
    project: str
    full: bool = False


def _resolve_project(project: str | None) -> Path:
    raw = (project or "").strip().replace("\r", "").replace("\n", "")
    if "\0" in raw:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")
    path = Path(os.path.realpath(os.path.expanduser(raw))) if raw else Path.cwd()
    if not path.is_dir():
        raise HTTPException(status_code=404, detail=f"Project directory not found: {path}")
    return path


def _open_service(project: Path) -> CodeCompass:
    try:
        config = AppConfig.from_env()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=f"Invalid configuration: {exc}") from exc
    return CodeCompass(project, config)


def _result_dict(result: SearchResult) -> dict[str, Any]:
    data = asdict(result)
    data.pop("content", None)
    return data


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.post("/search")
async def search_code(payload: SearchPayload) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    limit = max(1, min(payload.limit, 50))
    project = _resolve_project(payload.project)

    def run() -> List[SearchResult]:
        service = _open_service(project)
        try:
            return service.search(query, limit, payload.filters or None, payload.threshold)
        finally:
            service.close()

    results = await asyncio.to_thread(run)
    return {"results": [_result_dict(result) for result in results]}


@app.post("/ask")
async def ask_question(payload: AskPayload) -> dict[str, Any]:
    question = payload.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Empty question")

    limit = max(1, min(payload.limit, 20))
    project = _resolve_project(payload.project)

    def run() -> tuple[str, List[SearchResult]]:
        service = _open_service(project)
        try:
            service.session.history.extend(
                ConversationTurn(text=turn.text, is_user=turn.is_user) for turn in payload.history
            )
            return service.ask(question, limit, None, payload.threshold)
        finally:
            service.close()

    try:
        answer, results = await asyncio.to_thread(run)
    except CodeCompassError as exc:
        LOGGER.error("Answer generation failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"answer": answer, "results": [_result_dict(result) for result in results]}


def _run_index_job(project: Path, full: bool) -> dict[str, Any]:
    service = _open_service(project)
    try:
        stats = service.reindex_all() if full else service.index_project()
    finally:
        service.close()

    return {
        "indexed": stats.indexed,
        "skipped": stats.skipped,
        "failed": stats.failed,
        "aborted": stats.aborted,
        "processed_files": [str(path) for path in stats.processed_files],
    }


@app.post("/index")
async def index_project(payload: IndexPayload) -> dict[str, Any]:
    if not payload.project.strip():
        raise HTTPException(status_code=400, detail="No project provided")
    project = _resolve_project(payload.project)

    try:
        stats = await asyncio.to_thread(_run_index_job, project, payload.full)
    except HTTPException:
        raise
    except Exception as exc:
        LOGGER.exception("Indexing failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {"status": "ok", "project": str(project), "stats": stats}


@app.get("/documents/count")
async def document_count(project: str | None = None) -> dict[str, int]:
    resolved = _resolve_project(project)

    def run() -> int:
        service = _open_service(resolved)
        try:
            return service.document_count()
        finally:
            service.close()

    return {"count": await asyncio.to_thread(run)}


@app.get("/health")
async def health(project: str | None = None) -> dict[str, Any]:
    resolved = _resolve_project(project)

    def run() -> dict[str, bool]:
        service = _open_service(resolved)
        try:
            return service.check_services().as_dict()
        finally:
            service.close()

    status = await asyncio.to_thread(run)
    return {"status": "ok" if all(status.values()) else "degraded", "services": status}
