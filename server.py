"""
server.py — Trove FastAPI server.

Endpoints
---------
  GET    /health                           — liveness check {status, ollama}
  GET    /api/status                       — asset counts + AI / queue state

  Search
  GET    /api/search?q=&limit=&offset=     — hybrid keyword + semantic search

  Assets
  GET    /api/assets?page=&limit=&file_type=&uploaded_by=
  GET    /api/assets/{id}
  PATCH  /api/assets/{id}                  — filename / user_tags only
  DELETE /api/assets/{id}                  — blobs + vector + row
  POST   /api/assets/{id}/download         — count the download, stream bytes
  POST   /api/assets/{id}/retry-processing — reset to pending, re-queue

  AI
  POST   /api/ai/process                   — run the pipeline now for one asset

Errors: unknown asset → 404, invalid input → 400, store failure during
search → 500 "Search failed".
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Generator
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict

from config import Config, configure_logging, get_config, ollama_available
from trove.assets import (
    delete_asset_everywhere,
    download_asset,
    list_assets_page,
    update_asset_fields,
)
from trove.blobs import BlobNotFoundError, BlobStore
from trove.db import get_asset, get_connection, get_stats
from trove.models import AssetNotFoundError, AssetValidationError, STATUS_PENDING
from trove.process import AssetProcessor, retry_processing
from trove.providers import EnrichmentProvider, build_provider
from trove.queue import ProcessingQueue
from trove.search import SearchEngine
from trove.vectors import VectorIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Services (built once in lifespan)
# ---------------------------------------------------------------------------

@dataclass
class Services:
    cfg:       Config
    blobs:     BlobStore
    provider:  EnrichmentProvider
    index:     VectorIndex
    engine:    SearchEngine
    processor: AssetProcessor
    queue:     ProcessingQueue

    def close(self) -> None:
        self.queue.stop(wait=True, timeout=5)
        self.engine.close()


def build_services(cfg: Config) -> Services:
    blobs = BlobStore(cfg.get_blob_dir())
    provider = build_provider(cfg)
    index = VectorIndex(cfg.get_vector_dir())
    processor = AssetProcessor(cfg.get_db_path(), blobs, provider, index, cfg)
    return Services(
        cfg       = cfg,
        blobs     = blobs,
        provider  = provider,
        index     = index,
        engine    = SearchEngine(provider, index, cfg),
        processor = processor,
        queue     = ProcessingQueue(processor.process_asset, workers=cfg.processing_workers),
    )


def _requeue_pending(services: Services) -> int:
    """Assets left 'pending' by a previous run go back on the queue."""
    conn = get_connection(services.cfg.get_db_path())
    try:
        ids = [
            r["id"] for r in conn.execute(
                "SELECT id FROM assets WHERE processing_status = ? ORDER BY created_at",
                (STATUS_PENDING,),
            ).fetchall()
        ]
    finally:
        conn.close()
    for asset_id in ids:
        services.queue.submit(asset_id)
    return len(ids)


_services: Services | None = None


def get_services() -> Services:
    if _services is None:
        raise HTTPException(status_code=503, detail="Server is starting up.")
    return _services


# ---------------------------------------------------------------------------
# DB dependency
# ---------------------------------------------------------------------------

def get_db(
    services: Services = Depends(get_services),
) -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency: yields one SQLite connection per request."""
    conn = get_connection(services.cfg.get_db_path())
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _services
    cfg = get_config()
    cfg.ensure_dirs()
    configure_logging(cfg)
    if not ollama_available(cfg.ollama_base_url):
        logger.warning(
            "Ollama not reachable at %s, enrichment and semantic search degrade to no-ops",
            cfg.ollama_base_url,
        )
    _services = build_services(cfg)
    _services.queue.start()
    requeued = _requeue_pending(_services)
    if requeued:
        logger.info("Re-queued %d pending assets", requeued)
    logger.info("Trove server ready on port %s", cfg.server_port)
    try:
        yield
    finally:
        logger.info("Trove server shutting down")
        _services.close()
        _services = None


# ---------------------------------------------------------------------------
# App + CORS
# ---------------------------------------------------------------------------

app = FastAPI(title="Trove", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class AssetUpdateRequest(BaseModel):
    # Extra keys are kept so edits to read-only fields fail with a 400.
    model_config = ConfigDict(extra="allow")

    filename:  str | None = None
    user_tags: list[str] | None = None


class ProcessRequest(BaseModel):
    asset_id: str


class DownloadRequest(BaseModel):
    downloaded_by: str = ""


class SearchResponseModel(BaseModel):
    assets: list[dict[str, Any]]
    total:  int
    query:  str


def _not_found(e: AssetNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


# ---------------------------------------------------------------------------
# Core endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health() -> dict[str, Any]:
    ok = ollama_available(get_services().cfg.ollama_base_url)
    return {"status": "ok" if ok else "degraded", "ollama": ok}


@app.get("/api/status")
async def api_status(
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    stats = get_stats(conn)
    return {
        "assets":      stats,
        "ai_enabled":  services.provider.available,
        "queue_depth": services.queue.depth,
    }


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@app.get("/api/search", response_model=SearchResponseModel)
def api_search(
    q: str = Query("", description="Search text"),
    limit: int | None = Query(None, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required.")
    try:
        result = services.engine.search(conn, q)
    except sqlite3.Error:
        logger.exception("Search failed for %r", q)
        raise HTTPException(status_code=500, detail="Search failed")
    return result.page(limit or services.cfg.result_limit, offset).to_dict()


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

@app.get("/api/assets")
async def api_list_assets(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    file_type: str | None = Query(None),
    uploaded_by: str | None = Query(None),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return list_assets_page(conn, page, limit, file_type=file_type, uploaded_by=uploaded_by)


@app.get("/api/assets/{asset_id}")
async def api_get_asset(
    asset_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    try:
        return get_asset(conn, asset_id).to_dict()
    except AssetNotFoundError as e:
        raise _not_found(e)


@app.patch("/api/assets/{asset_id}")
async def api_update_asset(
    asset_id: str,
    req: AssetUpdateRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    try:
        asset = update_asset_fields(conn, asset_id, req.model_dump(exclude_unset=True))
    except AssetNotFoundError as e:
        raise _not_found(e)
    except AssetValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return asset.to_dict()


@app.delete("/api/assets/{asset_id}")
def api_delete_asset(
    asset_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    try:
        delete_asset_everywhere(conn, services.blobs, services.index, asset_id)
    except AssetNotFoundError as e:
        raise _not_found(e)
    return {"status": "deleted", "id": asset_id}


@app.post("/api/assets/{asset_id}/download")
def api_download_asset(
    asset_id: str,
    req: DownloadRequest | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> Response:
    downloaded_by = req.downloaded_by if req else ""
    try:
        asset, data = download_asset(conn, services.blobs, asset_id, downloaded_by)
    except AssetNotFoundError as e:
        raise _not_found(e)
    except BlobNotFoundError:
        logger.error("Blob missing for asset %s", asset_id)
        raise HTTPException(status_code=404, detail="Stored file not found.")
    return Response(
        content=data,
        media_type=asset.mime_type or "application/octet-stream",
        headers={
            "Content-Disposition": _content_disposition(asset.filename),
            "X-Download-Count": str(asset.download_count),
        },
    )


@app.post("/api/assets/{asset_id}/retry-processing")
async def api_retry_processing(
    asset_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    try:
        retry_processing(conn, asset_id, services.queue.submit)
    except AssetNotFoundError as e:
        raise _not_found(e)
    return {"status": "queued", "id": asset_id}


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------

@app.post("/api/ai/process")
def api_process(
    req: ProcessRequest,
    conn: sqlite3.Connection = Depends(get_db),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    try:
        get_asset(conn, req.asset_id)
    except AssetNotFoundError as e:
        raise _not_found(e)
    status = services.processor.process_asset(req.asset_id)
    return {"id": req.asset_id, "processing_status": status}
