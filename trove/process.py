"""
trove/process.py — Asset processing state machine.

One run of AssetProcessor.process_asset(asset_id):
  1. fetch the asset row and its original bytes from the blob store
  2. ContentExtractor for the file type
  3. tags + summary: images get them from the vision pass; PDFs only when
     text was extracted
  4. combined text = filename + summary + extracted text + tags
  5. embedding of the combined text
  6. one UPDATE: ai_tags, ai_summary, extracted_text, embedding,
     thumbnail_path, processing_status='complete'; the embedding is also
     upserted into the vector index

Status transitions
------------------
  pending  → complete | failed     (process_asset)
  failed   → pending               (retry_processing)
  complete → pending               (retry_processing only)

Any exception inside 1–6 marks the asset 'failed' and is logged with the
asset id. process_asset() never raises. Runs for the same asset id are
serialized by a per-asset lock; each run opens its own SQLite connection.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable

from config import Config
from trove.blobs import BlobStore
from trove.db import (
    get_asset,
    get_connection,
    log_event,
    set_processing_status,
    update_asset,
)
from trove.enrich import generate_embedding, generate_summary, generate_tags
from trove.extract import ContentExtractor
from trove.models import (
    Asset,
    AssetNotFoundError,
    STATUS_COMPLETE,
    STATUS_FAILED,
    STATUS_PENDING,
)
from trove.providers import EnrichmentProvider
from trove.thumbnails import make_thumbnail, thumbnail_path_for
from trove.vectors import VectorIndex

logger = logging.getLogger(__name__)


def combined_text(
    filename: str,
    summary: str | None,
    extracted_text: str | None,
    tags: list[str],
) -> str:
    """Embedding input: non-empty parts joined by single spaces."""
    parts = [filename, summary or "", extracted_text or "", " ".join(tags)]
    return " ".join(p.strip() for p in parts if p and p.strip())


# ---------------------------------------------------------------------------
# Per-asset locks
# ---------------------------------------------------------------------------

class _KeyedLocks:
    """One lock per key, dropped when no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list[Any]] = {}   # key -> [lock, refcount]

    def acquire(self, key: str) -> None:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[0].release()
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class AssetProcessor:
    def __init__(
        self,
        db_path: Path,
        blobs: BlobStore,
        provider: EnrichmentProvider,
        index: VectorIndex | None,
        cfg: Config,
        *,
        extractor: ContentExtractor | None = None,
        thumbnailer: Callable[[bytes, int], bytes] | None = make_thumbnail,
    ) -> None:
        self.db_path = Path(db_path)
        self.blobs = blobs
        self.provider = provider
        self.index = index
        self.cfg = cfg
        self.extractor = extractor or ContentExtractor(
            provider,
            max_tags=cfg.max_tags,
            ocr_enabled=cfg.ocr_enabled,
            tesseract_cmd=cfg.tesseract_cmd,
        )
        self.thumbnailer = thumbnailer
        self._locks = _KeyedLocks()

    def process_asset(self, asset_id: str) -> str | None:
        """
        Run the pipeline for one asset. Returns the final status, or None
        when the asset no longer exists. Never raises.
        """
        self._locks.acquire(asset_id)
        try:
            conn = get_connection(self.db_path)
            try:
                return self._run(conn, asset_id)
            finally:
                conn.close()
        except Exception as e:
            logger.exception("Processing asset %s aborted before it started: %s", asset_id, e)
            return None
        finally:
            self._locks.release(asset_id)

    def _run(self, conn: sqlite3.Connection, asset_id: str) -> str | None:
        try:
            asset = get_asset(conn, asset_id)
        except AssetNotFoundError:
            logger.warning("Processing skipped, asset %s no longer exists", asset_id)
            return None

        logger.info("Processing asset %s (%s, %s)", asset_id, asset.file_type, asset.filename)
        try:
            fields = self._enrich(asset)
            update_asset(conn, asset_id, fields)
            embedding = fields.get("embedding")
            if embedding is not None:
                self._index_embedding(asset_id, embedding)
            log_event(
                conn, "processed",
                f"tags={len(fields['ai_tags'])} embedding={embedding is not None}",
                asset_id,
            )
            logger.info("Asset %s processed: %d tags", asset_id, len(fields["ai_tags"]))
            return STATUS_COMPLETE
        except AssetNotFoundError:
            logger.warning("Asset %s was deleted while processing, result dropped", asset_id)
            return None
        except Exception as e:
            logger.exception("Processing failed for asset %s: %s", asset_id, e)
            self._mark_failed(conn, asset_id, str(e))
            return STATUS_FAILED

    def _enrich(self, asset: Asset) -> dict[str, Any]:
        cfg = self.cfg
        data = self.blobs.download_bytes(asset.storage_path)
        extraction = self.extractor.extract(data, asset.file_type, asset.mime_type)
        text = extraction.text or ""

        if extraction.enriched:
            tags, summary = extraction.tags, extraction.summary
        elif text.strip():
            tags = generate_tags(
                self.provider, text, asset.file_type,
                max_tags=cfg.max_tags, max_chars=cfg.prompt_max_chars,
            )
            summary = generate_summary(
                self.provider, text, asset.file_type, max_chars=cfg.prompt_max_chars,
            )
        else:
            tags, summary = [], None

        embedding = generate_embedding(
            self.provider,
            combined_text(asset.filename, summary, text, tags),
            max_chars=cfg.embed_max_chars,
        )

        fields: dict[str, Any] = {
            "ai_tags":           tags,
            "ai_summary":        summary,
            "extracted_text":    text[: cfg.extracted_text_max_chars] or None,
            "processing_status": STATUS_COMPLETE,
        }
        if embedding is not None:
            fields["embedding"] = embedding
        if asset.file_type == "image":
            thumb = self._thumbnail(asset, data)
            if thumb:
                fields["thumbnail_path"] = thumb
        return fields

    def _thumbnail(self, asset: Asset, data: bytes) -> str | None:
        if self.thumbnailer is None:
            return None
        path = thumbnail_path_for(asset.storage_path)
        try:
            thumb = self.thumbnailer(data, self.cfg.thumbnail_size)
            self.blobs.upload_bytes(path, thumb, overwrite=True)
        except Exception as e:
            logger.warning("Thumbnail failed for asset %s: %s", asset.id, e)
            return None
        return path

    def _index_embedding(self, asset_id: str, embedding: list[float]) -> None:
        # The row keeps the embedding; `trove reindex` rebuilds the index from it.
        if self.index is None:
            return
        try:
            self.index.upsert_embedding(asset_id, embedding)
        except Exception as e:
            logger.error("Vector index write failed for asset %s: %s", asset_id, e)

    def _mark_failed(self, conn: sqlite3.Connection, asset_id: str, detail: str) -> None:
        try:
            set_processing_status(conn, asset_id, STATUS_FAILED)
            log_event(conn, "process_failed", detail[:500], asset_id)
        except (sqlite3.Error, AssetNotFoundError) as e:
            logger.error("Could not mark asset %s failed: %s", asset_id, e)


# ---------------------------------------------------------------------------
# Retry / reindex
# ---------------------------------------------------------------------------

def retry_processing(
    conn: sqlite3.Connection,
    asset_id: str,
    submit: Callable[[str], Any],
) -> Asset:
    """Reset the asset to 'pending' and hand it to `submit`. No backoff."""
    get_asset(conn, asset_id)
    set_processing_status(conn, asset_id, STATUS_PENDING)
    log_event(conn, "retry", None, asset_id)
    logger.info("Retrying processing for asset %s", asset_id)
    submit(asset_id)
    return get_asset(conn, asset_id)


def reindex_embeddings(conn: sqlite3.Connection, index: VectorIndex) -> int:
    """Upsert every stored embedding into the vector index. Returns the count."""
    rows = conn.execute(
        "SELECT id FROM assets WHERE embedding IS NOT NULL ORDER BY created_at"
    ).fetchall()
    count = 0
    for r in rows:
        asset = get_asset(conn, r["id"])
        if asset.embedding:
            index.upsert_embedding(asset.id, asset.embedding)
            count += 1
    logger.info("Reindexed %d embeddings", count)
    return count
