"""
trove/assets.py — Asset lifecycle operations above the raw store.

create_asset         validate upload, store blob, insert 'pending' row, submit
update_asset_fields  user edits: filename and user_tags only
delete_asset_everywhere  blobs + vector + row (downloads cascade)
download_asset       record a download, return the original bytes
list_assets_page     newest-first page with has_more
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable

from trove import db
from trove.blobs import BlobStore
from trove.models import (
    Asset,
    AssetValidationError,
    extension_for_mime,
    get_extension,
    get_file_type,
    mime_type_from_extension,
    normalize_tags,
    sanitize_filename,
    validate_filename,
)
from trove.vectors import VectorIndex

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 3 * 1024 * 1024 * 1024
USER_EDITABLE_FIELDS = frozenset({"filename", "user_tags"})


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_asset(
    conn: sqlite3.Connection,
    blobs: BlobStore,
    data: bytes,
    original_filename: str,
    mime_type: str | None = None,
    *,
    uploaded_by: str = "",
    user_tags: list[str] | None = None,
    max_file_bytes: int = MAX_FILE_BYTES,
    submit: Callable[[str], Any] | None = None,
) -> Asset:
    """
    Store an uploaded file and insert its 'pending' row.

    Raises AssetValidationError for unsupported types, empty or oversized
    files. If the row insert fails, the stored blob is removed again.
    """
    mime = mime_type or mime_type_from_extension(get_extension(original_filename))
    file_type = get_file_type(mime)
    if file_type is None:
        raise AssetValidationError(
            f"Unsupported file type: {mime}. Only images and PDFs are allowed."
        )
    if not data:
        raise AssetValidationError("File is empty.")
    if len(data) > max_file_bytes:
        raise AssetValidationError(
            f"File too large: {len(data)} bytes (limit {max_file_bytes})."
        )

    asset_id = db.new_asset_id()
    filename = sanitize_filename(original_filename)
    error = validate_filename(filename)
    if error:
        raise AssetValidationError(error)
    owner = uploaded_by or "anonymous"
    storage_path = f"{owner}/{asset_id}/original.{extension_for_mime(mime)}"

    blobs.upload_bytes(storage_path, data)
    try:
        asset = db.insert_asset(conn, {
            "id":                asset_id,
            "uploaded_by":       uploaded_by,
            "filename":          filename,
            "original_filename": original_filename,
            "file_type":         file_type,
            "mime_type":         mime,
            "file_size":         len(data),
            "storage_path":      storage_path,
            "user_tags":         normalize_tags(user_tags or []),
        })
    except sqlite3.Error:
        logger.error("Insert failed for upload %s, removing blob %s", original_filename, storage_path)
        blobs.remove([storage_path])
        raise

    db.log_event(conn, "uploaded", filename, asset_id)
    logger.info("Asset %s created (%s, %d bytes)", asset_id, file_type, len(data))
    if submit is not None:
        submit(asset_id)
    return asset


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

def update_asset_fields(
    conn: sqlite3.Connection,
    asset_id: str,
    updates: dict[str, Any],
) -> Asset:
    """Apply a user edit. ai_tags and every other machine field are read-only."""
    db.get_asset(conn, asset_id)

    rejected = sorted(set(updates) - USER_EDITABLE_FIELDS)
    if rejected:
        raise AssetValidationError(f"Fields cannot be edited: {', '.join(rejected)}")

    fields: dict[str, Any] = {}
    if updates.get("filename") is not None:
        filename = updates["filename"]
        if not isinstance(filename, str):
            raise AssetValidationError("Filename must be a string.")
        error = validate_filename(filename)
        if error:
            raise AssetValidationError(error)
        fields["filename"] = filename.strip()

    if updates.get("user_tags") is not None:
        tags = updates["user_tags"]
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise AssetValidationError("user_tags must be a list of strings.")
        fields["user_tags"] = normalize_tags(tags)

    if not fields:
        raise AssetValidationError("No valid fields to update.")

    db.update_asset(conn, asset_id, fields)
    db.log_event(conn, "edited", ",".join(sorted(fields)), asset_id)
    return db.get_asset(conn, asset_id)


# ---------------------------------------------------------------------------
# Delete / download / list
# ---------------------------------------------------------------------------

def delete_asset_everywhere(
    conn: sqlite3.Connection,
    blobs: BlobStore,
    index: VectorIndex | None,
    asset_id: str,
) -> None:
    asset = db.get_asset(conn, asset_id)
    keys = [asset.storage_path]
    if asset.thumbnail_path:
        keys.append(asset.thumbnail_path)
    blobs.remove(keys)

    if index is not None:
        try:
            index.delete_embedding(asset_id)
        except Exception as e:
            # Orphaned vectors are skipped at search time.
            logger.warning("Could not delete vector for asset %s: %s", asset_id, e)

    db.delete_asset(conn, asset_id)
    db.log_event(conn, "deleted", asset.filename, asset_id)
    logger.info("Asset %s deleted", asset_id)


def download_asset(
    conn: sqlite3.Connection,
    blobs: BlobStore,
    asset_id: str,
    downloaded_by: str = "",
) -> tuple[Asset, bytes]:
    """Read the original bytes, then count the download."""
    asset = db.get_asset(conn, asset_id)
    data = blobs.download_bytes(asset.storage_path)
    db.record_download(conn, asset_id, downloaded_by)
    return db.get_asset(conn, asset_id), data


def list_assets_page(
    conn: sqlite3.Connection,
    page: int = 1,
    limit: int = 20,
    file_type: str | None = None,
    uploaded_by: str | None = None,
) -> dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    assets, total = db.list_assets(
        conn, limit=limit, offset=(page - 1) * limit,
        file_type=file_type, uploaded_by=uploaded_by,
    )
    return {
        "assets":   [a.to_dict() for a in assets],
        "total":    total,
        "page":     page,
        "limit":    limit,
        "has_more": page * limit < total,
    }
