"""
trove/db.py — SQLite schema and asset-store helpers.

Tables
------
assets    : one row per uploaded image/PDF, with AI annotations and
            processing_status (pending | complete | failed)
downloads : download history, cascades on asset delete
events    : pipeline audit log

ai_tags / user_tags / embedding are JSON arrays in TEXT columns; tag
lookups go through json_each() so matching is exact per entry.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from trove.models import (
    Asset,
    AssetNotFoundError,
    PROCESSING_STATUSES,
)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_DDL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS assets (
    id                TEXT PRIMARY KEY,
    uploaded_by       TEXT NOT NULL DEFAULT '',
    filename          TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    file_type         TEXT NOT NULL CHECK(file_type IN ('image', 'pdf')),
    mime_type         TEXT NOT NULL DEFAULT '',
    file_size         INTEGER NOT NULL DEFAULT 0,
    storage_path      TEXT NOT NULL,
    thumbnail_path    TEXT,
    ai_summary        TEXT,
    ai_tags           TEXT NOT NULL DEFAULT '[]',
    extracted_text    TEXT,
    user_tags         TEXT NOT NULL DEFAULT '[]',
    processing_status TEXT NOT NULL DEFAULT 'pending'
                           CHECK(processing_status IN ('pending', 'complete', 'failed')),
    download_count    INTEGER NOT NULL DEFAULT 0,
    embedding         TEXT,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_assets_status  ON assets(processing_status);
CREATE INDEX IF NOT EXISTS idx_assets_created ON assets(created_at);

CREATE TABLE IF NOT EXISTS downloads (
    id            TEXT PRIMARY KEY,
    asset_id      TEXT NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    downloaded_by TEXT NOT NULL DEFAULT '',
    downloaded_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_downloads_asset ON downloads(asset_id);

CREATE TABLE IF NOT EXISTS events (
    event_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id   TEXT,
    event_type TEXT,
    detail     TEXT,
    ts         TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

# Columns update_asset() may touch. id / created_at / original_filename are immutable.
_UPDATABLE = frozenset({
    "filename", "thumbnail_path", "ai_summary", "ai_tags", "extracted_text",
    "user_tags", "processing_status", "embedding", "storage_path",
})
_JSON_COLUMNS = frozenset({"ai_tags", "user_tags", "embedding"})


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

def get_connection(db_path: Path) -> sqlite3.Connection:
    """Return a WAL-mode, FK-enabled connection with row_factory set."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path.resolve()), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.executescript(_DDL)
    conn.commit()
    return conn


def new_asset_id() -> str:
    return str(uuid.uuid4())


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return json.dumps(list(value))
    return value


# ---------------------------------------------------------------------------
# assets helpers
# ---------------------------------------------------------------------------

def insert_asset(conn: sqlite3.Connection, a: dict[str, Any]) -> Asset:
    """
    Insert a new asset row in 'pending' state and return it.
    Required keys: id, filename, original_filename, file_type, storage_path.
    Optional: uploaded_by, mime_type, file_size, user_tags.
    """
    conn.execute(
        """
        INSERT INTO assets
            (id, uploaded_by, filename, original_filename, file_type,
             mime_type, file_size, storage_path, user_tags, processing_status)
        VALUES
            (:id, :uploaded_by, :filename, :original_filename, :file_type,
             :mime_type, :file_size, :storage_path, :user_tags, 'pending')
        """,
        {
            "id":                a["id"],
            "uploaded_by":       a.get("uploaded_by", ""),
            "filename":          a["filename"],
            "original_filename": a["original_filename"],
            "file_type":         a["file_type"],
            "mime_type":         a.get("mime_type", ""),
            "file_size":         a.get("file_size", 0),
            "storage_path":      a["storage_path"],
            "user_tags":         json.dumps(list(a.get("user_tags") or [])),
        },
    )
    conn.commit()
    return get_asset(conn, a["id"])


def find_asset(conn: sqlite3.Connection, asset_id: str) -> Asset | None:
    row = conn.execute("SELECT * FROM assets WHERE id = ?", (asset_id,)).fetchone()
    return Asset.from_row(row) if row else None


def get_asset(conn: sqlite3.Connection, asset_id: str) -> Asset:
    """Return the asset or raise AssetNotFoundError."""
    asset = find_asset(conn, asset_id)
    if asset is None:
        raise AssetNotFoundError(f"Asset not found: {asset_id}")
    return asset


def get_assets_by_ids(conn: sqlite3.Connection, ids: list[str]) -> dict[str, Asset]:
    if not ids:
        return {}
    placeholders = ",".join("?" * len(ids))
    rows = conn.execute(
        f"SELECT * FROM assets WHERE id IN ({placeholders})", list(ids)
    ).fetchall()
    return {r["id"]: Asset.from_row(r) for r in rows}


def update_asset(conn: sqlite3.Connection, asset_id: str, fields: dict[str, Any]) -> None:
    """
    Partial update in a single UPDATE statement; columns not named in
    `fields` are left untouched. Raises AssetNotFoundError if no row matched.
    """
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update asset columns: {sorted(unknown)}")
    status = fields.get("processing_status")
    if status is not None and status not in PROCESSING_STATUSES:
        raise ValueError(f"Invalid processing_status: {status!r}")
    if not fields:
        return

    cols = sorted(fields)
    assignments = ", ".join(f"{c} = :{c}" for c in cols)
    params = {c: _encode(c, fields[c]) for c in cols}
    params["_id"] = asset_id
    cur = conn.execute(
        f"UPDATE assets SET {assignments}, updated_at = {_NOW} WHERE id = :_id",
        params,
    )
    conn.commit()
    if cur.rowcount == 0:
        raise AssetNotFoundError(f"Asset not found: {asset_id}")


def set_processing_status(conn: sqlite3.Connection, asset_id: str, status: str) -> None:
    update_asset(conn, asset_id, {"processing_status": status})


def delete_asset(conn: sqlite3.Connection, asset_id: str) -> None:
    """Delete the row; downloads cascade via the FK."""
    cur = conn.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
    conn.commit()
    if cur.rowcount == 0:
        raise AssetNotFoundError(f"Asset not found: {asset_id}")


def list_assets(
    conn: sqlite3.Connection,
    limit: int = 20,
    offset: int = 0,
    file_type: str | None = None,
    uploaded_by: str | None = None,
) -> tuple[list[Asset], int]:
    """Newest first. Returns (page, total matching count)."""
    clauses: list[str] = []
    params: list[Any] = []
    if file_type:
        clauses.append("file_type = ?")
        params.append(file_type)
    if uploaded_by:
        clauses.append("uploaded_by = ?")
        params.append(uploaded_by)
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

    total = conn.execute(f"SELECT COUNT(*) FROM assets {where}", params).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM assets {where} ORDER BY created_at DESC, id ASC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ).fetchall()
    return [Asset.from_row(r) for r in rows], total


# ---------------------------------------------------------------------------
# Keyword lookups
# ---------------------------------------------------------------------------

def find_by_filename_substring(
    conn: sqlite3.Connection,
    query: str,
    limit: int = 25,
) -> list[Asset]:
    """Case-insensitive substring match on filename (instr avoids LIKE escaping)."""
    if not query:
        return []
    rows = conn.execute(
        "SELECT * FROM assets WHERE instr(lower(filename), lower(?)) > 0 "
        "ORDER BY created_at DESC, id ASC LIMIT ?",
        (query, limit),
    ).fetchall()
    return [Asset.from_row(r) for r in rows]


def find_by_tag(
    conn: sqlite3.Connection,
    token: str,
    column: str,
    limit: int = 25,
) -> list[Asset]:
    """Assets whose `column` (ai_tags | user_tags) has an entry equal to token, case-insensitive."""
    if column not in ("ai_tags", "user_tags"):
        raise ValueError(f"Not a tag column: {column}")
    if not token:
        return []
    rows = conn.execute(
        f"""SELECT * FROM assets a
            WHERE EXISTS (
                SELECT 1 FROM json_each(a.{column}) t
                WHERE lower(t.value) = lower(?)
            )
            ORDER BY a.created_at DESC, a.id ASC
            LIMIT ?""",
        (token, limit),
    ).fetchall()
    return [Asset.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# downloads
# ---------------------------------------------------------------------------

def record_download(conn: sqlite3.Connection, asset_id: str, downloaded_by: str = "") -> int:
    """Increment download_count and insert a downloads row. Returns the new count."""
    cur = conn.execute(
        "UPDATE assets SET download_count = download_count + 1 WHERE id = ?",
        (asset_id,),
    )
    if cur.rowcount == 0:
        conn.rollback()
        raise AssetNotFoundError(f"Asset not found: {asset_id}")
    conn.execute(
        "INSERT INTO downloads (id, asset_id, downloaded_by) VALUES (?, ?, ?)",
        (str(uuid.uuid4()), asset_id, downloaded_by),
    )
    conn.commit()
    return conn.execute(
        "SELECT download_count FROM assets WHERE id = ?", (asset_id,)
    ).fetchone()[0]


def get_downloads(conn: sqlite3.Connection, asset_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM downloads WHERE asset_id = ? ORDER BY downloaded_at DESC",
        (asset_id,),
    ).fetchall()


# ---------------------------------------------------------------------------
# events helper
# ---------------------------------------------------------------------------

def log_event(
    conn: sqlite3.Connection,
    event_type: str,
    detail: str | None = None,
    asset_id: str | None = None,
) -> None:
    conn.execute(
        "INSERT INTO events (asset_id, event_type, detail) VALUES (?, ?, ?)",
        (asset_id, event_type, detail),
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

def get_stats(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return asset counts by processing_status plus totals."""
    rows = conn.execute(
        "SELECT processing_status, COUNT(*) AS cnt FROM assets GROUP BY processing_status"
    ).fetchall()
    stats: dict[str, Any] = {s: 0 for s in PROCESSING_STATUSES}
    stats.update({r["processing_status"]: r["cnt"] for r in rows})
    stats["total_assets"] = sum(stats[s] for s in PROCESSING_STATUSES)
    stats["total_downloads"] = conn.execute("SELECT COUNT(*) FROM downloads").fetchone()[0]
    return stats
