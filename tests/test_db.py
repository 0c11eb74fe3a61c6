"""
tests/test_db.py — SQLite schema and asset-store helper unit tests.

Run with: pytest tests/test_db.py -v
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from trove.db import (
    delete_asset,
    find_by_filename_substring,
    find_by_tag,
    get_asset,
    get_assets_by_ids,
    get_connection,
    get_downloads,
    get_stats,
    insert_asset,
    list_assets,
    log_event,
    new_asset_id,
    record_download,
    set_processing_status,
    update_asset,
)
from trove.models import AssetNotFoundError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def conn(tmp_path: Path):
    db_path = tmp_path / "db" / "trove.db"
    c = get_connection(db_path)
    yield c
    c.close()


def _asset(filename: str = "dashboard-mockup.png", **kwargs) -> dict:
    asset_id = kwargs.pop("id", None) or new_asset_id()
    base = {
        "id":                asset_id,
        "uploaded_by":       "alice",
        "filename":          filename,
        "original_filename": filename,
        "file_type":         "image",
        "mime_type":         "image/png",
        "file_size":         1234,
        "storage_path":      f"alice/{asset_id}/original.png",
    }
    return {**base, **kwargs}


# ---------------------------------------------------------------------------
# Schema / connection tests
# ---------------------------------------------------------------------------

def test_wal_mode_enabled(tmp_path: Path) -> None:
    c = get_connection(tmp_path / "db" / "trove.db")
    mode = c.execute("PRAGMA journal_mode").fetchone()[0]
    c.close()
    assert mode == "wal"


def test_tables_exist(conn: sqlite3.Connection) -> None:
    names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"assets", "downloads", "events"} <= names


def test_file_type_check_constraint(conn: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        insert_asset(conn, _asset(file_type="video"))


# ---------------------------------------------------------------------------
# Insert / get / update
# ---------------------------------------------------------------------------

def test_insert_creates_pending_asset(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset(user_tags=["campaign"]))
    assert a.processing_status == "pending"
    assert a.ai_tags == []
    assert a.user_tags == ["campaign"]
    assert a.download_count == 0
    assert a.embedding is None
    assert a.created_at


def test_get_asset_missing_raises(conn: sqlite3.Connection) -> None:
    with pytest.raises(AssetNotFoundError):
        get_asset(conn, "nope")


def test_get_assets_by_ids(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset("a.png"))
    b = insert_asset(conn, _asset("b.png"))
    found = get_assets_by_ids(conn, [a.id, b.id, "missing"])
    assert set(found) == {a.id, b.id}
    assert get_assets_by_ids(conn, []) == {}


def test_update_is_partial(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset(user_tags=["keep"]))
    update_asset(conn, a.id, {"ai_tags": ["dashboard", "ui"], "embedding": [0.1, 0.2]})
    got = get_asset(conn, a.id)
    assert got.ai_tags == ["dashboard", "ui"]
    assert got.embedding == pytest.approx([0.1, 0.2])
    assert got.user_tags == ["keep"]
    assert got.filename == a.filename


def test_update_rejects_immutable_columns(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset())
    with pytest.raises(ValueError):
        update_asset(conn, a.id, {"original_filename": "other.png"})


def test_update_rejects_invalid_status(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset())
    with pytest.raises(ValueError):
        update_asset(conn, a.id, {"processing_status": "done"})


def test_update_missing_asset_raises(conn: sqlite3.Connection) -> None:
    with pytest.raises(AssetNotFoundError):
        update_asset(conn, "missing", {"ai_summary": "x"})


def test_set_processing_status(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset())
    set_processing_status(conn, a.id, "failed")
    assert get_asset(conn, a.id).processing_status == "failed"


# ---------------------------------------------------------------------------
# Keyword lookups
# ---------------------------------------------------------------------------

def test_filename_substring_case_insensitive(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset("Dashboard-Mockup.png"))
    insert_asset(conn, _asset("logo.png"))
    found = find_by_filename_substring(conn, "dashBOARD")
    assert [x.id for x in found] == [a.id]


def test_filename_substring_treats_wildcards_literally(conn: sqlite3.Connection) -> None:
    insert_asset(conn, _asset("report.pdf", file_type="pdf", mime_type="application/pdf"))
    assert find_by_filename_substring(conn, "%") == []
    assert find_by_filename_substring(conn, "_") == []


def test_find_by_tag_exact_entry(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset("a.png"))
    update_asset(conn, a.id, {"ai_tags": ["Dashboard", "ui"]})
    b = insert_asset(conn, _asset("b.png"))
    update_asset(conn, b.id, {"ai_tags": ["dashboards"]})

    found = find_by_tag(conn, "dashboard", "ai_tags")
    assert [x.id for x in found] == [a.id]


def test_find_by_tag_user_tags(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset(user_tags=["campaign"]))
    assert [x.id for x in find_by_tag(conn, "campaign", "user_tags")] == [a.id]
    assert find_by_tag(conn, "campaign", "ai_tags") == []


def test_find_by_tag_rejects_other_columns(conn: sqlite3.Connection) -> None:
    with pytest.raises(ValueError):
        find_by_tag(conn, "x", "filename")


def test_lookup_limit(conn: sqlite3.Connection) -> None:
    for i in range(5):
        insert_asset(conn, _asset(f"shot-{i}.png"))
    assert len(find_by_filename_substring(conn, "shot", limit=3)) == 3


# ---------------------------------------------------------------------------
# Listing / delete / downloads
# ---------------------------------------------------------------------------

def test_list_assets_filters_and_total(conn: sqlite3.Connection) -> None:
    insert_asset(conn, _asset("a.png"))
    insert_asset(conn, _asset("b.pdf", file_type="pdf", mime_type="application/pdf"))
    insert_asset(conn, _asset("c.png", uploaded_by="bob"))

    page, total = list_assets(conn, limit=10)
    assert total == 3 and len(page) == 3

    page, total = list_assets(conn, file_type="pdf")
    assert total == 1 and page[0].filename == "b.pdf"

    page, total = list_assets(conn, uploaded_by="bob")
    assert total == 1 and page[0].filename == "c.png"

    page, total = list_assets(conn, limit=2, offset=2)
    assert total == 3 and len(page) == 1


def test_record_download_increments(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset())
    assert record_download(conn, a.id, "bob") == 1
    assert record_download(conn, a.id) == 2
    assert len(get_downloads(conn, a.id)) == 2


def test_record_download_missing_asset(conn: sqlite3.Connection) -> None:
    with pytest.raises(AssetNotFoundError):
        record_download(conn, "missing")


def test_delete_cascades_downloads(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset())
    record_download(conn, a.id)
    delete_asset(conn, a.id)
    with pytest.raises(AssetNotFoundError):
        get_asset(conn, a.id)
    assert get_downloads(conn, a.id) == []


def test_delete_missing_raises(conn: sqlite3.Connection) -> None:
    with pytest.raises(AssetNotFoundError):
        delete_asset(conn, "missing")


# ---------------------------------------------------------------------------
# Events / stats
# ---------------------------------------------------------------------------

def test_log_event(conn: sqlite3.Connection) -> None:
    log_event(conn, "processed", "tags=2", "asset-1")
    row = conn.execute("SELECT * FROM events").fetchone()
    assert row["event_type"] == "processed"
    assert row["asset_id"] == "asset-1"


def test_get_stats(conn: sqlite3.Connection) -> None:
    a = insert_asset(conn, _asset("a.png"))
    insert_asset(conn, _asset("b.png"))
    set_processing_status(conn, a.id, "complete")
    record_download(conn, a.id)

    stats = get_stats(conn)
    assert stats["complete"] == 1
    assert stats["pending"] == 1
    assert stats["failed"] == 0
    assert stats["total_assets"] == 2
    assert stats["total_downloads"] == 1
