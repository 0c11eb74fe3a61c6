"""
tests/test_match.py — Keyword and semantic matcher tests.

Keyword matching runs against a tmp SQLite DB; the vector index is a
MagicMock so LanceDB is not required.
Run with: pytest tests/test_match.py -v
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from trove.db import get_connection, insert_asset, new_asset_id, update_asset
from trove.match import match_keywords, match_semantic
from trove.models import Asset, SemanticHit
from trove.providers import NullProvider
from trove.vectors import VectorSearchUnavailable


class FakeEmbedder:
    available = True

    def __init__(self, vector=None) -> None:
        self.vector = vector if vector is not None else [1.0, 0.0]
        self.texts: list[str] = []

    def chat(self, prompt: str, max_tokens: int = 256) -> str:
        return ""

    def vision(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        return ""

    def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        return self.vector


@pytest.fixture
def conn(tmp_path: Path):
    c = get_connection(tmp_path / "db" / "trove.db")
    yield c
    c.close()


def _add(
    conn: sqlite3.Connection,
    filename: str,
    ai_tags: list[str] | None = None,
    user_tags: list[str] | None = None,
) -> Asset:
    asset_id = new_asset_id()
    a = insert_asset(conn, {
        "id":                asset_id,
        "filename":          filename,
        "original_filename": filename,
        "file_type":         "image",
        "storage_path":      f"u/{asset_id}/original.png",
        "user_tags":         user_tags or [],
    })
    if ai_tags:
        update_asset(conn, a.id, {"ai_tags": ai_tags})
    return a


# ---------------------------------------------------------------------------
# match_keywords
# ---------------------------------------------------------------------------

def test_blank_query_matches_nothing(conn: sqlite3.Connection) -> None:
    _add(conn, "anything.png")
    assert match_keywords(conn, "   ") == []


def test_filename_and_tag_matches_union(conn: sqlite3.Connection) -> None:
    by_name = _add(conn, "dashboard-mockup.png")
    by_tag = _add(conn, "screen.png", ai_tags=["dashboard"])
    _add(conn, "logo.png", ai_tags=["brand"])

    out = match_keywords(conn, "dashboard")
    assert [c.id for c in out] == [by_name.id, by_tag.id]
    assert all(c.match_type == "keyword" for c in out)


def test_dedup_keeps_first_occurrence(conn: sqlite3.Connection) -> None:
    a = _add(conn, "dashboard-mockup.png", ai_tags=["dashboard"], user_tags=["dashboard"])
    out = match_keywords(conn, "dashboard")
    assert [c.id for c in out] == [a.id]


def test_user_tag_round_trip(conn: sqlite3.Connection) -> None:
    a = _add(conn, "photo.png", user_tags=["campaign"])
    assert [c.id for c in match_keywords(conn, "campaign")] == [a.id]


def test_tokens_are_matched_independently(conn: sqlite3.Connection) -> None:
    red = _add(conn, "a.png", ai_tags=["red"])
    car = _add(conn, "b.png", user_tags=["car"])
    ids = {c.id for c in match_keywords(conn, "Red CAR")}
    assert ids == {red.id, car.id}


def test_tag_match_is_whole_entry(conn: sqlite3.Connection) -> None:
    _add(conn, "a.png", ai_tags=["dark mode"])
    assert match_keywords(conn, "dark") == []


def test_each_lookup_capped(conn: sqlite3.Connection) -> None:
    for i in range(4):
        _add(conn, f"shot-{i}.png")
    assert len(match_keywords(conn, "shot", limit=2)) == 2


# ---------------------------------------------------------------------------
# match_semantic
# ---------------------------------------------------------------------------

def test_semantic_hydrates_hits(conn: sqlite3.Connection) -> None:
    a = _add(conn, "beach.png")
    index = MagicMock()
    index.vector_search.return_value = [SemanticHit(a.id, 0.83)]

    out = match_semantic("ocean", FakeEmbedder(), index, conn, threshold=0.5, limit=10)
    assert [(c.id, c.match_type, c.similarity) for c in out] == [(a.id, "semantic", 0.83)]
    index.vector_search.assert_called_once_with([1.0, 0.0], threshold=0.5, limit=10)


def test_semantic_skips_orphaned_vectors(conn: sqlite3.Connection) -> None:
    a = _add(conn, "beach.png")
    index = MagicMock()
    index.vector_search.return_value = [SemanticHit("gone", 0.9), SemanticHit(a.id, 0.6)]
    out = match_semantic("ocean", FakeEmbedder(), index, conn)
    assert [c.id for c in out] == [a.id]


def test_semantic_without_provider_is_empty(conn: sqlite3.Connection) -> None:
    index = MagicMock()
    assert match_semantic("ocean", NullProvider(), index, conn) == []
    index.vector_search.assert_not_called()


def test_semantic_without_index_is_empty(conn: sqlite3.Connection) -> None:
    embedder = FakeEmbedder()
    assert match_semantic("ocean", embedder, None, conn) == []
    assert embedder.texts == []


def test_semantic_backend_failure_is_empty(conn: sqlite3.Connection) -> None:
    index = MagicMock()
    index.vector_search.side_effect = VectorSearchUnavailable("no table")
    assert match_semantic("ocean", FakeEmbedder(), index, conn) == []
