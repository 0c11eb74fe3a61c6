"""
trove/vectors.py — LanceDB vector index over asset embeddings.

One table, trove_assets: {asset_id, vector}. The vector dimension is fixed
by the embedding model and taken from the first vector written.

Public API:
  VectorSearchUnavailable                    — table/backend missing or failing
  VectorIndex(vector_dir)
    .upsert_embedding(asset_id, vector)
    .delete_embedding(asset_id)
    .vector_search(vector, threshold, limit) -> list[SemanticHit]
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import lancedb
import pyarrow as pa

from trove.models import SemanticHit

logger = logging.getLogger(__name__)

_TABLE_ASSETS = "trove_assets"


# ---------------------------------------------------------------------------
# Exception
# ---------------------------------------------------------------------------

class VectorSearchUnavailable(Exception):
    """Raised when similarity search cannot run (no table, backend error)."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

def _asset_schema(dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("asset_id", pa.string()),
        pa.field("vector",   pa.list_(pa.float32(), dim)),
    ])


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

class VectorIndex:
    def __init__(self, vector_dir: Path) -> None:
        self.vector_dir = Path(vector_dir)
        self._db: Any = None
        self._lock = threading.Lock()

    def _connect(self) -> Any:
        if self._db is None:
            self.vector_dir.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self.vector_dir))
        return self._db

    def _open_table(self) -> Any | None:
        db = self._connect()
        if _TABLE_ASSETS in db.table_names():
            return db.open_table(_TABLE_ASSETS)
        return None

    def _get_or_create_table(self, dim: int) -> Any:
        with self._lock:
            table = self._open_table()
            if table is None:
                table = self._connect().create_table(_TABLE_ASSETS, schema=_asset_schema(dim))
                logger.info("Created LanceDB table %s (dim=%d)", _TABLE_ASSETS, dim)
            return table

    def upsert_embedding(self, asset_id: str, vector: list[float]) -> None:
        """Insert or replace the vector for asset_id. Raises on backend failure."""
        if not vector:
            raise ValueError(f"Empty embedding for asset {asset_id}")
        table = self._get_or_create_table(len(vector))
        row = {"asset_id": asset_id, "vector": [float(v) for v in vector]}
        (
            table.merge_insert("asset_id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute([row])
        )

    def delete_embedding(self, asset_id: str) -> None:
        table = self._open_table()
        if table is not None:
            table.delete(f"asset_id = {_quote(asset_id)}")

    def vector_search(
        self,
        vector: list[float],
        threshold: float = 0.5,
        limit: int = 50,
    ) -> list[SemanticHit]:
        """
        Cosine nearest neighbours with similarity >= threshold, best first.
        Raises VectorSearchUnavailable when the table is missing or the query fails.
        """
        try:
            table = self._open_table()
        except Exception as e:
            raise VectorSearchUnavailable(f"LanceDB unavailable: {e}") from e
        if table is None:
            raise VectorSearchUnavailable(f"LanceDB table {_TABLE_ASSETS} does not exist")

        try:
            rows = table.search(vector).metric("cosine").limit(limit).to_list()
        except Exception as e:
            raise VectorSearchUnavailable(f"Vector search failed: {e}") from e

        hits: list[SemanticHit] = []
        for r in rows:
            try:
                hit = SemanticHit.from_row(r)
            except (ValueError, TypeError) as e:
                logger.warning("Dropping malformed vector row: %s", e)
                continue
            if hit.similarity >= threshold:
                hits.append(hit)
        hits.sort(key=lambda h: (-h.similarity, h.asset_id))
        return hits[:limit]
