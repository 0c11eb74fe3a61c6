"""
trove/search.py — Hybrid search entry point.

  query ─┬─ match_keywords      (caller thread, SQLite)
         └─ semantic_hits       (worker thread, embed + LanceDB, bounded)
                │
         hydrate_hits → rank → SearchResponse(assets, total, query)

The semantic lane degrades to [] on timeout or error; an asset-store
failure propagates. Search has no side effects, so a superseded request
can be dropped by the caller.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any

from config import Config
from trove.match import hydrate_hits, match_keywords, semantic_hits
from trove.models import SearchCandidate, SemanticHit
from trove.providers import EnrichmentProvider
from trove.rank import rank
from trove.vectors import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class SearchResponse:
    assets: list[SearchCandidate] = field(default_factory=list)
    total:  int = 0
    query:  str = ""

    def page(self, limit: int, offset: int = 0) -> "SearchResponse":
        return SearchResponse(
            assets=self.assets[offset:offset + limit], total=self.total, query=self.query,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "assets": [c.to_dict() for c in self.assets],
            "total":  self.total,
            "query":  self.query,
        }


class SearchEngine:
    def __init__(
        self,
        provider: EnrichmentProvider,
        index: VectorIndex | None,
        cfg: Config,
        *,
        max_workers: int = 4,
    ) -> None:
        self.provider = provider
        self.index = index
        self.cfg = cfg
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trove-search")

    def search(self, conn: sqlite3.Connection, query: str) -> SearchResponse:
        """Ranked, deduplicated results. Raises ValueError on a blank query."""
        q = (query or "").strip()
        if not q:
            raise ValueError("Search query is required")

        future = self._pool.submit(
            semantic_hits, q, self.provider, self.index,
            threshold=self.cfg.semantic_threshold,
            limit=self.cfg.semantic_limit,
            embed_max_chars=self.cfg.embed_max_chars,
        )
        try:
            keyword = match_keywords(conn, q, limit=self.cfg.keyword_limit)
        except Exception:
            future.cancel()
            raise

        semantic = hydrate_hits(conn, self._semantic_result(future, q))
        ranked = rank(keyword, semantic, q)
        logger.info(
            "search %r: keyword=%d semantic=%d ranked=%d",
            q, len(keyword), len(semantic), len(ranked),
        )
        return SearchResponse(assets=ranked, total=len(ranked), query=q)

    def _semantic_result(self, future: Any, query: str) -> list[SemanticHit]:
        try:
            return future.result(timeout=self.cfg.semantic_timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning(
                "Semantic search timed out after %.1fs for %r (keyword-only)",
                self.cfg.semantic_timeout, query,
            )
        except Exception as e:
            logger.error("Semantic search failed for %r (keyword-only): %s", query, e)
        return []

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


def search(
    query: str,
    conn: sqlite3.Connection,
    provider: EnrichmentProvider,
    index: VectorIndex | None,
    cfg: Config,
) -> SearchResponse:
    """One-shot search with a throwaway engine (CLI use)."""
    engine = SearchEngine(provider, index, cfg, max_workers=1)
    try:
        return engine.search(conn, query)
    finally:
        engine.close()
