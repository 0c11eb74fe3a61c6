"""
trove/match.py — Keyword and semantic matchers.

match_keywords(conn, query)
  1. filename contains the trimmed query (case-insensitive)
  2. per whitespace token: ai_tags or user_tags has an entry equal to the token
  3. union in that order, deduplicated by asset id, first occurrence kept
  Output is unranked; every candidate has match_type='keyword'.

match_semantic(query, provider, index, conn)
  Embeds the query and asks the vector index for neighbours above the
  similarity threshold. A missing provider, an empty query, a missing
  index or a failing backend all yield []; never an error.

  It is split in two for the search fan-out: semantic_hits() (embed +
  vector lookup, no SQLite) and hydrate_hits() (asset rows by id).
"""

from __future__ import annotations

import logging
import sqlite3

from trove.db import find_by_filename_substring, find_by_tag, get_assets_by_ids
from trove.enrich import EMBED_MAX_CHARS, generate_embedding
from trove.models import Asset, SearchCandidate, SemanticHit, query_tokens
from trove.providers import EnrichmentProvider
from trove.vectors import VectorIndex, VectorSearchUnavailable

logger = logging.getLogger(__name__)

SEMANTIC_THRESHOLD = 0.5
SEMANTIC_LIMIT = 50
KEYWORD_LIMIT = 25


def match_keywords(
    conn: sqlite3.Connection,
    query: str,
    limit: int = KEYWORD_LIMIT,
) -> list[SearchCandidate]:
    q = query.strip()
    if not q:
        return []

    matches: list[Asset] = list(find_by_filename_substring(conn, q, limit))
    for token in query_tokens(q):
        matches.extend(find_by_tag(conn, token, "ai_tags", limit))
        matches.extend(find_by_tag(conn, token, "user_tags", limit))

    seen: set[str] = set()
    out: list[SearchCandidate] = []
    for asset in matches:
        if asset.id in seen:
            continue
        seen.add(asset.id)
        out.append(SearchCandidate(asset=asset, match_type="keyword"))
    logger.debug("match_keywords %r → %d assets", q, len(out))
    return out


def semantic_hits(
    query: str,
    provider: EnrichmentProvider,
    index: VectorIndex | None,
    *,
    threshold: float = SEMANTIC_THRESHOLD,
    limit: int = SEMANTIC_LIMIT,
    embed_max_chars: int = EMBED_MAX_CHARS,
) -> list[SemanticHit]:
    """Embed the query and look up neighbours. No SQLite access."""
    if index is None:
        return []
    embedding = generate_embedding(provider, query, max_chars=embed_max_chars)
    if embedding is None:
        return []
    try:
        return index.vector_search(embedding, threshold=threshold, limit=limit)
    except VectorSearchUnavailable as e:
        logger.warning("Semantic search unavailable (keyword-only): %s", e)
        return []


def hydrate_hits(conn: sqlite3.Connection, hits: list[SemanticHit]) -> list[SearchCandidate]:
    assets = get_assets_by_ids(conn, [h.asset_id for h in hits])
    out: list[SearchCandidate] = []
    for hit in hits:
        asset = assets.get(hit.asset_id)
        if asset is None:
            # Vector outlived its asset row.
            logger.debug("Skipping orphaned vector for asset %s", hit.asset_id)
            continue
        out.append(SearchCandidate(asset=asset, match_type="semantic", similarity=hit.similarity))
    return out


def match_semantic(
    query: str,
    provider: EnrichmentProvider,
    index: VectorIndex | None,
    conn: sqlite3.Connection,
    *,
    threshold: float = SEMANTIC_THRESHOLD,
    limit: int = SEMANTIC_LIMIT,
    embed_max_chars: int = EMBED_MAX_CHARS,
) -> list[SearchCandidate]:
    hits = semantic_hits(
        query, provider, index,
        threshold=threshold, limit=limit, embed_max_chars=embed_max_chars,
    )
    return hydrate_hits(conn, hits)
