"""
trove/rank.py — Rank fusion of keyword and semantic candidates.

Scoring (additive, case-insensitive)
------------------------------------
  filename == query (both trimmed)        +100
  filename contains query (not exact)     +50
  per query token in ai_tags              +30
  per query token in user_tags            +30   (independent of ai_tags)
  semantic bonus, once, best similarity:  >0.8 +20 | >0.6 +10 | >0.5 +5 | else 0

Keyword points are computed for keyword-sourced candidates; a
semantic-only candidate scores its semantic bonus alone. Candidates merge
by asset id, so one found by both matchers appears once with both parts
of the score.

Order: score DESC, created_at DESC, id ASC. The id key makes the order a
total order even when timestamps collide.

rank() is pure: no I/O, no mutation of its inputs.
"""

from __future__ import annotations

from trove.models import Asset, SearchCandidate, query_tokens

EXACT_FILENAME_POINTS = 100
FILENAME_CONTAINS_POINTS = 50
TAG_POINTS = 30

# (exclusive lower bound, points), checked in order
_SEMANTIC_TIERS: tuple[tuple[float, int], ...] = (
    (0.8, 20),
    (0.6, 10),
    (0.5, 5),
)


def semantic_bonus(similarity: float | None) -> int:
    if similarity is None:
        return 0
    for bound, points in _SEMANTIC_TIERS:
        if similarity > bound:
            return points
    return 0


def keyword_score(asset: Asset, query: str) -> int:
    q = query.strip().lower()
    filename = asset.filename.strip().lower()
    score = 0
    if q and filename == q:
        score += EXACT_FILENAME_POINTS
    elif q and q in filename:
        score += FILENAME_CONTAINS_POINTS

    ai_tags = {t.lower() for t in asset.ai_tags}
    user_tags = {t.lower() for t in asset.user_tags}
    for token in query_tokens(query):
        if token in ai_tags:
            score += TAG_POINTS
        if token in user_tags:
            score += TAG_POINTS
    return score


def rank(
    keyword_results: list[SearchCandidate],
    semantic_results: list[SearchCandidate],
    query: str,
) -> list[SearchCandidate]:
    merged: dict[str, SearchCandidate] = {}

    for cand in keyword_results:
        if cand.id in merged:
            continue
        merged[cand.id] = cand.with_score(keyword_score(cand.asset, query))

    best_similarity: dict[str, float] = {}
    for cand in semantic_results:
        if cand.similarity is None:
            continue
        prev = best_similarity.get(cand.id)
        if prev is None or cand.similarity > prev:
            best_similarity[cand.id] = cand.similarity
        if cand.id not in merged:
            merged[cand.id] = cand.with_score(0)

    ranked: list[SearchCandidate] = []
    for asset_id, cand in merged.items():
        sim = best_similarity.get(asset_id)
        if sim is None:
            ranked.append(cand)
        else:
            ranked.append(cand.with_score(cand.score + semantic_bonus(sim), similarity=sim))

    # Two stable passes: id ASC first, then score and created_at DESC on top.
    ranked.sort(key=lambda c: c.asset.id)
    ranked.sort(key=lambda c: (c.score, c.asset.created_at), reverse=True)
    return ranked
