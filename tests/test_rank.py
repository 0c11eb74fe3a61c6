"""
tests/test_rank.py — Rank fusion scoring, merge and ordering.

Pure functions only; no database needed.
Run with: pytest tests/test_rank.py -v
"""

from __future__ import annotations

import pytest

from trove.models import Asset, SearchCandidate
from trove.rank import keyword_score, rank, semantic_bonus


def _asset(
    asset_id: str,
    filename: str,
    ai_tags: list[str] | None = None,
    user_tags: list[str] | None = None,
    created_at: str = "2024-01-01T00:00:00.000Z",
) -> Asset:
    return Asset(
        id                = asset_id,
        filename          = filename,
        original_filename = filename,
        file_type         = "image",
        mime_type         = "image/png",
        file_size         = 1,
        storage_path      = f"u/{asset_id}/original.png",
        created_at        = created_at,
        updated_at        = created_at,
        ai_tags           = ai_tags or [],
        user_tags         = user_tags or [],
    )


def _kw(asset: Asset) -> SearchCandidate:
    return SearchCandidate(asset=asset, match_type="keyword")


def _sem(asset: Asset, similarity: float) -> SearchCandidate:
    return SearchCandidate(asset=asset, match_type="semantic", similarity=similarity)


# ---------------------------------------------------------------------------
# Semantic bonus tiers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("similarity,points", [
    (None, 0),
    (0.3, 0),
    (0.5, 0),
    (0.55, 5),
    (0.6, 5),
    (0.7, 10),
    (0.8, 10),
    (0.85, 20),
    (1.0, 20),
])
def test_semantic_bonus_tiers(similarity: float | None, points: int) -> None:
    assert semantic_bonus(similarity) == points


# ---------------------------------------------------------------------------
# Keyword score
# ---------------------------------------------------------------------------

def test_exact_filename_match() -> None:
    assert keyword_score(_asset("a", "Logo.png"), "  logo.png ") == 100


def test_filename_contains_and_tag() -> None:
    """'dashboard' vs dashboard-mockup.png with ai_tags [dashboard, ui] → 50 + 30."""
    a = _asset("a", "dashboard-mockup.png", ai_tags=["dashboard", "ui"])
    assert keyword_score(a, "dashboard") == 80


def test_ai_and_user_tag_both_count() -> None:
    a = _asset("a", "x.png", ai_tags=["campaign"], user_tags=["Campaign"])
    assert keyword_score(a, "campaign") == 60


def test_each_token_scored() -> None:
    a = _asset("a", "x.png", ai_tags=["red", "car"])
    assert keyword_score(a, "Red Car") == 60


# ---------------------------------------------------------------------------
# rank()
# ---------------------------------------------------------------------------

def test_empty_inputs() -> None:
    assert rank([], [], "anything") == []


def test_scenario_keyword_only_score() -> None:
    a = _asset("a", "dashboard-mockup.png", ai_tags=["dashboard", "ui"])
    out = rank([_kw(a)], [], "dashboard")
    assert len(out) == 1
    assert out[0].score == 80
    assert out[0].match_type == "keyword"
    assert out[0].similarity is None


def test_semantic_only_candidate_is_returned() -> None:
    a = _asset("a", "beach.png")
    out = rank([], [_sem(a, 0.85)], "ocean")
    assert len(out) == 1
    assert out[0].score == 20
    assert out[0].match_type == "semantic"
    assert out[0].similarity == pytest.approx(0.85)


def test_semantic_at_threshold_scores_zero_but_is_kept() -> None:
    out = rank([], [_sem(_asset("a", "x.png"), 0.5)], "q")
    assert [c.score for c in out] == [0]


def test_tie_broken_by_newer_created_at() -> None:
    old = _asset("old", "dashboard-old.png", ai_tags=["dashboard"], created_at="2024-01-01T00:00:00.000Z")
    new = _asset("new", "dashboard-new.png", ai_tags=["dashboard"], created_at="2024-06-01T00:00:00.000Z")
    out = rank([_kw(old), _kw(new)], [], "dashboard")
    assert [c.score for c in out] == [80, 80]
    assert [c.id for c in out] == ["new", "old"]


def test_full_tie_broken_by_id() -> None:
    b = _asset("b", "shot-b.png")
    a = _asset("a", "shot-a.png")
    out = rank([_kw(b), _kw(a)], [], "shot")
    assert [c.id for c in out] == ["a", "b"]


def test_candidate_in_both_sets_merged() -> None:
    a = _asset("a", "dashboard-mockup.png", ai_tags=["dashboard"])
    out = rank([_kw(a)], [_sem(a, 0.7)], "dashboard")
    assert len(out) == 1
    assert out[0].score == 80 + 10
    assert out[0].match_type == "keyword"
    assert out[0].similarity == pytest.approx(0.7)


def test_best_similarity_used_once() -> None:
    a = _asset("a", "x.png")
    out = rank([], [_sem(a, 0.55), _sem(a, 0.9), _sem(a, 0.7)], "q")
    assert len(out) == 1
    assert out[0].score == 20
    assert out[0].similarity == pytest.approx(0.9)


def test_duplicate_keyword_candidates_collapse() -> None:
    a = _asset("a", "logo.png", ai_tags=["logo"])
    out = rank([_kw(a), _kw(a)], [], "logo")
    assert len(out) == 1
    assert out[0].score == 50 + 30


def test_higher_score_first() -> None:
    exact = _asset("e", "logo", created_at="2023-01-01T00:00:00.000Z")
    partial = _asset("p", "logo-dark.png", created_at="2025-01-01T00:00:00.000Z")
    sem = _asset("s", "brand.png", created_at="2026-01-01T00:00:00.000Z")
    out = rank([_kw(partial), _kw(exact)], [_sem(sem, 0.95)], "logo")
    assert [c.id for c in out] == ["e", "p", "s"]
    assert [c.score for c in out] == [100, 50, 20]


def test_rank_is_deterministic_and_idempotent() -> None:
    assets = [_asset(f"id{i}", f"shot-{i}.png", ai_tags=["shot"] if i % 2 else []) for i in range(6)]
    kw = [_kw(a) for a in assets]
    sem = [_sem(assets[1], 0.9), _sem(assets[4], 0.65)]

    first = rank(kw, sem, "shot")
    second = rank(list(reversed(kw)), list(reversed(sem)), "shot")
    assert [(c.id, c.score) for c in first] == [(c.id, c.score) for c in second]

    again = rank(first, sem, "shot")
    assert [c.id for c in again] == [c.id for c in first]


def test_rank_does_not_mutate_inputs() -> None:
    a = _asset("a", "logo.png")
    kw = [_kw(a)]
    sem = [_sem(a, 0.9)]
    rank(kw, sem, "logo")
    assert kw[0].score == 0 and kw[0].similarity is None
    assert sem[0].score == 0
