"""Reciprocal Rank Fusion (RRF) over independently computed rankings."""

from collections.abc import Callable, Sequence

from devsearch.db.backend import Candidate

# RRF smoothing constant
RRF_K = 60


def _tie_break_sort(
    candidates: list[Candidate], score_of: Callable[[Candidate], float]
) -> list[Candidate]:
    """Sort by score desc, then updated_at desc, then source_id asc.

    Python's sort is stable, so sorting by the least significant key first
    composes into the full ordering.
    """
    ordered = sorted(candidates, key=lambda c: c.source_id)
    ordered.sort(key=lambda c: c.updated_at, reverse=True)
    ordered.sort(key=score_of, reverse=True)
    return ordered


def order_candidates(candidates: Sequence[Candidate]) -> list[Candidate]:
    """Order one ranking by its native score with the deterministic tie-break."""
    return _tie_break_sort(list(candidates), lambda c: c.score)


def reciprocal_rank_fusion(
    rankings: Sequence[Sequence[Candidate]], k: int = RRF_K
) -> list[tuple[Candidate, float]]:
    """Fuse rankings by summing ``1 / (k + rank)`` per document.

    Ranks are 1-based positions within each ranking; a document missing
    from a ranking contributes nothing for it.
    """
    scores: dict[int, float] = {}
    by_id: dict[int, Candidate] = {}
    for ranking in rankings:
        for rank, candidate in enumerate(ranking, start=1):
            scores[candidate.doc_id] = scores.get(candidate.doc_id, 0.0) + 1.0 / (k + rank)
            by_id.setdefault(candidate.doc_id, candidate)

    ordered = _tie_break_sort(list(by_id.values()), lambda c: scores[c.doc_id])
    return [(c, scores[c.doc_id]) for c in ordered]
