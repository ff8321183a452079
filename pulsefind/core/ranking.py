"""
Final filtering and ranking of match candidates.

Score = len(sources) * 1000 + confidence * 10 + popularity / 100, so any
candidate confirmed by more sources outranks every candidate confirmed by
fewer, whatever their confidence.
"""

from typing import List, Sequence

from pulsefind.core.models import MatchCandidate

MAX_RESULTS = 99


def ranking_score(candidate: MatchCandidate) -> float:
    return (
        len(candidate.sources) * 1000
        + candidate.confidence * 10
        + (candidate.popularity or 0) / 100
    )


def rank_candidates(
    candidates: Sequence[MatchCandidate],
    active_threshold: float,
    max_results: int = MAX_RESULTS,
) -> List[MatchCandidate]:
    """
    Drop unconfirmed or below-threshold candidates, then rank.

    Python's sort is stable, so equal scores keep discovery order.
    """
    kept = [
        c for c in candidates
        if c.sources and c.confidence >= active_threshold
    ]
    kept.sort(key=ranking_score, reverse=True)
    return kept[:max_results]
