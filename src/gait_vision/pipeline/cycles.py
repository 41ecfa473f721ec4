"""Selection of the two gait cycles used for feature computation."""

from __future__ import annotations

from dataclasses import dataclass

from .strides import Stride

BEST_CONSECUTIVE_PAIR = "best_consecutive_pair"
FALLBACK_NONCONSECUTIVE_PAIR = "fallback_nonconsecutive_pair"


@dataclass
class CycleSelection:
    """Two selected strides in chronological order."""

    strides: list[Stride]
    indices: list[int]
    reason: str


def _valid_runs(strides: list[Stride]) -> list[list[int]]:
    """Maximal runs of consecutive valid stride indices."""
    runs: list[list[int]] = []
    current: list[int] = []
    for idx, stride in enumerate(strides):
        if stride.is_valid:
            current.append(idx)
        elif current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)
    return runs


def select_cycles(strides: list[Stride]) -> CycleSelection | None:
    """
    Pick the best pair of strides.

    Prefers the adjacent pair of valid strides with the highest summed
    quality; if no two valid strides are adjacent, falls back to the two
    highest-quality valid strides in chronological order. Returns None when
    fewer than two strides are valid. Ties keep the earliest pair.

    Args:
        strides: All validated strides in chronological order, invalid ones included
    """
    valid = [idx for idx, s in enumerate(strides) if s.is_valid]
    if len(valid) < 2:
        return None

    best_pair: tuple[int, int] | None = None
    best_score = -1.0
    for run in _valid_runs(strides):
        for a, b in zip(run, run[1:]):
            score = strides[a].quality_score + strides[b].quality_score
            if score > best_score:
                best_score = score
                best_pair = (a, b)

    if best_pair is not None:
        reason = BEST_CONSECUTIVE_PAIR
        indices = list(best_pair)
    else:
        reason = FALLBACK_NONCONSECUTIVE_PAIR
        ranked = sorted(valid, key=lambda idx: strides[idx].quality_score, reverse=True)
        indices = sorted(ranked[:2])

    return CycleSelection(
        strides=[strides[idx] for idx in indices],
        indices=indices,
        reason=reason,
    )
