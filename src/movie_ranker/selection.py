import heapq
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ScoredItem:
    movie_id: int
    score: float


def select_top_k(
    scores: np.ndarray,
    item_ids: Sequence[int],
    k: int,
    exclude: set[int] | frozenset[int] = frozenset(),
) -> list[ScoredItem]:
    """
    Pick the k highest-scoring items without sorting the whole catalog.

    Keeps a min-heap of at most k (score, index) pairs; a candidate displaces
    the current minimum only when its score is strictly greater. Runs in
    O(rows * log k). Order among exactly equal scores is unspecified.

    Args:
        scores: One score per catalog row
        item_ids: Movie id for each row, aligned with scores
        k: Pool size
        exclude: Movie ids that must never be returned (already rated)

    Returns:
        Up to k items sorted by descending score
    """
    if k <= 0:
        return []
    if len(scores) != len(item_ids):
        raise ValueError(f"Got {len(scores)} scores for {len(item_ids)} items")

    heap: list[tuple[float, int]] = []
    for i, movie_id in enumerate(item_ids):
        if movie_id in exclude:
            continue

        score = float(scores[i])
        if len(heap) < k:
            heapq.heappush(heap, (score, i))
        elif score > heap[0][0]:
            heapq.heapreplace(heap, (score, i))

    heap.sort(key=lambda entry: entry[0], reverse=True)
    return [ScoredItem(movie_id=item_ids[i], score=score) for score, i in heap]
