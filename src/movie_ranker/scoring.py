import logging

import numpy as np

from .config import RATING_NEUTRAL
from .model_store import ModelStore
from .ratings import Rating

logger = logging.getLogger(__name__)


def build_user_vector(ratings: list[Rating], store: ModelStore) -> np.ndarray:
    """
    Build a taste vector as the weighted average of rated item vectors.

    Ratings are centered on the neutral point (w = rating - 3.0) so disliked
    films pull the vector away from their factors. Neutral ratings and films
    missing from the catalog contribute nothing. With no signal at all the
    zero vector is returned.

    Args:
        ratings: Normalized ratings (see ratings.normalize_ratings)
        store: Loaded model store

    Returns:
        float32 vector of length store.cols, owned by the caller
    """
    accumulator = np.zeros(store.cols, dtype=np.float32)
    denominator = 0.0
    used = 0

    for r in ratings:
        idx = store.index_of(r.movie_id)
        if idx is None:
            continue

        w = r.rating - RATING_NEUTRAL
        if w == 0:
            continue

        denominator += abs(w)
        accumulator += np.float32(w) * store.vector_at(idx)
        used += 1

    if denominator > 0:
        accumulator /= np.float32(denominator)

    logger.debug(f"User vector built from {used}/{len(ratings)} ratings (denominator {denominator})")
    return accumulator


def score_items(store: ModelStore, user_vector: np.ndarray) -> np.ndarray:
    """Inner product of every catalog item vector with the user vector."""
    if user_vector.shape != (store.cols,):
        raise ValueError(f"User vector has shape {user_vector.shape}, expected ({store.cols},)")
    # Plain dot product, no magnitude normalization. Rows accumulate in
    # float64 and are stored as float32 scores.
    scores = store.factors @ user_vector.astype(np.float64)
    return scores.astype(np.float32)
