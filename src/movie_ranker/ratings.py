import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass

from .config import RATING_MIN, RATING_MAX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rating:
    movie_id: int
    rating: float


def _as_number(value) -> float | None:
    """Return value as a finite float if it is a real JSON number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def normalize_ratings(raw) -> list[Rating]:
    """
    Validate raw rating records from an untrusted source.

    Each record must be a mapping with numeric ``movieId`` and ``rating``.
    The movie id is truncated toward zero; ratings outside [1, 5] are dropped.
    Malformed records are skipped rather than failing the whole list, and
    duplicate movie ids are all kept in input order.
    """
    if not isinstance(raw, list):
        if raw is not None:
            logger.debug(f"Ignoring non-list ratings payload of type {type(raw).__name__}")
        return []

    clean: list[Rating] = []
    for record in raw:
        if not isinstance(record, Mapping):
            logger.debug(f"Dropping non-object rating record: {record!r}")
            continue

        movie_id = _as_number(record.get("movieId"))
        rating = _as_number(record.get("rating"))
        if movie_id is None or rating is None:
            logger.debug(f"Dropping rating record with missing/non-numeric fields: {record!r}")
            continue

        if not RATING_MIN <= rating <= RATING_MAX:
            logger.debug(f"Dropping out-of-range rating {rating} for movie {movie_id}")
            continue

        clean.append(Rating(movie_id=int(movie_id), rating=rating))

    if len(clean) != len(raw):
        logger.info(f"Accepted {len(clean)}/{len(raw)} rating records")
    return clean


def exclusion_set(ratings: list[Rating]) -> set[int]:
    """Movie ids the user has already rated; never recommended back."""
    return {r.movie_id for r in ratings}
