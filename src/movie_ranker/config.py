"""
Configuration constants for the movie ranker.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Model artifacts
DATA_DIR = Path(os.environ.get("MOVIE_RANKER_DATA_DIR", "data"))
SHAPE_FILE = "item_factors_shape.json"
FACTORS_FILE = "item_factors.f32"
MOVIE_IDS_FILE = "movie_ids.json"
TMDB_MAP_FILE = "movieId_to_tmdb.json"
STATIC_RECS_FILE = "recs_top100.json"

# Metadata cache (unset = in-memory, process lifetime)
CACHE_DB_PATH = os.environ.get("MOVIE_RANKER_CACHE_DB") or None

# Metadata provider
TMDB_API_KEY = os.environ.get("TMDB_API_KEY") or None
TMDB_API_BASE = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p"
POSTER_SIZE = "w342"
BACKDROP_SIZE = "w780"
DIRECTOR_JOB = "Director"
HTTP_TIMEOUT = _get_float_env("MOVIE_RANKER_HTTP_TIMEOUT", 10.0, min_val=0.1)

# Ranking
DEFAULT_POOL_SIZE = _get_int_env("MOVIE_RANKER_POOL_SIZE", 500, min_val=1)  # Larger than a UI page so client filters survive
DEFAULT_ENRICH_LIMIT = _get_int_env("MOVIE_RANKER_ENRICH_LIMIT", 60, min_val=0)
DEFAULT_MAX_CONCURRENT = _get_int_env("MOVIE_RANKER_MAX_CONCURRENT", 6, min_val=1)
SCORE_DECIMALS = 6

# Rating scale
RATING_MIN = 1.0
RATING_MAX = 5.0
RATING_NEUTRAL = 3.0  # Centering point: below contributes negative signal
