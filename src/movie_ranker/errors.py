"""Exception types raised by movie_ranker."""


class MovieRankerError(Exception):
    """Base class for all movie_ranker errors."""


class ModelLoadError(MovieRankerError):
    """Model artifacts are missing or corrupt; the ranking service is unavailable."""


class ModelNotLoadedError(MovieRankerError, RuntimeError):
    """Model data was accessed before ModelStore.load() completed."""
