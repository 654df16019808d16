import logging
from dataclasses import asdict, dataclass, fields

from .config import TMDB_IMAGE_BASE, POSTER_SIZE, BACKDROP_SIZE, DIRECTOR_JOB

logger = logging.getLogger(__name__)


@dataclass
class MovieMetadata:
    title: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    overview: str | None = None
    year: int | None = None
    director: str | None = None
    runtime: int | float | None = None
    original_language: str | None = None
    genres: list[str] | None = None

    @classmethod
    def from_tmdb(cls, payload: dict) -> 'MovieMetadata':
        """
        Normalize a TMDB /movie/{id}?append_to_response=credits body.

        Every field is validated independently; anything missing or of the
        wrong type becomes None instead of failing the whole record.
        Raises ValueError only when the body is not a JSON object.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Expected JSON object, got {type(payload).__name__}")

        return cls(
            title=_str_or_none(payload.get("title")),
            overview=_str_or_none(payload.get("overview")),
            year=_parse_year(payload.get("release_date")),
            runtime=_number_or_none(payload.get("runtime")),
            original_language=_str_or_none(payload.get("original_language")),
            genres=_parse_genres(payload.get("genres")),
            director=_parse_director(payload.get("credits")),
            poster_url=image_url(POSTER_SIZE, payload.get("poster_path")),
            backdrop_url=image_url(BACKDROP_SIZE, payload.get("backdrop_path")),
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'MovieMetadata':
        """
        Rebuild from to_dict()-shaped data (cache rows, precomputed lists).

        Unknown keys are ignored and each field is type-checked like
        from_tmdb. Raises ValueError when data is not a JSON object.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected JSON object, got {type(data).__name__}")

        year = data.get("year")
        return cls(
            title=_str_or_none(data.get("title")),
            poster_url=_str_or_none(data.get("poster_url")),
            backdrop_url=_str_or_none(data.get("backdrop_url")),
            overview=_str_or_none(data.get("overview")),
            year=year if isinstance(year, int) and not isinstance(year, bool) else None,
            director=_str_or_none(data.get("director")),
            runtime=_number_or_none(data.get("runtime")),
            original_language=_str_or_none(data.get("original_language")),
            genres=_genre_names(data.get("genres")),
        )

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict:
        return asdict(self)


def image_url(size: str, path) -> str | None:
    """Full image URL for a provider-relative path like '/abc.jpg'."""
    if not path or not isinstance(path, str):
        return None
    return f"{TMDB_IMAGE_BASE}/{size}{path}"


def _str_or_none(value) -> str | None:
    return value if isinstance(value, str) else None


def _number_or_none(value) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _parse_year(release_date) -> int | None:
    # Provider dates look like "1999-03-31"; only the year is kept
    if not release_date:
        return None
    head = str(release_date)[:4]
    try:
        return int(head)
    except ValueError:
        logger.debug(f"Unparseable release date: {release_date!r}")
        return None


def _parse_genres(genres) -> list[str] | None:
    if not isinstance(genres, list):
        return None
    names = [g.get("name") if isinstance(g, dict) else None for g in genres]
    return [name for name in names if name]


def _genre_names(genres) -> list[str] | None:
    if not isinstance(genres, list):
        return None
    return [g for g in genres if isinstance(g, str) and g]


def _parse_director(credits) -> str | None:
    """First crew member credited as director, in provider order."""
    if not isinstance(credits, dict):
        return None
    crew = credits.get("crew")
    if not isinstance(crew, list):
        return None
    for member in crew:
        if isinstance(member, dict) and member.get("job") == DIRECTOR_JOB:
            return _str_or_none(member.get("name"))
    return None
