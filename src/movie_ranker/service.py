import json
import logging
from dataclasses import dataclass, field

import httpx

from .cache import MetadataCache, InMemoryMetadataCache
from .config import (
    TMDB_API_KEY,
    STATIC_RECS_FILE,
    DEFAULT_POOL_SIZE,
    DEFAULT_ENRICH_LIMIT,
    DEFAULT_MAX_CONCURRENT,
    SCORE_DECIMALS,
)
from .enrichment import TmdbClient
from .errors import ModelLoadError
from .metadata import MovieMetadata
from .model_store import ModelStore
from .ratings import normalize_ratings, exclusion_set
from .scoring import build_user_vector, score_items
from .selection import select_top_k

logger = logging.getLogger(__name__)

MODE_PERSONALIZED = "personalized"
MODE_STATIC = "static"

_EMPTY_METADATA = MovieMetadata()


@dataclass
class RankedEntry:
    rank: int
    movie_id: int
    tmdb_id: int | None
    score: float
    metadata: MovieMetadata | None = None

    def to_dict(self) -> dict:
        """Flat wire record; metadata fields are null outside the enrichment window."""
        record = {
            "rank": self.rank,
            "movieId": self.movie_id,
            "tmdbId": self.tmdb_id,
            "score": round(self.score, SCORE_DECIMALS),
        }
        record.update((self.metadata or _EMPTY_METADATA).to_dict())
        return record


@dataclass
class RankingResult:
    mode: str
    rated_count: int
    pool_size: int
    enriched_count: int
    entries: list[RankedEntry] = field(default_factory=list)
    ok: bool = True

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "mode": self.mode,
            "ratedCount": self.rated_count,
            "poolSize": self.pool_size,
            "enrichedCount": self.enriched_count,
            "count": len(self.entries),
            "recs": [e.to_dict() for e in self.entries],
        }


def _static_entry(rank: int, record) -> RankedEntry | None:
    """Convert one precomputed record, or None if it lacks a usable movie id."""
    if not isinstance(record, dict):
        return None
    movie_id = record.get("movieId")
    if isinstance(movie_id, bool) or not isinstance(movie_id, (int, float)):
        return None

    tmdb_id = record.get("tmdbId")
    if isinstance(tmdb_id, bool) or not isinstance(tmdb_id, (int, float)):
        tmdb_id = None

    score = record.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = 0.0

    # Same field checks as cached provider payloads
    metadata = MovieMetadata.from_dict(record)
    return RankedEntry(
        rank=rank,
        movie_id=int(movie_id),
        tmdb_id=int(tmdb_id) if tmdb_id is not None else None,
        score=float(score),
        metadata=None if metadata.is_empty() else metadata,
    )


class RankingService:
    """
    End-to-end recommendation request over a shared ModelStore.

    Stages run strictly in order: normalize ratings, build the user vector,
    score the whole catalog, select the top-K pool, then enrich only the
    first ``enrich_limit`` entries. Scoring and selection are synchronous;
    the only suspension point is the metadata fetch.
    """

    def __init__(
        self,
        store: ModelStore,
        cache: MetadataCache | None = None,
        api_key: str | None = TMDB_API_KEY,
        pool_size: int = DEFAULT_POOL_SIZE,
        enrich_limit: int = DEFAULT_ENRICH_LIMIT,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        client: httpx.AsyncClient | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else InMemoryMetadataCache()
        self.api_key = api_key
        self.pool_size = pool_size
        self.enrich_limit = max(0, enrich_limit)
        self.max_concurrent = max_concurrent
        self.client = client

    async def recommend(self, raw_ratings) -> RankingResult:
        """
        Rank the catalog for a raw rating list.

        ``raw_ratings`` is untrusted: malformed records are dropped. When no
        ratings are supplied at all (None or empty list) the precomputed
        static list is returned instead.

        Raises:
            ModelLoadError: model artifacts are missing or corrupt
        """
        if not raw_ratings:
            return self.static()

        ratings = normalize_ratings(raw_ratings)
        exclude = exclusion_set(ratings)

        self.store.load()
        user_vector = build_user_vector(ratings, self.store)
        scores = score_items(self.store, user_vector)
        pool = select_top_k(scores, self.store.item_ids, self.pool_size, exclude)

        entries = [
            RankedEntry(
                rank=rank,
                movie_id=item.movie_id,
                tmdb_id=self.store.external_id_of(item.movie_id),
                score=item.score,
            )
            for rank, item in enumerate(pool, 1)
        ]

        head = entries[:self.enrich_limit]
        if head:
            metadata = await self._enrich([e.tmdb_id for e in head])
            for entry, meta in zip(head, metadata):
                entry.metadata = meta

        enriched = sum(1 for e in head if e.metadata is not None)
        logger.info(
            f"Ranked {len(entries)} films from {len(ratings)} ratings "
            f"({enriched}/{len(head)} enriched)"
        )
        return RankingResult(
            mode=MODE_PERSONALIZED,
            rated_count=len(ratings),
            pool_size=len(entries),
            enriched_count=enriched,
            entries=entries,
        )

    async def _enrich(self, external_ids: list[int | None]) -> list[MovieMetadata | None]:
        tmdb = TmdbClient(
            api_key=self.api_key,
            cache=self.cache,
            max_concurrent=self.max_concurrent,
            client=self.client,
        )
        async with tmdb:
            return await tmdb.enrich(external_ids)

    def static(self) -> RankingResult:
        """
        Precomputed popular list used when the caller has no ratings.

        Raises:
            ModelLoadError: the static list exists but is not a JSON list
        """
        path = self.store.data_dir / STATIC_RECS_FILE
        try:
            with open(path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except FileNotFoundError:
            logger.warning(f"No static recommendations at {path}; returning empty list")
            records = []
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ModelLoadError(f"Unreadable static recommendations {path}: {e}") from e

        if not isinstance(records, list):
            raise ModelLoadError(f"{STATIC_RECS_FILE} must be a JSON list")

        entries = []
        for record in records:
            entry = _static_entry(len(entries) + 1, record)
            if entry is None:
                logger.debug(f"Skipping malformed static record: {record!r}")
                continue
            entries.append(entry)

        return RankingResult(
            mode=MODE_STATIC,
            rated_count=0,
            pool_size=len(entries),
            enriched_count=sum(1 for e in entries if e.metadata is not None),
            entries=entries,
        )
