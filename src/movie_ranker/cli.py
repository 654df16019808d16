import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from tqdm import tqdm

from .cache import MetadataCache, SqliteMetadataCache, open_cache
from .config import (
    DATA_DIR,
    CACHE_DB_PATH,
    TMDB_API_KEY,
    DEFAULT_POOL_SIZE,
    DEFAULT_ENRICH_LIMIT,
    DEFAULT_MAX_CONCURRENT,
)
from .enrichment import TmdbClient
from .errors import ModelLoadError
from .model_store import ModelStore
from .service import RankingService, RankingResult

logger = logging.getLogger(__name__)


def _parse_rating_pairs(pairs: list[str] | None) -> list[dict]:
    """
    Parse CLI ratings in the form movieId:rating into raw rating records.
    Invalid entries are ignored with a warning.
    """
    if not pairs:
        return []

    records: list[dict] = []
    for entry in pairs:
        if ":" not in entry:
            logger.warning("Ignoring rating '%s' (expected movieId:rating)", entry)
            continue
        movie_part, rating_part = entry.split(":", 1)
        try:
            records.append({"movieId": float(movie_part), "rating": float(rating_part)})
        except ValueError:
            logger.warning("Ignoring rating '%s' (invalid number)", entry)
    return records


def _load_ratings_file(path: str) -> list:
    """Read ratings from a JSON file holding a list or a {"ratings": [...]} body."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("ratings")
    if not isinstance(data, list):
        logger.warning(f"No ratings list found in {path}")
        return []
    return data


def _open_cache(args: argparse.Namespace) -> MetadataCache:
    return open_cache(getattr(args, "cache_db", None) or CACHE_DB_PATH)


def _build_service(args: argparse.Namespace, cache: MetadataCache) -> RankingService:
    return RankingService(
        ModelStore(args.data_dir),
        cache=cache,
        api_key=TMDB_API_KEY,
        pool_size=getattr(args, "pool_size", DEFAULT_POOL_SIZE),
        enrich_limit=getattr(args, "enrich_limit", DEFAULT_ENRICH_LIMIT),
        max_concurrent=getattr(args, "max_concurrent", DEFAULT_MAX_CONCURRENT),
    )


def _close_cache(cache: MetadataCache) -> None:
    if isinstance(cache, SqliteMetadataCache):
        cache.close()


def _output_result(result: RankingResult, args: argparse.Namespace) -> None:
    """Format and log a ranking result in the requested format."""
    entries = result.entries[:args.limit] if args.limit else result.entries

    if args.format == 'json':
        payload = result.to_dict()
        payload["recs"] = [e.to_dict() for e in entries]
        logger.info(json.dumps(payload, indent=2))
        return

    logger.info(
        f"\nTop {len(entries)} of {result.pool_size} films ({result.mode}, "
        f"{result.rated_count} ratings used, {result.enriched_count} enriched):"
    )
    for e in entries:
        meta = e.metadata
        title = meta.title if meta and meta.title else f"Movie #{e.movie_id}"
        year = f" ({meta.year})" if meta and meta.year else ""
        logger.info(f"{e.rank}. {title}{year} - Score: {e.score:.4f}")
        if meta and meta.director:
            logger.info(f"   Director: {meta.director}")
        if meta and meta.genres:
            logger.info(f"   Genres: {', '.join(meta.genres)}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Rank the catalog for the given ratings."""
    raw = _parse_rating_pairs(args.ratings)
    if args.ratings_file:
        raw.extend(_load_ratings_file(args.ratings_file))

    cache = _open_cache(args)
    try:
        service = _build_service(args, cache)
        result = asyncio.run(service.recommend(raw))
    finally:
        _close_cache(cache)
    _output_result(result, args)


def cmd_popular(args: argparse.Namespace) -> None:
    """Show the precomputed static list."""
    service = RankingService(ModelStore(args.data_dir))
    _output_result(service.static(), args)


def cmd_info(args: argparse.Namespace) -> None:
    """Show model and cache statistics."""
    store = ModelStore(args.data_dir).load()
    cache = _open_cache(args)
    try:
        cached = len(cache)
    finally:
        _close_cache(cache)

    coverage = store.external_id_count / store.rows
    logger.info(f"\nModel: {store.data_dir}")
    logger.info(f"  Catalog size: {store.rows}")
    logger.info(f"  Latent factors: {store.cols}")
    logger.info(f"  Films with TMDB ids: {store.external_id_count} ({coverage:.0%})")
    logger.info(f"  Cached metadata entries: {cached}")
    logger.info(f"  TMDB API key: {'configured' if TMDB_API_KEY else 'missing'}")


def cmd_lookup(args: argparse.Namespace) -> None:
    """Fetch metadata for one TMDB id."""
    if not TMDB_API_KEY:
        logger.error("TMDB_API_KEY is not set")
        return

    async def _lookup(cache: MetadataCache):
        async with TmdbClient(api_key=TMDB_API_KEY, cache=cache) as tmdb:
            return await tmdb.fetch(args.tmdb_id)

    cache = _open_cache(args)
    try:
        metadata = asyncio.run(_lookup(cache))
    finally:
        _close_cache(cache)

    if metadata is None:
        logger.warning(f"No metadata available for TMDB id {args.tmdb_id}")
        return
    logger.info(json.dumps(metadata.to_dict(), indent=2))


def cmd_warm_cache(args: argparse.Namespace) -> None:
    """Prefetch metadata for catalog films in model order."""
    if not TMDB_API_KEY:
        logger.error("TMDB_API_KEY is not set; nothing to warm")
        return

    store = ModelStore(args.data_dir).load()
    external_ids = list(dict.fromkeys(
        eid for eid in (store.external_id_of(m) for m in store.item_ids) if eid is not None
    ))
    if args.limit:
        external_ids = external_ids[:args.limit]

    cache = _open_cache(args)
    if not isinstance(cache, SqliteMetadataCache):
        logger.warning("No cache database configured (--cache-db / MOVIE_RANKER_CACHE_DB); results will not persist")

    batch_size = max(1, args.batch)

    async def _warm() -> int:
        found = 0
        async with TmdbClient(api_key=TMDB_API_KEY, cache=cache, max_concurrent=args.max_concurrent) as tmdb:
            for start in tqdm(range(0, len(external_ids), batch_size), desc="Warming cache", unit="batch"):
                batch = external_ids[start:start + batch_size]
                results = await tmdb.enrich(batch)
                found += sum(1 for r in results if r is not None)
            logger.info(f"Made {tmdb.calls_made} TMDB requests")
        return found

    try:
        found = asyncio.run(_warm())
        logger.info(f"Cached metadata for {found}/{len(external_ids)} films ({len(cache)} entries total)")
    finally:
        _close_cache(cache)


def main():
    parser = argparse.ArgumentParser(description="Latent-factor movie ranker")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR, help="Directory holding model artifacts")
    parser.add_argument("--cache-db", help="SQLite file for persistent metadata cache")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Rank films for a set of ratings")
    rec_parser.add_argument("ratings", nargs="*", help="Ratings as movieId:rating (1-5)")
    rec_parser.add_argument("--ratings-file", help="JSON file with a ratings list")
    rec_parser.add_argument("--limit", type=int, default=20, help="Number of results to display")
    rec_parser.add_argument("--pool-size", type=int, default=DEFAULT_POOL_SIZE, help="Size of the ranked pool")
    rec_parser.add_argument("--enrich-limit", type=int, default=DEFAULT_ENRICH_LIMIT,
                            help="Number of top films to enrich with TMDB metadata")
    rec_parser.add_argument("--max-concurrent", type=int, default=DEFAULT_MAX_CONCURRENT,
                            help="Max TMDB requests in flight")
    rec_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    popular_parser = subparsers.add_parser("popular", help="Show the precomputed popular list")
    popular_parser.add_argument("--limit", type=int, default=20, help="Number of results to display")
    popular_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    popular_parser.set_defaults(func=cmd_popular)

    info_parser = subparsers.add_parser("info", help="Show model and cache statistics")
    info_parser.set_defaults(func=cmd_info)

    lookup_parser = subparsers.add_parser("lookup", help="Fetch TMDB metadata for one film")
    lookup_parser.add_argument("tmdb_id", type=int, help="TMDB movie id")
    lookup_parser.set_defaults(func=cmd_lookup)

    warm_parser = subparsers.add_parser("warm-cache", help="Prefetch TMDB metadata for the catalog")
    warm_parser.add_argument("--limit", type=int, help="Only warm the first N films")
    warm_parser.add_argument("--batch", type=int, default=100, help="Films per batch")
    warm_parser.add_argument("--max-concurrent", type=int, default=DEFAULT_MAX_CONCURRENT,
                             help="Max TMDB requests in flight")
    warm_parser.set_defaults(func=cmd_warm_cache)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except ModelLoadError as e:
        logger.error(f"Model unavailable: {e}")
        sys.exit(1)
