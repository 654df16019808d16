import asyncio
import logging

import httpx

from .cache import MetadataCache, InMemoryMetadataCache
from .config import (
    TMDB_API_KEY,
    TMDB_API_BASE,
    HTTP_TIMEOUT,
    DEFAULT_MAX_CONCURRENT,
)
from .metadata import MovieMetadata

logger = logging.getLogger(__name__)


class TmdbClient:
    """
    Async TMDB metadata fetcher with a bounded number of requests in flight.

    Results are memoized in ``cache`` per TMDB id. A failed lookup returns
    None and is not cached so a later request can retry it. Without an API
    key every lookup returns None and no request is made.

    Usable either as an async context manager (creates and closes its own
    httpx client) or with an injected ``client``.
    """

    BASE = TMDB_API_BASE

    def __init__(
        self,
        api_key: str | None = TMDB_API_KEY,
        cache: MetadataCache | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.cache = cache if cache is not None else InMemoryMetadataCache()
        self.semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self.client = client
        self._owns_client = False
        # One outbound call per id even when several slots share it
        self._inflight: dict[int, asyncio.Task] = {}
        self.calls_made = 0

    async def __aenter__(self):
        """Async context manager entry."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=HTTP_TIMEOUT,
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._owns_client and self.client:
            await self.client.aclose()
            self.client = None
            self._owns_client = False
        return False

    async def fetch(self, external_id: int) -> MovieMetadata | None:
        """Metadata for one TMDB id, from cache or a single provider call."""
        if not self.api_key:
            return None

        cached = self.cache.get(external_id)
        if cached is not None:
            return cached

        task = self._inflight.get(external_id)
        if task is None:
            if not self.client:
                raise RuntimeError("TmdbClient must be used as an async context manager or given a client")
            task = asyncio.ensure_future(self._fetch_remote(external_id))
            self._inflight[external_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(external_id, None))

        return await asyncio.shield(task)

    async def _fetch_remote(self, external_id: int) -> MovieMetadata | None:
        url = f"{self.BASE}/movie/{external_id}"
        params = {"api_key": self.api_key, "append_to_response": "credits"}

        async with self.semaphore:
            self.calls_made += 1
            try:
                resp = await self.client.get(url, params=params)

                if resp.status_code == 404:
                    logger.debug(f"TMDB has no movie {external_id}")
                    return None

                if resp.status_code == 429:
                    logger.warning(f"Rate limited by TMDB on movie {external_id}; leaving it unenriched")
                    return None

                resp.raise_for_status()
                metadata = MovieMetadata.from_tmdb(resp.json())

            # Messages below omit the request URL, which carries the API key
            except httpx.TimeoutException:
                logger.warning(f"Timeout fetching TMDB movie {external_id}")
                return None

            except httpx.HTTPStatusError as e:
                logger.error(f"HTTP {e.response.status_code} fetching TMDB movie {external_id}")
                return None

            except httpx.HTTPError as e:
                logger.error(f"Request error fetching TMDB movie {external_id}: {type(e).__name__}")
                return None

            except ValueError as e:
                logger.warning(f"Malformed TMDB body for movie {external_id}: {e}")
                return None

        self.cache.put(external_id, metadata)
        return metadata

    async def enrich(self, external_ids: list[int | None]) -> list[MovieMetadata | None]:
        """
        Fetch metadata for each id concurrently.

        The result list is aligned with ``external_ids``: each lookup writes
        to its own slot, so completion order never affects ranking order.
        Missing ids and failed lookups leave their slot as None.
        """
        results: list[MovieMetadata | None] = [None] * len(external_ids)
        if not external_ids:
            return results

        if not self.api_key:
            logger.info("No TMDB API key configured; skipping metadata enrichment")
            return results

        async def _fill(slot: int, external_id: int) -> None:
            results[slot] = await self.fetch(external_id)

        slots = [(i, eid) for i, eid in enumerate(external_ids) if eid is not None]
        outcomes = await asyncio.gather(*(_fill(i, eid) for i, eid in slots), return_exceptions=True)

        for (slot, external_id), outcome in zip(slots, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Enrichment failed for TMDB movie {external_id}: {type(outcome).__name__}: {outcome}")
                results[slot] = None

        found = sum(1 for r in results if r is not None)
        if found < len(external_ids):
            logger.warning(f"Enrichment complete: {found}/{len(external_ids)} with metadata")
        else:
            logger.info(f"Enrichment complete: {found}/{len(external_ids)} with metadata")
        return results
