import json

import httpx
import pytest

from movie_ranker.cache import InMemoryMetadataCache
from movie_ranker.errors import ModelLoadError
from movie_ranker.model_store import ModelStore
from movie_ranker.service import RankingService, RankedEntry

from conftest import FILM_A, FILM_B, FILM_C

METADATA_KEYS = [
    "title", "poster_url", "backdrop_url", "overview", "year",
    "director", "runtime", "original_language", "genres",
]


def tmdb_transport(calls: list):
    def handler(request: httpx.Request) -> httpx.Response:
        tmdb_id = int(request.url.path.split("/")[-1])
        calls.append(tmdb_id)
        return httpx.Response(200, json={
            "title": f"TMDB {tmdb_id}",
            "release_date": "2010-07-16",
            "genres": [{"name": "Drama"}],
            "poster_path": f"/{tmdb_id}.jpg",
        })
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_enrichment_window_covers_only_head(five_film_dir):
    calls = []
    async with httpx.AsyncClient(transport=tmdb_transport(calls)) as client:
        service = RankingService(
            ModelStore(five_film_dir), api_key="k", pool_size=5, enrich_limit=2, client=client,
        )
        result = await service.recommend([{"movieId": 10, "rating": 5}])

    assert result.mode == "personalized"
    assert result.rated_count == 1
    assert result.pool_size == 5
    assert result.enriched_count == 2
    assert [e.movie_id for e in result.entries] == [11, 12, 13, 14, 15]
    assert [e.rank for e in result.entries] == [1, 2, 3, 4, 5]
    assert sorted(calls) == [511, 512]

    records = result.to_dict()["recs"]
    assert records[0]["title"] == "TMDB 511"
    assert records[1]["poster_url"] == "https://image.tmdb.org/t/p/w342/512.jpg"
    for record in records[2:]:
        assert all(record[key] is None for key in METADATA_KEYS)
        assert record["tmdbId"] is not None
        assert record["score"] > 0


@pytest.mark.asyncio
async def test_rated_films_never_recommended(abc_dir):
    service = RankingService(ModelStore(abc_dir), api_key=None, pool_size=10)

    result = await service.recommend([
        {"movieId": FILM_A, "rating": 5},
        {"movieId": FILM_B, "rating": 3},
    ])

    assert [e.movie_id for e in result.entries] == [FILM_C]
    assert result.rated_count == 2


@pytest.mark.asyncio
async def test_concrete_top1_scenario(abc_dir):
    service = RankingService(ModelStore(abc_dir), api_key=None, pool_size=1)

    result = await service.recommend([{"movieId": FILM_A, "rating": 5}])

    assert len(result.entries) == 1
    assert result.entries[0].movie_id == FILM_C
    assert result.entries[0].tmdb_id == 103
    assert result.entries[0].score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_missing_key_returns_structural_entries(abc_dir):
    service = RankingService(ModelStore(abc_dir), api_key=None, pool_size=5, enrich_limit=5)

    result = await service.recommend([{"movieId": FILM_B, "rating": 1}])

    assert result.enriched_count == 0
    assert all(e.metadata is None for e in result.entries)
    assert result.to_dict()["ok"] is True


@pytest.mark.asyncio
async def test_invalid_ratings_degrade_to_zero_scores(abc_dir):
    service = RankingService(ModelStore(abc_dir), api_key=None, pool_size=5)

    result = await service.recommend([{"movieId": "x"}, {"movieId": FILM_A, "rating": 9}])

    assert result.mode == "personalized"
    assert result.rated_count == 0
    assert {e.movie_id for e in result.entries} == {FILM_A, FILM_B, FILM_C}
    assert all(e.score == 0.0 for e in result.entries)


@pytest.mark.asyncio
async def test_warm_cache_shared_across_requests(five_film_dir):
    calls = []
    cache = InMemoryMetadataCache()
    async with httpx.AsyncClient(transport=tmdb_transport(calls)) as client:
        service = RankingService(
            ModelStore(five_film_dir), cache=cache, api_key="k", pool_size=5, enrich_limit=3, client=client,
        )
        await service.recommend([{"movieId": 10, "rating": 5}])
        second = await service.recommend([{"movieId": 10, "rating": 4}])

    assert sorted(calls) == [511, 512, 513]
    assert second.enriched_count == 3
    assert len(cache) == 3


@pytest.mark.asyncio
async def test_no_ratings_uses_static_list(abc_dir):
    (abc_dir / "recs_top100.json").write_text(json.dumps([
        {"movieId": 2, "tmdbId": 102, "score": 0.91, "title": "Popular", "year": 1994},
        {"movieId": 3, "tmdbId": None, "score": 0.5},
        {"tmdbId": 7},
    ]))
    service = RankingService(ModelStore(abc_dir), api_key=None)

    result = await service.recommend([])

    assert result.mode == "static"
    assert result.rated_count == 0
    assert [e.movie_id for e in result.entries] == [2, 3]
    assert result.entries[0].metadata.title == "Popular"
    assert result.entries[1].metadata is None
    assert result.enriched_count == 1
    assert result.to_dict()["count"] == 2


def test_static_records_are_type_checked(abc_dir):
    (abc_dir / "recs_top100.json").write_text(json.dumps([
        {"movieId": 2, "title": 42, "genres": "Drama", "year": "soon", "runtime": "90"},
        {"movieId": 3, "title": "Ok", "genres": ["Drama", "", 3], "year": 1999, "director": ["x"]},
    ]))

    result = RankingService(ModelStore(abc_dir)).static()

    assert [e.movie_id for e in result.entries] == [2, 3]
    assert result.entries[0].metadata is None
    meta = result.entries[1].metadata
    assert meta.title == "Ok"
    assert meta.genres == ["Drama"]
    assert meta.year == 1999
    assert meta.director is None
    assert result.enriched_count == 1


def test_static_list_missing_is_empty(abc_dir):
    result = RankingService(ModelStore(abc_dir)).static()

    assert result.mode == "static"
    assert result.entries == []


def test_static_list_corrupt_is_load_error(abc_dir):
    (abc_dir / "recs_top100.json").write_text("{broken")

    with pytest.raises(ModelLoadError):
        RankingService(ModelStore(abc_dir)).static()


@pytest.mark.asyncio
async def test_load_error_propagates(tmp_path):
    service = RankingService(ModelStore(tmp_path / "missing"), api_key=None)

    with pytest.raises(ModelLoadError):
        await service.recommend([{"movieId": 1, "rating": 4}])


def test_ranked_entry_rounds_score():
    entry = RankedEntry(rank=1, movie_id=5, tmdb_id=None, score=0.123456789)

    record = entry.to_dict()

    assert record["score"] == 0.123457
    assert record["movieId"] == 5
    assert record["genres"] is None
