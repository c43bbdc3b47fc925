"""Tests for the recommendation engine."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from soundledger.application.services import RecommendationService
from soundledger.config.settings import RecommendationSettings
from soundledger.domain.entities import ScoredSong
from soundledger.domain.exceptions import (
    EmbeddingServiceException,
    SimilarityServiceException,
)
from soundledger.domain.ports import IEmbeddingClient, ISimilarityClient
from soundledger.infrastructure.persistence import RecommendationRepository


class MovableClock:
    """A clock the test can move forward."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def settings() -> RecommendationSettings:
    return RecommendationSettings()


@pytest.fixture
def service(session_factory, settings, clock) -> RecommendationService:
    return RecommendationService(session_factory, settings, clock=clock)


@pytest.fixture
def similarity(mocker):
    return mocker.AsyncMock(spec=ISimilarityClient)


def _ids(entries) -> list[int]:
    return [entry.song_id for entry in entries]


class TestLocalGraph:
    async def test_neighbor_songs_rank_first(self, service: RecommendationService, seed) -> None:
        """Songs liked by neighbors outrank songs no neighbor liked."""
        await seed.songs(10, 20, 30, 40)
        await seed.like(1, 10)
        await seed.like(1, 20)
        for neighbor in (2, 3):
            await seed.like(neighbor, 10)
            await seed.like(neighbor, 30)

        entries = await service.generate_recommendations(1)

        assert _ids(entries) == [30, 40]
        assert entries[0].score == 2.0

    async def test_cold_start_is_popularity_without_dislikes(
        self, service: RecommendationService, seed
    ) -> None:
        await seed.song(1, stream_count=5)
        await seed.song(2, stream_count=9)
        await seed.song(3, stream_count=1)
        await seed.like(1, 2, is_like=False)

        entries = await service.generate_recommendations(1)

        assert _ids(entries) == [1, 3]

    async def test_no_neighbors_excludes_known_songs(
        self, service: RecommendationService, seed
    ) -> None:
        await seed.song(1, stream_count=50)
        await seed.song(2, stream_count=10)
        await seed.song(3, stream_count=1)
        await seed.like(1, 1)

        entries = await service.generate_recommendations(1)

        assert _ids(entries) == [2, 3]

    async def test_batch_is_capped_and_ordered(self, service: RecommendationService, seed) -> None:
        await seed.songs(*range(1, 26))

        entries = await service.generate_recommendations(1)

        assert len(entries) == 20
        assert [entry.display_order for entry in entries] == list(range(1, 21))
        assert len(set(_ids(entries))) == 20

    async def test_unplayable_songs_are_never_recommended(
        self, service: RecommendationService, seed
    ) -> None:
        await seed.song(1)
        await seed.song(2, is_album_cover=True, stream_count=100)
        await seed.song(3, is_active=False, stream_count=100)

        entries = await service.generate_recommendations(1)

        assert _ids(entries) == [1]

    async def test_blank_audio_songs_do_not_take_batch_slots(
        self, service: RecommendationService, seed
    ) -> None:
        for song_id in range(1, 6):
            await seed.song(song_id, audio_ref="  ", stream_count=1000)
        await seed.songs(*range(6, 31))

        entries = await service.generate_recommendations(1)

        assert len(entries) == 20
        assert _ids(entries) == list(range(6, 26))

    async def test_empty_catalog_stores_empty_batch(self, service: RecommendationService) -> None:
        assert await service.generate_recommendations(1) == []
        assert await service.get_cached_recommendations(1) == []


class TestCache:
    async def test_regeneration_replaces_whole_batch(
        self, service: RecommendationService, seed
    ) -> None:
        await seed.songs(1, 2, 3)
        await service.generate_recommendations(1)
        await seed.like(1, 1)
        await seed.like(1, 2)

        await service.generate_recommendations(1)

        cached = await service.get_cached_recommendations(1)
        assert _ids(cached) == [3]
        assert cached[0].display_order == 1
        assert cached[0].song is not None and cached[0].song.id == 3

    async def test_fresh_cache_is_reused_until_stale(
        self, session_factory, settings, seed, now
    ) -> None:
        clock = MovableClock(now)
        service = RecommendationService(session_factory, settings, clock=clock)
        await seed.song(1)
        first = await service.get_recommendations(1)
        await seed.song(2, stream_count=100)

        assert await service.has_fresh_recommendations(1) is True
        assert _ids(await service.get_recommendations(1)) == _ids(first) == [1]

        clock.advance(hours=settings.freshness_hours + 1)
        assert await service.has_fresh_recommendations(1) is False
        assert _ids(await service.get_recommendations(1)) == [2, 1]

    async def test_always_regenerate_ignores_cache(self, session_factory, seed, clock) -> None:
        service = RecommendationService(
            session_factory, RecommendationSettings(always_regenerate=True), clock=clock
        )
        await seed.song(1)
        await service.get_recommendations(1)
        await seed.song(2, stream_count=100)

        assert _ids(await service.get_recommendations(1)) == [2, 1]

    async def test_user_without_cache_is_not_fresh(self, service: RecommendationService) -> None:
        assert await service.has_fresh_recommendations(99) is False

    async def test_losing_concurrent_regeneration_returns_stored_batch(
        self, service: RecommendationService, seed, mocker
    ) -> None:
        await seed.songs(1, 2)
        stored = await service.generate_recommendations(1)
        mocker.patch.object(
            RecommendationRepository,
            "replace_for_user",
            side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
        )

        entries = await service.generate_recommendations(1)

        assert _ids(entries) == _ids(stored)


class TestSimilarityFallback:
    async def test_strategy_order(self, session_factory, settings, similarity) -> None:
        service = RecommendationService(session_factory, settings, similarity_client=similarity)
        assert [strategy.name for strategy in service.strategies] == [
            "similarity_service",
            "local_graph",
        ]

    async def test_external_candidates_are_revalidated(
        self, session_factory, settings, similarity, seed, clock
    ) -> None:
        await seed.songs(1, 3, 5)
        await seed.song(2, is_album_cover=True)
        await seed.like(7, 5, is_like=False)
        similarity.recommend.return_value = [
            ScoredSong(404, 0.99),
            ScoredSong(2, 0.9),
            ScoredSong(1, 0.8),
            ScoredSong(1, 0.7),
            ScoredSong(3, 0.5),
        ]
        service = RecommendationService(
            session_factory, settings, similarity_client=similarity, clock=clock
        )

        entries = await service.generate_recommendations(7)

        assert [(entry.song_id, entry.score) for entry in entries] == [(1, 0.8), (3, 0.5)]
        assert [entry.display_order for entry in entries] == [1, 2]
        similarity.recommend.assert_awaited_once_with(7, 20, frozenset({5}))

    async def test_timeout_falls_back_to_local(
        self, session_factory, settings, similarity, seed, clock
    ) -> None:
        """The similarity service timing out must not surface to the caller."""
        await seed.songs(*range(1, 31))
        similarity.recommend.side_effect = SimilarityServiceException(
            "timeout calling /rest/v1/rpc/get_recommendations"
        )
        service = RecommendationService(
            session_factory, settings, similarity_client=similarity, clock=clock
        )

        entries = await service.generate_recommendations(7)

        assert len(entries) == settings.max_results
        assert [entry.display_order for entry in entries] == list(range(1, 21))
        assert _ids(entries) == list(range(1, 21))

    async def test_only_unusable_external_songs_falls_back_to_local(
        self, session_factory, settings, similarity, seed, clock
    ) -> None:
        await seed.song(1)
        similarity.recommend.return_value = [ScoredSong(404, 1.0)]
        service = RecommendationService(
            session_factory, settings, similarity_client=similarity, clock=clock
        )

        assert _ids(await service.generate_recommendations(7)) == [1]


class TestAffinitySync:
    async def test_skipped_without_similarity_service(self, service: RecommendationService) -> None:
        result = await service.sync_affinity_data()
        assert result.skipped is True
        assert result.total == 0

    async def test_partial_failures_do_not_abort(
        self, session_factory, settings, similarity, seed, mocker
    ) -> None:
        await seed.song(10, title="Ten")
        await seed.song(20, title="Twenty")
        await seed.like(1, 10)
        await seed.like(1, 20, is_like=False)
        await seed.like(2, 10)

        def _embed(text: str) -> list[float]:
            if text == "Twenty":
                raise EmbeddingServiceException("HTTP 500 from /embeddings")
            return [0.1, 0.2]

        embeddings = mocker.AsyncMock(spec=IEmbeddingClient)
        embeddings.embed.side_effect = _embed
        similarity.upsert_affinity.side_effect = [
            None,
            SimilarityServiceException("/rest/v1/song_likes returned HTTP 503"),
            None,
        ]
        service = RecommendationService(
            session_factory,
            settings,
            similarity_client=similarity,
            embedding_client=embeddings,
        )

        result = await service.sync_affinity_data()

        assert (result.total, result.synced, result.failed) == (3, 2, 1)
        assert (result.embedded, result.embedding_failures) == (1, 1)
        assert embeddings.embed.await_count == 2
        calls = similarity.upsert_affinity.await_args_list
        assert [(call.args[0].user_id, call.args[0].song_id) for call in calls] == [
            (1, 10),
            (1, 20),
            (2, 10),
        ]
        assert calls[0].args[1] == [0.1, 0.2]
        assert calls[1].args[1] is None
