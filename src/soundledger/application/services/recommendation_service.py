"""Recommendation engine: cached, hybrid external/local ranking."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.application.services.recommendation_strategies import (
    LocalGraphStrategy,
    RecommendationContext,
    RecommendationStrategy,
    SimilarityServiceStrategy,
)
from soundledger.config.settings import RecommendationSettings
from soundledger.domain.entities import (
    RecommendationEntry,
    ScoredSong,
    Song,
    utc_now,
)
from soundledger.domain.exceptions import (
    EmbeddingServiceException,
    ExternalServiceException,
    SimilarityServiceException,
)
from soundledger.domain.ports import IEmbeddingClient, ISimilarityClient
from soundledger.infrastructure.persistence.repositories import (
    LikeRepository,
    RecommendationRepository,
    SongRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class AffinitySyncResult:
    """Outcome of one affinity export run."""

    total: int = 0
    synced: int = 0
    failed: int = 0
    embedded: int = 0
    embedding_failures: int = 0
    skipped: bool = False


class RecommendationService:
    """Per-user recommendations, regenerated wholesale.

    Hey future me - generation is split over THREE short sessions on purpose:
      1. read likes/dislikes, close
      2. ask the strategies (the external call holds NO connection; the local strategy
         opens its own)
      3. revalidate candidates against the catalog + delete/insert the cache, commit
    Step 3 is the only write and it's one transaction, so readers never see a mix of two
    generations. Two concurrent regenerations collide on (user_id, display_order); the
    loser rolls back and returns what the winner stored.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: RecommendationSettings,
        similarity_client: ISimilarityClient | None = None,
        embedding_client: IEmbeddingClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize recommendation service.

        Args:
            session_factory: Factory for creating DB sessions
            settings: Limits, freshness window and the always-regenerate switch
            similarity_client: External similarity service, None when not configured
            embedding_client: Embedding generator for affinity sync, optional
            clock: Returns "now" (tests inject a fixed clock)
        """
        self._session_factory = session_factory
        self.settings = settings
        self._similarity_client = similarity_client
        self._embedding_client = embedding_client
        self._clock = clock

        self._strategies: list[RecommendationStrategy] = []
        if similarity_client is not None:
            self._strategies.append(SimilarityServiceStrategy(similarity_client))
        self._strategies.append(LocalGraphStrategy(session_factory))

    @property
    def strategies(self) -> Sequence[RecommendationStrategy]:
        """Strategies in fallback order."""
        return tuple(self._strategies)

    def _fresh_since(self) -> datetime:
        return self._clock() - timedelta(hours=self.settings.freshness_hours)

    async def has_fresh_recommendations(self, user_id: int) -> bool:
        """True iff the user's cache was generated within the freshness window."""
        async with self._session_factory() as session:
            return await RecommendationRepository(session).has_generated_since(
                user_id, self._fresh_since()
            )

    async def get_cached_recommendations(self, user_id: int) -> list[RecommendationEntry]:
        """The cached batch as stored, fresh or not."""
        async with self._session_factory() as session:
            return await RecommendationRepository(session).list_for_user(user_id)

    async def get_recommendations(self, user_id: int) -> list[RecommendationEntry]:
        """Cached batch when fresh, otherwise a newly generated one."""
        if not self.settings.always_regenerate and await self.has_fresh_recommendations(
            user_id
        ):
            return await self.get_cached_recommendations(user_id)
        return await self.generate_recommendations(user_id)

    async def generate_recommendations(self, user_id: int) -> list[RecommendationEntry]:
        """Regenerate and store the user's recommendations.

        Never raises because of the external service; persistence errors propagate.
        """
        async with self._session_factory() as session:
            likes = LikeRepository(session)
            liked = await likes.list_song_ids(user_id, is_like=True)
            disliked = await likes.list_song_ids(user_id, is_like=False)

        context = RecommendationContext(
            user_id=user_id,
            liked_ids=frozenset(liked),
            disliked_ids=frozenset(disliked),
            limit=self.settings.max_results,
        )

        last_index = len(self._strategies) - 1
        for index, strategy in enumerate(self._strategies):
            try:
                candidates = await strategy.recommend(context)
            except ExternalServiceException as e:
                logger.warning(
                    "Strategy %s failed for user %s, falling back: %s",
                    strategy.name,
                    user_id,
                    e.message,
                )
                continue

            entries = await self._store_batch(
                user_id, candidates, allow_empty=index == last_index
            )
            if entries is not None:
                logger.info(
                    "Generated %d recommendations for user %s via %s",
                    len(entries),
                    user_id,
                    strategy.name,
                )
                return entries

            logger.info(
                "Strategy %s returned no usable songs for user %s, falling back",
                strategy.name,
                user_id,
            )

        # Only reachable when the last strategy itself raised
        return await self._store_batch(user_id, [], allow_empty=True) or []

    @staticmethod
    def _revalidate(
        candidates: Sequence[ScoredSong], songs: dict[int, Song], limit: int
    ) -> list[tuple[ScoredSong, Song]]:
        survivors: list[tuple[ScoredSong, Song]] = []
        seen: set[int] = set()
        for candidate in candidates:
            song = songs.get(candidate.song_id)
            if song is None or not song.is_playable or candidate.song_id in seen:
                continue
            seen.add(candidate.song_id)
            survivors.append((candidate, song))
            if len(survivors) >= limit:
                break
        return survivors

    async def _store_batch(
        self, user_id: int, candidates: Sequence[ScoredSong], allow_empty: bool
    ) -> list[RecommendationEntry] | None:
        """Revalidate candidates and atomically replace the user's cache.

        Returns None (nothing written) when no candidate survives and allow_empty
        is False, so the caller can try the next strategy.
        """
        generated_at = self._clock()

        async with self._session_factory() as session:
            songs = await SongRepository(session).get_many(
                {candidate.song_id for candidate in candidates}
            )
            survivors = self._revalidate(candidates, songs, self.settings.max_results)
            dropped = len(candidates) - len(survivors)
            if dropped:
                logger.debug(
                    "Dropped %d candidates for user %s (missing, unplayable or duplicate)",
                    dropped,
                    user_id,
                )
            if not survivors and not allow_empty:
                return None

            entries = [
                RecommendationEntry(
                    user_id=user_id,
                    song_id=candidate.song_id,
                    display_order=position,
                    score=candidate.score,
                    generated_at=generated_at,
                    song=song,
                )
                for position, (candidate, song) in enumerate(survivors, start=1)
            ]

            try:
                await RecommendationRepository(session).replace_for_user(user_id, entries)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Concurrent regeneration for user %s won, returning its batch",
                    user_id,
                )
                return await self.get_cached_recommendations(user_id)

        return entries

    async def sync_affinity_data(self) -> AffinitySyncResult:
        """Export the whole like ledger to the similarity service, best effort.

        Hey future me - nothing in here may abort the batch. A missing embedding just
        means the row goes out without one; a failed upsert is logged and counted.
        """
        if self._similarity_client is None:
            logger.warning("Similarity service not configured, skipping affinity sync")
            return AffinitySyncResult(skipped=True)

        async with self._session_factory() as session:
            rows = await LikeRepository(session).list_all_with_songs()

        result = AffinitySyncResult(total=len(rows))

        embeddings: dict[int, list[float]] = {}
        if self._embedding_client is not None:
            songs_by_id = {song.id: song for _like, song in rows if song is not None}
            for song_id, song in songs_by_id.items():
                try:
                    embeddings[song_id] = await self._embedding_client.embed(
                        song.embedding_text()
                    )
                    result.embedded += 1
                except EmbeddingServiceException as e:
                    result.embedding_failures += 1
                    logger.warning(
                        "No embedding for song %s, syncing without it: %s",
                        song_id,
                        e.message,
                    )

        for like, _song in rows:
            try:
                await self._similarity_client.upsert_affinity(
                    like, embeddings.get(like.song_id)
                )
                result.synced += 1
            except SimilarityServiceException as e:
                result.failed += 1
                logger.warning(
                    "Affinity upsert failed for user %s song %s: %s",
                    like.user_id,
                    like.song_id,
                    e.message,
                )

        logger.info(
            "Affinity sync finished: %d/%d rows synced, %d failed, %d embedded",
            result.synced,
            result.total,
            result.failed,
            result.embedded,
        )
        return result
