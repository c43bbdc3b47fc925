"""Candidate sources for the recommendation engine.

Hey future me - there are exactly two strategies and they are tried in a fixed order:

    SimilarityServiceStrategy  (only if the external service is configured)
    LocalGraphStrategy         (always, never depends on the network)

A strategy only PROPOSES (song_id, score) pairs. It doesn't validate against the catalog
and doesn't persist anything; RecommendationService does both for whatever the winning
strategy returned.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.domain.entities import ScoredSong
from soundledger.domain.ports import ISimilarityClient
from soundledger.infrastructure.persistence.repositories import (
    LikeRepository,
    SongRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecommendationContext:
    """What a strategy knows about the user it recommends for."""

    user_id: int
    liked_ids: frozenset[int]
    disliked_ids: frozenset[int]
    limit: int

    @property
    def known_ids(self) -> frozenset[int]:
        """Songs the user already expressed an opinion on."""
        return self.liked_ids | self.disliked_ids


class RecommendationStrategy(ABC):
    """One source of recommendation candidates."""

    name: str = "strategy"

    @abstractmethod
    async def recommend(self, context: RecommendationContext) -> list[ScoredSong]:
        """Propose up to context.limit candidates, best first.

        May raise ExternalServiceException; the caller falls back to the next strategy.
        """
        pass


class SimilarityServiceStrategy(RecommendationStrategy):
    """Candidates from the external similarity service."""

    name = "similarity_service"

    def __init__(self, client: ISimilarityClient) -> None:
        self._client = client

    async def recommend(self, context: RecommendationContext) -> list[ScoredSong]:
        return await self._client.recommend(
            context.user_id, context.limit, context.disliked_ids
        )


class LocalGraphStrategy(RecommendationStrategy):
    """Collaborative "neighbors liked it too" ranking, padded by popularity.

    Hey future me - the rules:
      - no likes: pure popularity (2 * distinct likers + stream count), disliked excluded
      - likes but no neighbors: same popularity ranking, liked + disliked excluded
      - neighbors: songs liked by neighbors scored by distinct-neighbor count, liked +
        disliked excluded; if that's short of the limit, popularity fills the rest
    Both rankings break ties by stream count desc, then song id asc, in SQL.
    """

    name = "local_graph"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def recommend(self, context: RecommendationContext) -> list[ScoredSong]:
        async with self._session_factory() as session:
            songs = SongRepository(session)
            likes = LikeRepository(session)

            if not context.liked_ids:
                return await songs.rank_by_popularity(
                    context.disliked_ids, context.limit
                )

            neighbors = await likes.find_neighbors(context.user_id, context.liked_ids)
            if not neighbors:
                logger.debug(
                    "User %s has no neighbors, ranking by popularity", context.user_id
                )
                return await songs.rank_by_popularity(context.known_ids, context.limit)

            selected = await likes.score_neighbor_songs(
                neighbors, context.known_ids, context.limit
            )
            missing = context.limit - len(selected)
            if missing > 0:
                already = {candidate.song_id for candidate in selected}
                selected += await songs.rank_by_popularity(
                    context.known_ids | already, missing
                )
            return selected
