"""Like / dislike toggles on the like ledger."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.application.services.liked_songs_service import LikedSongsService
from soundledger.domain.entities import Like, LikeState, next_like_state, utc_now
from soundledger.domain.exceptions import InvalidReferenceException
from soundledger.infrastructure.persistence.repositories import (
    LikeRepository,
    SongRepository,
)

logger = logging.getLogger(__name__)


class LikeService:
    """Service for the like/dislike buttons.

    Hey future me - the state machine lives in next_like_state(); this class only maps
    states onto the ledger row: UNSET = no row, LIKED = is_like True, DISLIKED = False.
    If a reconciler is passed, the Liked Songs playlist is synced after every toggle
    that touched the LIKED state (dislike -> unset doesn't change the playlist).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        liked_songs: LikedSongsService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._liked_songs = liked_songs
        self._clock = clock

    async def toggle_like(self, user_id: int, song_id: int) -> LikeState:
        """Press the like button. Returns the new state."""
        return await self._toggle(user_id, song_id, LikeState.LIKED)

    async def toggle_dislike(self, user_id: int, song_id: int) -> LikeState:
        """Press the dislike button. Returns the new state."""
        return await self._toggle(user_id, song_id, LikeState.DISLIKED)

    async def _toggle(self, user_id: int, song_id: int, pressed: LikeState) -> LikeState:
        async with self._session_factory() as session:
            likes = LikeRepository(session)

            if await SongRepository(session).get_by_id(song_id) is None:
                raise InvalidReferenceException("Song", song_id)

            existing = await likes.get(user_id, song_id)
            now = self._clock()
            previous_state = LikeState.UNSET
            new_state = next_like_state(previous_state, pressed)

            if existing is None:
                created = await likes.add(
                    Like(
                        user_id=user_id,
                        song_id=song_id,
                        is_like=new_state is LikeState.LIKED,
                        created_at=now,
                        updated_at=now,
                    )
                )
                if not created:
                    # Lost a race against another toggle, apply ours on top of theirs
                    existing = await likes.get(user_id, song_id)

            if existing is not None:
                previous_state = existing.state
                new_state = next_like_state(previous_state, pressed)
                if new_state is LikeState.UNSET:
                    await likes.delete(user_id, song_id)
                else:
                    existing.is_like = new_state is LikeState.LIKED
                    existing.updated_at = now
                    await likes.update(existing)

            await session.commit()

        logger.debug(
            "User %s song %s: %s -> %s",
            user_id,
            song_id,
            previous_state.value,
            new_state.value,
        )

        if self._liked_songs is not None and LikeState.LIKED in (
            previous_state,
            new_state,
        ):
            await self._liked_songs.sync_liked_playlist(user_id)

        return new_state

    async def get_like_state(self, user_id: int, song_id: int) -> LikeState:
        """Current state of a (user, song) pair."""
        async with self._session_factory() as session:
            like = await LikeRepository(session).get(user_id, song_id)
        return like.state if like else LikeState.UNSET

    async def get_like_counts(self, song_id: int) -> tuple[int, int]:
        """(likes, dislikes) of a song."""
        async with self._session_factory() as session:
            return await LikeRepository(session).count_for_song(song_id)
