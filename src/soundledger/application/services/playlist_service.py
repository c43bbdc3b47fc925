"""Playlist management service."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.application.services.access_service import AccessResolver
from soundledger.domain.entities import AccessOutcome, Playlist, Song, utc_now
from soundledger.domain.exceptions import (
    InvalidReferenceException,
    InvalidStateException,
    ValidationException,
)
from soundledger.domain.ports import IPlaylistRepository
from soundledger.infrastructure.persistence.repositories import (
    PlaylistRepository,
    SongRepository,
)

logger = logging.getLogger(__name__)

MAX_PLAYLIST_NAME_LENGTH = 100


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationException("Playlist name must not be empty")
    if len(cleaned) > MAX_PLAYLIST_NAME_LENGTH:
        raise ValidationException(
            f"Playlist name must be at most {MAX_PLAYLIST_NAME_LENGTH} characters"
        )
    return cleaned


class PlaylistService:
    """Service for user playlist operations.

    Hey future me - system playlists (Liked Songs) are owned by the reconciler. Users can
    list and read them like any other playlist, but rename/delete/add/remove through
    this service are refused with InvalidStateException. Songs only get in through the
    access resolver, so a playlist never holds a song the user can't stream.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize playlist service.

        Args:
            session_factory: Factory for creating DB sessions
            clock: Returns "now" (tests inject a fixed clock)
        """
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    async def _get_owned(
        playlists: IPlaylistRepository, owner_id: int, playlist_id: int
    ) -> Playlist:
        playlist = await playlists.get_by_id(playlist_id)
        # Someone else's playlist is reported exactly like a missing one
        if playlist is None or playlist.owner_id != owner_id:
            raise InvalidReferenceException("Playlist", playlist_id)
        return playlist

    @staticmethod
    def _require_user_managed(playlist: Playlist) -> None:
        if playlist.is_system_generated:
            raise InvalidStateException(
                f"Playlist {playlist.id} is managed by the system and can't be changed"
            )

    async def list_playlists(self, owner_id: int) -> list[Playlist]:
        """All playlists of a user, system playlists included."""
        async with self._session_factory() as session:
            return await PlaylistRepository(session).list_for_owner(owner_id)

    async def create_playlist(self, owner_id: int, name: str) -> Playlist:
        """Create a user playlist.

        Raises:
            ValidationException: If the name is empty or too long
        """
        cleaned = _clean_name(name)
        now = self._clock()
        async with self._session_factory() as session:
            playlist = await PlaylistRepository(session).add(
                Playlist(
                    id=0,
                    owner_id=owner_id,
                    name=cleaned,
                    is_system_generated=False,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        logger.info("Created playlist %s for user %s", playlist.id, owner_id)
        return playlist

    async def rename_playlist(self, owner_id: int, playlist_id: int, name: str) -> Playlist:
        """Rename a user playlist.

        Raises:
            ValidationException: Bad name
            InvalidReferenceException: Unknown playlist (or not the owner's)
            InvalidStateException: System playlist
        """
        cleaned = _clean_name(name)
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            playlist = await self._get_owned(playlists, owner_id, playlist_id)
            self._require_user_managed(playlist)
            await playlists.rename(playlist_id, cleaned)
            renamed = await playlists.get_by_id(playlist_id)
            await session.commit()

        if renamed is None:
            raise InvalidReferenceException("Playlist", playlist_id)
        return renamed

    async def delete_playlist(self, owner_id: int, playlist_id: int) -> None:
        """Delete a user playlist and its memberships. Ownership records stay."""
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            playlist = await self._get_owned(playlists, owner_id, playlist_id)
            self._require_user_managed(playlist)
            await playlists.delete(playlist_id)
            await session.commit()

        logger.info("Deleted playlist %s of user %s", playlist_id, owner_id)

    async def list_playlist_songs(self, owner_id: int, playlist_id: int) -> list[Song]:
        """Songs of a playlist in insertion order; unknown playlist gives []."""
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            playlist = await playlists.get_by_id(playlist_id)
            if playlist is None or playlist.owner_id != owner_id:
                return []

            memberships = await playlists.list_memberships(playlist_id)
            songs = await SongRepository(session).get_many(
                [membership.song_id for membership in memberships]
            )

        return [
            songs[membership.song_id]
            for membership in memberships
            if membership.song_id in songs
        ]

    async def add_song(self, owner_id: int, playlist_id: int, song_id: int) -> bool:
        """Add a song the user may access. False if it was already in the playlist.

        Raises:
            InvalidReferenceException: Unknown playlist, or a song the user can't
                access (missing and forbidden songs look the same from outside)
            InvalidStateException: System playlist
        """
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            playlist = await self._get_owned(playlists, owner_id, playlist_id)
            self._require_user_managed(playlist)

            resolver = AccessResolver.for_session(session, self._clock)
            outcome, record = await resolver.resolve(owner_id, song_id)
            if not outcome.allowed or record is None or record.id is None:
                logger.debug(
                    "Refused adding song %s to playlist %s: %s",
                    song_id,
                    playlist_id,
                    outcome.value,
                )
                raise InvalidReferenceException("Song", song_id)

            added = await playlists.add_memberships(playlist_id, [record.id])
            await session.commit()

        if outcome is AccessOutcome.GRANTED:
            logger.debug("Song %s granted to user %s while adding", song_id, owner_id)
        return added == 1

    async def remove_song(self, owner_id: int, playlist_id: int, song_id: int) -> bool:
        """Remove a song from a user playlist. False if it wasn't there."""
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            playlist = await self._get_owned(playlists, owner_id, playlist_id)
            self._require_user_managed(playlist)

            members = await playlists.member_song_ids(playlist_id)
            membership_id = members.get(song_id)
            if membership_id is None:
                return False

            removed = await playlists.remove_memberships([membership_id])
            await session.commit()

        return removed == 1
