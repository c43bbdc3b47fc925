"""Liked Songs reconciliation.

Hey future me - every user has exactly ONE system playlist "Liked Songs" (system_key
"liked_songs"). Its membership must equal "songs I currently like AND may access".
sync_liked_playlist() computes the diff and applies it in one transaction:

    target  = liked song ids
    current = song ids in the playlist
    add     = target - current   (only where access can be established, else skip)
    remove  = current - target

Running it twice in a row writes nothing the second time: both diffs are empty and the
bulk helpers return early on empty input. Concurrent runs for the same user are safe
because duplicate memberships hit the (playlist, ownership) constraint and are ignored.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.application.services.access_service import AccessResolver
from soundledger.domain.entities import Playlist, utc_now
from soundledger.infrastructure.persistence.repositories import (
    LikeRepository,
    PlaylistRepository,
)

logger = logging.getLogger(__name__)

LIKED_SONGS_KEY = "liked_songs"
LIKED_SONGS_NAME = "Liked Songs"


@dataclass
class LikedSongsSyncResult:
    """Outcome of one reconciliation run."""

    playlist_id: int
    added: int = 0
    removed: int = 0
    skipped: int = 0
    playlist_created: bool = False

    @property
    def changed(self) -> bool:
        return self.playlist_created or self.added > 0 or self.removed > 0


class LikedSongsService:
    """Keeps each user's Liked Songs playlist in line with their likes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize reconciler.

        Args:
            session_factory: Factory for creating DB sessions
            clock: Returns "now" (tests inject a fixed clock)
        """
        self._session_factory = session_factory
        self._clock = clock

    async def get_or_create_liked_playlist(self, user_id: int) -> Playlist:
        """Resolve-or-create the user's Liked Songs playlist."""
        async with self._session_factory() as session:
            playlist, created = await PlaylistRepository(session).get_or_create_system(
                user_id, LIKED_SONGS_KEY, LIKED_SONGS_NAME
            )
            await session.commit()

        if created:
            logger.info("Created Liked Songs playlist %s for user %s", playlist.id, user_id)
        return playlist

    async def sync_liked_playlist(self, user_id: int) -> LikedSongsSyncResult:
        """Reconcile the Liked Songs playlist with the user's current likes.

        Songs the user liked but can't access (no purchase, no entitlement, not
        playable, gone from the catalog) are skipped silently and counted.
        """
        async with self._session_factory() as session:
            playlists = PlaylistRepository(session)
            likes = LikeRepository(session)
            resolver = AccessResolver.for_session(session, self._clock)

            playlist, created = await playlists.get_or_create_system(
                user_id, LIKED_SONGS_KEY, LIKED_SONGS_NAME
            )
            result = LikedSongsSyncResult(playlist_id=playlist.id, playlist_created=created)

            target = set(await likes.list_song_ids(user_id, is_like=True))
            current = await playlists.member_song_ids(playlist.id)

            to_add = target - current.keys()
            stale_membership_ids = [
                membership_id
                for song_id, membership_id in current.items()
                if song_id not in target
            ]

            if to_add:
                ownerships = await resolver.ensure_ownerships(user_id, to_add)
                result.skipped = len(to_add) - len(ownerships)
                result.added = await playlists.add_memberships(
                    playlist.id,
                    [record.id for record in ownerships.values() if record.id is not None],
                )

            result.removed = await playlists.remove_memberships(stale_membership_ids)

            await session.commit()

        if result.changed or result.skipped:
            logger.info(
                "Liked Songs sync for user %s: +%d -%d (skipped %d)",
                user_id,
                result.added,
                result.removed,
                result.skipped,
            )
        return result
