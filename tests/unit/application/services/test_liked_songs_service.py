"""Tests for the Liked Songs reconciliation."""

import pytest

from soundledger.application.services import (
    LIKED_SONGS_KEY,
    LIKED_SONGS_NAME,
    LikedSongsService,
)
from soundledger.domain.entities import Provenance
from soundledger.infrastructure.persistence import LikeRepository
from soundledger.infrastructure.persistence.models import PlaylistModel


@pytest.fixture
def service(session_factory, clock) -> LikedSongsService:
    return LikedSongsService(session_factory, clock=clock)


class TestLikedPlaylist:
    async def test_created_once_per_user(self, service: LikedSongsService, seed) -> None:
        first = await service.get_or_create_liked_playlist(7)
        second = await service.get_or_create_liked_playlist(7)

        assert first.id == second.id
        assert first.name == LIKED_SONGS_NAME
        assert first.system_key == LIKED_SONGS_KEY
        assert first.is_system_generated is True
        assert await seed.count(PlaylistModel) == 1


class TestSyncLikedPlaylist:
    async def test_adds_liked_songs_through_subscription(
        self, service: LikedSongsService, seed
    ) -> None:
        await seed.songs(1, 2, 3)
        await seed.subscription(7)
        await seed.like(7, 1)
        await seed.like(7, 2)
        await seed.like(7, 3, is_like=False)

        result = await service.sync_liked_playlist(7)

        assert result.playlist_created is True
        assert (result.added, result.removed, result.skipped) == (2, 0, 0)
        assert await seed.member_song_ids(result.playlist_id) == {1, 2}
        records = await seed.ownerships(7)
        assert set(records) == {1, 2}
        assert records[1].provenance is Provenance.SUBSCRIPTION

    async def test_second_run_writes_nothing(
        self, service: LikedSongsService, seed, write_statements
    ) -> None:
        """Back-to-back reconciliations: the second one must not touch the db."""
        await seed.songs(1, 2)
        await seed.subscription(7)
        await seed.like(7, 1)
        await seed.like(7, 2)
        await service.sync_liked_playlist(7)
        write_statements.clear()

        result = await service.sync_liked_playlist(7)

        assert result.changed is False
        assert write_statements == []

    async def test_removes_unliked_songs_but_keeps_ownership(
        self, service: LikedSongsService, seed, session_factory
    ) -> None:
        await seed.songs(1, 2)
        await seed.ownership(7, 1, Provenance.PURCHASED)
        await seed.ownership(7, 2, Provenance.PURCHASED)
        await seed.like(7, 1)
        await seed.like(7, 2)
        first = await service.sync_liked_playlist(7)

        async with session_factory() as session:
            await LikeRepository(session).delete(7, 1)
            await session.commit()
        result = await service.sync_liked_playlist(7)

        assert result.removed == 1
        assert await seed.member_song_ids(first.playlist_id) == {2}
        assert set(await seed.ownerships(7)) == {1, 2}

    async def test_inaccessible_likes_are_skipped(
        self, service: LikedSongsService, seed
    ) -> None:
        await seed.songs(1, 2)
        await seed.song(3, is_album_cover=True)
        await seed.ownership(7, 1, Provenance.PURCHASED)
        # no subscription: 2 is not accessible, 3 is never playable
        await seed.like(7, 1)
        await seed.like(7, 2)
        await seed.like(7, 3)

        result = await service.sync_liked_playlist(7)

        assert (result.added, result.skipped) == (1, 2)
        assert await seed.member_song_ids(result.playlist_id) == {1}
        assert set(await seed.ownerships(7)) == {1}

    async def test_skipped_song_is_added_once_access_exists(
        self, service: LikedSongsService, seed
    ) -> None:
        await seed.song(1)
        await seed.like(7, 1)
        first = await service.sync_liked_playlist(7)
        assert first.skipped == 1

        await seed.subscription(7)
        second = await service.sync_liked_playlist(7)

        assert second.added == 1
        assert await seed.member_song_ids(second.playlist_id) == {1}

    async def test_users_are_isolated(self, service: LikedSongsService, seed) -> None:
        await seed.songs(1, 2)
        await seed.subscription(7)
        await seed.subscription(8)
        await seed.like(7, 1)
        await seed.like(8, 2)

        mine = await service.sync_liked_playlist(7)
        theirs = await service.sync_liked_playlist(8)

        assert mine.playlist_id != theirs.playlist_id
        assert await seed.member_song_ids(mine.playlist_id) == {1}
        assert await seed.member_song_ids(theirs.playlist_id) == {2}
