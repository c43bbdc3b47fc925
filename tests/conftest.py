"""Shared fixtures: a throwaway SQLite database, a fixed clock and a seeding helper.

Hey future me - tests use a FILE-backed SQLite db under tmp_path, not :memory:. Every
service opens its own session, and with :memory: each connection would see its own
empty database.
"""

from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.config import DatabaseSettings
from soundledger.domain.entities import (
    Like,
    OwnershipRecord,
    Playlist,
    Provenance,
    Song,
    Subscription,
    SubscriptionStatus,
)
from soundledger.infrastructure.persistence import (
    Database,
    LikeRepository,
    OwnershipRepository,
    PlaylistRepository,
    SongRepository,
    SubscriptionRepository,
)
from soundledger.infrastructure.persistence.models import Base

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


class Seeder:
    """Writes fixture rows through the real repositories, one commit per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def song(
        self,
        song_id: int,
        *,
        title: str | None = None,
        stream_count: int = 0,
        is_album_cover: bool = False,
        audio_ref: str | None = "",
        is_active: bool = True,
        album_name: str | None = None,
        genre: str | None = None,
    ) -> Song:
        # "" means "give it a default audio blob", None means "no audio"
        if audio_ref == "":
            audio_ref = f"audio/{song_id}.mp3"
        async with self._session_factory() as session:
            song = await SongRepository(session).add(
                Song(
                    id=song_id,
                    title=title,
                    stream_count=stream_count,
                    is_album_cover=is_album_cover,
                    audio_ref=audio_ref,
                    is_active=is_active,
                    album_name=album_name,
                    genre=genre,
                )
            )
            await session.commit()
        return song

    async def songs(self, *song_ids: int, **kwargs: Any) -> list[Song]:
        return [await self.song(song_id, **kwargs) for song_id in song_ids]

    async def like(self, user_id: int, song_id: int, is_like: bool = True) -> None:
        async with self._session_factory() as session:
            await LikeRepository(session).add(
                Like(
                    user_id=user_id,
                    song_id=song_id,
                    is_like=is_like,
                    created_at=NOW,
                    updated_at=NOW,
                )
            )
            await session.commit()

    async def subscription(
        self,
        user_id: int,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        end_date: datetime | None = None,
        start_date: datetime | None = None,
    ) -> Subscription:
        async with self._session_factory() as session:
            subscription = await SubscriptionRepository(session).add(
                Subscription(
                    user_id=user_id,
                    status=status,
                    start_date=start_date or NOW - timedelta(days=30),
                    end_date=end_date,
                )
            )
            await session.commit()
        return subscription

    async def ownership(
        self,
        user_id: int,
        song_id: int,
        provenance: Provenance = Provenance.PURCHASED,
        order_reference: str | None = None,
    ) -> OwnershipRecord:
        async with self._session_factory() as session:
            record = await OwnershipRepository(session).add(
                OwnershipRecord(
                    user_id=user_id,
                    song_id=song_id,
                    provenance=provenance,
                    order_reference=order_reference,
                    acquired_at=NOW,
                )
            )
            await session.commit()
        return record

    async def playlist(
        self, owner_id: int, name: str = "Road trip", system_key: str | None = None
    ) -> Playlist:
        async with self._session_factory() as session:
            playlist = await PlaylistRepository(session).add(
                Playlist(
                    id=0,
                    owner_id=owner_id,
                    name=name,
                    is_system_generated=system_key is not None,
                    system_key=system_key,
                )
            )
            await session.commit()
        return playlist

    async def membership(self, playlist_id: int, ownership_id: int) -> None:
        async with self._session_factory() as session:
            await PlaylistRepository(session).add_memberships(playlist_id, [ownership_id])
            await session.commit()

    async def ownerships(self, user_id: int) -> dict[int, OwnershipRecord]:
        """Current ownership records of a user keyed by song id."""
        async with self._session_factory() as session:
            records = await OwnershipRepository(session).list_for_user(user_id)
        return {record.song_id: record for record in records}

    async def member_song_ids(self, playlist_id: int) -> set[int]:
        async with self._session_factory() as session:
            return set(await PlaylistRepository(session).member_song_ids(playlist_id))

    async def count(self, model: type[Base]) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())


@pytest.fixture
async def db(tmp_path) -> AsyncIterator[Database]:
    """Fresh database with all tables."""
    database = Database(
        DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'soundledger.db'}")
    )
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def session_factory(db: Database) -> async_sessionmaker[AsyncSession]:
    return db.session_factory


@pytest.fixture
def now() -> datetime:
    """The instant every test runs "at"."""
    return NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    """Fixed "now" so entitlement and freshness checks are deterministic."""
    return lambda: now


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def write_statements(db: Database) -> Iterator[list[str]]:
    """Collects every INSERT/UPDATE/DELETE the engine executes."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001
        if statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE")):
            statements.append(statement)

    event.listen(db.engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(db.engine.sync_engine, "before_cursor_execute", _record)
