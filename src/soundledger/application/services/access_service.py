"""Ownership & access resolution.

Hey future me - this is the ONE place that decides "may this user stream / playlist this
song?". Three sources of truth feed it:
  1. the ownership ledger (purchases + already materialized subscription grants)
  2. the catalog (song must exist and be playable)
  3. subscription state (entitled right now?)

An entitled user who doesn't own a song yet gets a SUBSCRIPTION ownership record created
on the spot ("lazy materialization"). The cleanup sweep revokes those after a lapse.
PURCHASED records are never touched by anything here except the upgrade in
record_purchase().
"""

import logging
from collections.abc import Callable, Collection
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.domain.entities import (
    AccessibleSong,
    AccessOutcome,
    OwnershipRecord,
    Provenance,
    utc_now,
)
from soundledger.domain.exceptions import InvalidReferenceException
from soundledger.domain.ports import (
    IOwnershipRepository,
    IPlaylistRepository,
    ISongRepository,
    ISubscriptionRepository,
)
from soundledger.infrastructure.persistence.repositories import (
    OwnershipRepository,
    PlaylistRepository,
    SongRepository,
    SubscriptionRepository,
)

logger = logging.getLogger(__name__)


class AccessResolver:
    """Access rules on top of repositories bound to ONE session.

    Doesn't commit - callers own the transaction. The reconciler and the playlist
    service reuse it inside their own units of work.
    """

    def __init__(
        self,
        songs: ISongRepository,
        ownerships: IOwnershipRepository,
        subscriptions: ISubscriptionRepository,
        playlists: IPlaylistRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.songs = songs
        self.ownerships = ownerships
        self.subscriptions = subscriptions
        self.playlists = playlists
        self._clock = clock

    @classmethod
    def for_session(
        cls, session: AsyncSession, clock: Callable[[], datetime] = utc_now
    ) -> "AccessResolver":
        """Build a resolver with SQLAlchemy repositories on the given session."""
        return cls(
            songs=SongRepository(session),
            ownerships=OwnershipRepository(session),
            subscriptions=SubscriptionRepository(session),
            playlists=PlaylistRepository(session),
            clock=clock,
        )

    async def is_entitled(self, user_id: int) -> bool:
        """Does the user hold a currently entitling subscription?"""
        return await self.subscriptions.get_active(user_id, self._clock()) is not None

    async def resolve(
        self, user_id: int, song_id: int
    ) -> tuple[AccessOutcome, OwnershipRecord | None]:
        """Resolve access, materializing a subscription grant when entitled.

        Returns:
            (outcome, ownership record backing the access or None)
        """
        existing = await self.ownerships.get(user_id, song_id)
        if existing is not None:
            return AccessOutcome.OWNED, existing

        song = await self.songs.get_by_id(song_id)
        if song is None:
            return AccessOutcome.NOT_FOUND, None
        if not song.is_playable:
            return AccessOutcome.NOT_PLAYABLE, None
        if not await self.is_entitled(user_id):
            return AccessOutcome.NOT_ENTITLED, None

        record = await self.ownerships.add(
            OwnershipRecord(
                user_id=user_id,
                song_id=song_id,
                provenance=Provenance.SUBSCRIPTION,
                acquired_at=self._clock(),
            )
        )
        logger.debug("Granted song %s to user %s via subscription", song_id, user_id)
        return AccessOutcome.GRANTED, record

    async def ensure_ownerships(
        self, user_id: int, song_ids: Collection[int]
    ) -> dict[int, OwnershipRecord]:
        """Bulk resolve: ownership records for every accessible song in `song_ids`.

        Missing grants for playable songs are materialized in ONE batch insert when the
        user is entitled. Songs that can't be accessed are simply absent from the result.
        """
        if not song_ids:
            return {}

        records = await self.ownerships.get_many(user_id, song_ids)
        missing = set(song_ids) - records.keys()
        if not missing or not await self.is_entitled(user_id):
            return records

        songs = await self.songs.get_many(missing)
        grantable = sorted(song_id for song_id, song in songs.items() if song.is_playable)
        if not grantable:
            return records

        now = self._clock()
        await self.ownerships.add_many(
            [
                OwnershipRecord(
                    user_id=user_id,
                    song_id=song_id,
                    provenance=Provenance.SUBSCRIPTION,
                    acquired_at=now,
                )
                for song_id in grantable
            ]
        )
        records.update(await self.ownerships.get_many(user_id, grantable))
        return records

    async def list_accessible(
        self, user_id: int, excluding_playlist_id: int | None = None
    ) -> list[AccessibleSong]:
        """All accessible playable songs not already in the given playlist."""
        members: Collection[int] = ()
        if excluding_playlist_id is not None:
            members = (await self.playlists.member_song_ids(excluding_playlist_id)).keys()

        owned = {
            record.song_id: record
            for record in await self.ownerships.list_for_user(user_id)
        }

        if await self.is_entitled(user_id):
            # Hey future me - ONE insert for the whole catalog, never a loop of resolve()
            # calls. A 10k song catalog would otherwise mean 10k round trips.
            ungranted = await self.songs.list_playable(
                exclude_ids=set(owned) | set(members)
            )
            if ungranted:
                now = self._clock()
                inserted = await self.ownerships.add_many(
                    [
                        OwnershipRecord(
                            user_id=user_id,
                            song_id=song.id,
                            provenance=Provenance.SUBSCRIPTION,
                            acquired_at=now,
                        )
                        for song in ungranted
                    ]
                )
                logger.info(
                    "Materialized %d subscription grants for user %s", inserted, user_id
                )
                owned = {
                    record.song_id: record
                    for record in await self.ownerships.list_for_user(user_id)
                }

        candidate_ids = set(owned) - set(members)
        songs = await self.songs.get_many(candidate_ids)
        return [
            AccessibleSong(song=songs[song_id], ownership=owned[song_id])
            for song_id in sorted(candidate_ids)
            if song_id in songs and songs[song_id].is_playable
        ]


class AccessService:
    """Session-owning facade over AccessResolver.

    Every call opens its own short-lived session and commits before returning.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize access service.

        Args:
            session_factory: Factory for creating DB sessions
            clock: Returns "now" (tests inject a fixed clock)
        """
        self._session_factory = session_factory
        self._clock = clock

    async def resolve_access(self, user_id: int, song_id: int) -> AccessOutcome:
        """Resolve access and report the internal reason."""
        async with self._session_factory() as session:
            resolver = AccessResolver.for_session(session, self._clock)
            outcome, _record = await resolver.resolve(user_id, song_id)
            await session.commit()

        if not outcome.allowed:
            logger.debug(
                "Access denied for user %s to song %s: %s",
                user_id,
                song_id,
                outcome.value,
            )
        return outcome

    async def can_access(self, user_id: int, song_id: int) -> bool:
        """May the user stream this song? Missing songs are just "no"."""
        return (await self.resolve_access(user_id, song_id)).allowed

    async def list_accessible_catalog(
        self, user_id: int, excluding_playlist_id: int | None = None
    ) -> list[AccessibleSong]:
        """Songs the user may add to the given playlist (members excluded)."""
        async with self._session_factory() as session:
            resolver = AccessResolver.for_session(session, self._clock)
            accessible = await resolver.list_accessible(user_id, excluding_playlist_id)
            await session.commit()
        return accessible

    async def record_purchase(
        self, user_id: int, song_id: int, order_reference: str | None = None
    ) -> OwnershipRecord:
        """Record a purchase, upgrading an existing subscription grant.

        Raises:
            InvalidReferenceException: If the song doesn't exist
        """
        async with self._session_factory() as session:
            songs = SongRepository(session)
            ownerships = OwnershipRepository(session)

            if await songs.get_by_id(song_id) is None:
                raise InvalidReferenceException("Song", song_id)

            # add() hands back whatever row wins the (user, song) constraint, which can
            # be a subscription grant created a moment ago by a concurrent request
            record = await ownerships.add(
                OwnershipRecord(
                    user_id=user_id,
                    song_id=song_id,
                    provenance=Provenance.PURCHASED,
                    order_reference=order_reference,
                    acquired_at=self._clock(),
                )
            )
            if record.is_revocable and record.id is not None:
                await ownerships.mark_purchased(record.id, order_reference)
                upgraded = await ownerships.get(user_id, song_id)
                if upgraded is None:
                    raise InvalidReferenceException("Ownership", (user_id, song_id))
                record = upgraded
                logger.info(
                    "Upgraded subscription grant to purchase (user=%s, song=%s)",
                    user_id,
                    song_id,
                )
            else:
                logger.info("Recorded purchase (user=%s, song=%s)", user_id, song_id)

            await session.commit()

        return record
