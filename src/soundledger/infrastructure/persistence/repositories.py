"""Repository implementations using SQLAlchemy."""

from collections.abc import Collection, Sequence
from datetime import datetime

from sqlalchemy import and_, delete, distinct, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from soundledger.domain.entities import (
    Like,
    OwnershipRecord,
    Playlist,
    PlaylistMembership,
    Provenance,
    RecommendationEntry,
    ScoredSong,
    Song,
    Subscription,
    SubscriptionStatus,
    ensure_utc_aware,
    utc_now,
)
from soundledger.domain.exceptions import EntityNotFoundException
from soundledger.domain.ports import (
    ILikeRepository,
    IOwnershipRepository,
    IPlaylistRepository,
    IRecommendationRepository,
    ISongRepository,
    ISubscriptionRepository,
)
from soundledger.infrastructure.persistence.batch_utils import (
    insert_ignore_duplicates,
)
from soundledger.infrastructure.persistence.models import (
    PLAYABLE_SONG,
    OwnedSongModel,
    PlaylistMembershipModel,
    PlaylistModel,
    RecommendationModel,
    SongLikeModel,
    SongModel,
    SubscriptionModel,
)


def _song_to_entity(model: SongModel) -> Song:
    return Song(
        id=model.id,
        title=model.title,
        album_name=model.album_name,
        is_album_cover=model.is_album_cover,
        audio_ref=model.audio_ref,
        image_ref=model.image_ref,
        genre=model.genre,
        track_number=model.track_number,
        stream_count=model.stream_count,
        is_active=model.is_active,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


def _like_to_entity(model: SongLikeModel) -> Like:
    return Like(
        user_id=model.user_id,
        song_id=model.song_id,
        is_like=model.is_like,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


def _ownership_to_entity(model: OwnedSongModel) -> OwnershipRecord:
    return OwnershipRecord(
        id=model.id,
        user_id=model.user_id,
        song_id=model.song_id,
        provenance=Provenance(model.provenance),
        order_reference=model.order_reference,
        acquired_at=ensure_utc_aware(model.acquired_at),
    )


def _playlist_to_entity(model: PlaylistModel) -> Playlist:
    return Playlist(
        id=model.id,
        owner_id=model.owner_id,
        name=model.name,
        is_system_generated=model.is_system_generated,
        system_key=model.system_key,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


def _subscription_to_entity(model: SubscriptionModel) -> Subscription:
    return Subscription(
        id=model.id,
        user_id=model.user_id,
        status=SubscriptionStatus(model.status),
        start_date=ensure_utc_aware(model.start_date),
        end_date=ensure_utc_aware(model.end_date) if model.end_date else None,
        next_billing_date=(
            ensure_utc_aware(model.next_billing_date)
            if model.next_billing_date
            else None
        ),
    )


class SongRepository(ISongRepository):
    """SQLAlchemy implementation of the catalog repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, song: Song) -> Song:
        """Insert a song and return it with its assigned id."""
        model = SongModel(
            title=song.title,
            album_name=song.album_name,
            is_album_cover=song.is_album_cover,
            audio_ref=song.audio_ref,
            image_ref=song.image_ref,
            genre=song.genre,
            track_number=song.track_number,
            stream_count=song.stream_count,
            is_active=song.is_active,
            created_at=song.created_at,
            updated_at=song.updated_at,
        )
        # Explicit ids are allowed so imports can keep their catalog numbering
        if song.id:
            model.id = song.id
        self.session.add(model)
        await self.session.flush()
        return _song_to_entity(model)

    async def get_by_id(self, song_id: int) -> Song | None:
        """Get a song by ID."""
        model = await self.session.get(SongModel, song_id)
        return _song_to_entity(model) if model else None

    async def get_many(self, song_ids: Collection[int]) -> dict[int, Song]:
        """Get songs by ID, keyed by ID."""
        if not song_ids:
            return {}
        stmt = select(SongModel).where(SongModel.id.in_(list(song_ids)))
        result = await self.session.execute(stmt)
        return {model.id: _song_to_entity(model) for model in result.scalars().all()}

    async def list_playable(self, exclude_ids: Collection[int] = ()) -> list[Song]:
        """List every playable song ordered by id."""
        stmt = select(SongModel).where(PLAYABLE_SONG).order_by(SongModel.id)
        if exclude_ids:
            stmt = stmt.where(SongModel.id.notin_(list(exclude_ids)))
        result = await self.session.execute(stmt)
        return [_song_to_entity(model) for model in result.scalars().all()]

    # Hey future me - popularity = 2 * distinct likers + stream count. Songs nobody liked
    # still show up (outer join, count = 0) ranked by streams alone - that's the "any
    # playable song" padding. Ties: more streams first, then LOWER id so the order is
    # deterministic across runs.
    async def rank_by_popularity(
        self, exclude_ids: Collection[int], limit: int
    ) -> list[ScoredSong]:
        """Rank playable songs by 2 * distinct likers + stream count."""
        if limit <= 0:
            return []

        likers = func.count(distinct(SongLikeModel.user_id))
        score = likers * 2 + SongModel.stream_count
        stmt = (
            select(SongModel.id, score.label("score"))
            .outerjoin(
                SongLikeModel,
                and_(
                    SongLikeModel.song_id == SongModel.id,
                    SongLikeModel.is_like.is_(True),
                ),
            )
            .where(PLAYABLE_SONG)
        )
        if exclude_ids:
            stmt = stmt.where(SongModel.id.notin_(list(exclude_ids)))
        stmt = (
            stmt.group_by(SongModel.id, SongModel.stream_count)
            .order_by(score.desc(), SongModel.stream_count.desc(), SongModel.id.asc())
            .limit(limit)
        )

        result = await self.session.execute(stmt)
        return [ScoredSong(song_id=row.id, score=float(row.score)) for row in result]


class LikeRepository(ILikeRepository):
    """SQLAlchemy implementation of the like ledger."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, user_id: int, song_id: int) -> Like | None:
        """Get the like row for a (user, song) pair."""
        stmt = select(SongLikeModel).where(
            SongLikeModel.user_id == user_id, SongLikeModel.song_id == song_id
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _like_to_entity(model) if model else None

    async def add(self, like: Like) -> bool:
        """Insert a like row, False if the pair already had one."""
        inserted = await insert_ignore_duplicates(
            self.session,
            SongLikeModel,
            [
                {
                    "user_id": like.user_id,
                    "song_id": like.song_id,
                    "is_like": like.is_like,
                    "created_at": like.created_at,
                    "updated_at": like.updated_at,
                }
            ],
            conflict_columns=("user_id", "song_id"),
        )
        return inserted == 1

    async def update(self, like: Like) -> None:
        """Persist is_like/updated_at of an existing row."""
        stmt = (
            update(SongLikeModel)
            .where(
                SongLikeModel.user_id == like.user_id,
                SongLikeModel.song_id == like.song_id,
            )
            .values(is_like=like.is_like, updated_at=like.updated_at)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Like", (like.user_id, like.song_id))

    async def delete(self, user_id: int, song_id: int) -> None:
        """Delete the like row of a (user, song) pair."""
        stmt = delete(SongLikeModel).where(
            SongLikeModel.user_id == user_id, SongLikeModel.song_id == song_id
        )
        await self.session.execute(stmt)

    async def list_song_ids(self, user_id: int, is_like: bool) -> list[int]:
        """Song IDs the user liked or disliked."""
        stmt = (
            select(SongLikeModel.song_id)
            .where(
                SongLikeModel.user_id == user_id,
                SongLikeModel.is_like.is_(is_like),
            )
            .order_by(SongLikeModel.song_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_song(self, song_id: int) -> tuple[int, int]:
        """Return (like_count, dislike_count) for a song."""
        stmt = (
            select(SongLikeModel.is_like, func.count())
            .where(SongLikeModel.song_id == song_id)
            .group_by(SongLikeModel.is_like)
        )
        result = await self.session.execute(stmt)
        counts = {bool(is_like): count for is_like, count in result.all()}
        return counts.get(True, 0), counts.get(False, 0)

    async def find_neighbors(
        self, user_id: int, liked_song_ids: Collection[int]
    ) -> list[int]:
        """Other users who liked at least one of the given songs."""
        if not liked_song_ids:
            return []
        stmt = (
            select(SongLikeModel.user_id)
            .distinct()
            .where(
                SongLikeModel.song_id.in_(list(liked_song_ids)),
                SongLikeModel.is_like.is_(True),
                SongLikeModel.user_id != user_id,
            )
            .order_by(SongLikeModel.user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def score_neighbor_songs(
        self, neighbor_ids: Collection[int], exclude_ids: Collection[int], limit: int
    ) -> list[ScoredSong]:
        """Rank playable songs by how many distinct neighbors liked them."""
        if not neighbor_ids or limit <= 0:
            return []

        neighbor_count = func.count(distinct(SongLikeModel.user_id))
        stmt = (
            select(SongLikeModel.song_id, neighbor_count.label("score"))
            .join(SongModel, SongModel.id == SongLikeModel.song_id)
            .where(
                SongLikeModel.user_id.in_(list(neighbor_ids)),
                SongLikeModel.is_like.is_(True),
                PLAYABLE_SONG,
            )
        )
        if exclude_ids:
            stmt = stmt.where(SongLikeModel.song_id.notin_(list(exclude_ids)))
        stmt = (
            stmt.group_by(SongLikeModel.song_id, SongModel.stream_count)
            .order_by(
                neighbor_count.desc(),
                SongModel.stream_count.desc(),
                SongLikeModel.song_id.asc(),
            )
            .limit(limit)
        )

        result = await self.session.execute(stmt)
        return [
            ScoredSong(song_id=row.song_id, score=float(row.score)) for row in result
        ]

    async def list_all_with_songs(self) -> list[tuple[Like, Song | None]]:
        """Every like row with its song."""
        stmt = (
            select(SongLikeModel)
            .options(selectinload(SongLikeModel.song))
            .order_by(SongLikeModel.user_id, SongLikeModel.song_id)
        )
        result = await self.session.execute(stmt)
        return [
            (_like_to_entity(model), _song_to_entity(model.song) if model.song else None)
            for model in result.scalars().all()
        ]


class OwnershipRepository(IOwnershipRepository):
    """SQLAlchemy implementation of the ownership ledger."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _row(record: OwnershipRecord) -> dict:
        return {
            "user_id": record.user_id,
            "song_id": record.song_id,
            "provenance": record.provenance.value,
            "order_reference": record.order_reference,
            "acquired_at": record.acquired_at,
        }

    async def get(self, user_id: int, song_id: int) -> OwnershipRecord | None:
        """Get the ownership record of a (user, song) pair."""
        stmt = select(OwnedSongModel).where(
            OwnedSongModel.user_id == user_id, OwnedSongModel.song_id == song_id
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _ownership_to_entity(model) if model else None

    async def get_many(
        self, user_id: int, song_ids: Collection[int]
    ) -> dict[int, OwnershipRecord]:
        """Ownership records of a user for the given songs, keyed by song ID."""
        if not song_ids:
            return {}
        stmt = select(OwnedSongModel).where(
            OwnedSongModel.user_id == user_id,
            OwnedSongModel.song_id.in_(list(song_ids)),
        )
        result = await self.session.execute(stmt)
        return {
            model.song_id: _ownership_to_entity(model)
            for model in result.scalars().all()
        }

    async def list_for_user(self, user_id: int) -> list[OwnershipRecord]:
        """All ownership records of a user."""
        stmt = (
            select(OwnedSongModel)
            .where(OwnedSongModel.user_id == user_id)
            .order_by(OwnedSongModel.song_id)
        )
        result = await self.session.execute(stmt)
        return [_ownership_to_entity(model) for model in result.scalars().all()]

    async def add(self, record: OwnershipRecord) -> OwnershipRecord:
        """Insert a record, or return the one that already exists for the pair."""
        await insert_ignore_duplicates(
            self.session,
            OwnedSongModel,
            [self._row(record)],
            conflict_columns=("user_id", "song_id"),
        )
        stored = await self.get(record.user_id, record.song_id)
        if stored is None:
            # Only possible if a concurrent sweep deleted it between the two statements
            raise EntityNotFoundException("Ownership", (record.user_id, record.song_id))
        return stored

    async def add_many(self, records: Sequence[OwnershipRecord]) -> int:
        """Bulk insert, skipping pairs that already exist."""
        return await insert_ignore_duplicates(
            self.session,
            OwnedSongModel,
            [self._row(record) for record in records],
            conflict_columns=("user_id", "song_id"),
        )

    async def mark_purchased(self, record_id: int, order_reference: str | None) -> None:
        """Turn a subscription grant into a permanent purchase."""
        stmt = (
            update(OwnedSongModel)
            .where(OwnedSongModel.id == record_id)
            .values(
                provenance=Provenance.PURCHASED.value,
                order_reference=order_reference,
                acquired_at=utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Ownership", record_id)

    async def delete_revocable_for_user(self, user_id: int) -> int:
        """Delete all subscription-granted records of a user."""
        stmt = delete(OwnedSongModel).where(
            OwnedSongModel.user_id == user_id,
            OwnedSongModel.provenance == Provenance.SUBSCRIPTION.value,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]


class PlaylistRepository(IPlaylistRepository):
    """SQLAlchemy implementation of the playlist repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, playlist: Playlist) -> Playlist:
        """Insert a playlist and return it with its assigned id."""
        model = PlaylistModel(
            owner_id=playlist.owner_id,
            name=playlist.name,
            is_system_generated=playlist.is_system_generated,
            system_key=playlist.system_key,
            created_at=playlist.created_at,
            updated_at=playlist.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        return _playlist_to_entity(model)

    async def get_by_id(self, playlist_id: int) -> Playlist | None:
        """Get a playlist by ID."""
        model = await self.session.get(PlaylistModel, playlist_id)
        return _playlist_to_entity(model) if model else None

    async def list_for_owner(self, owner_id: int) -> list[Playlist]:
        """All playlists of a user, ordered by name."""
        stmt = (
            select(PlaylistModel)
            .where(PlaylistModel.owner_id == owner_id)
            .order_by(PlaylistModel.name, PlaylistModel.id)
        )
        result = await self.session.execute(stmt)
        return [_playlist_to_entity(model) for model in result.scalars().all()]

    async def _get_system(self, owner_id: int, system_key: str) -> PlaylistModel | None:
        stmt = select(PlaylistModel).where(
            PlaylistModel.owner_id == owner_id,
            PlaylistModel.system_key == system_key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_system(
        self, owner_id: int, system_key: str, name: str
    ) -> tuple[Playlist, bool]:
        """Resolve-or-create a system playlist. Returns (playlist, created)."""
        existing = await self._get_system(owner_id, system_key)
        if existing is not None:
            return _playlist_to_entity(existing), False

        now = utc_now()
        inserted = await insert_ignore_duplicates(
            self.session,
            PlaylistModel,
            [
                {
                    "owner_id": owner_id,
                    "name": name,
                    "is_system_generated": True,
                    "system_key": system_key,
                    "created_at": now,
                    "updated_at": now,
                }
            ],
            conflict_columns=("owner_id", "system_key"),
        )
        created = await self._get_system(owner_id, system_key)
        if created is None:
            raise EntityNotFoundException("Playlist", (owner_id, system_key))
        return _playlist_to_entity(created), inserted == 1

    async def rename(self, playlist_id: int, name: str) -> None:
        """Rename a playlist."""
        stmt = (
            update(PlaylistModel)
            .where(PlaylistModel.id == playlist_id)
            .values(name=name, updated_at=utc_now())
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Playlist", playlist_id)

    async def delete(self, playlist_id: int) -> None:
        """Delete a playlist and its memberships."""
        await self.session.execute(
            delete(PlaylistMembershipModel).where(
                PlaylistMembershipModel.playlist_id == playlist_id
            )
        )
        result = await self.session.execute(
            delete(PlaylistModel).where(PlaylistModel.id == playlist_id)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Playlist", playlist_id)

    async def list_memberships(self, playlist_id: int) -> list[PlaylistMembership]:
        """Memberships of a playlist in the order they were added."""
        stmt = (
            select(PlaylistMembershipModel, OwnedSongModel.song_id)
            .join(OwnedSongModel, OwnedSongModel.id == PlaylistMembershipModel.ownership_id)
            .where(PlaylistMembershipModel.playlist_id == playlist_id)
            .order_by(PlaylistMembershipModel.added_at, PlaylistMembershipModel.id)
        )
        result = await self.session.execute(stmt)
        return [
            PlaylistMembership(
                id=membership.id,
                playlist_id=membership.playlist_id,
                ownership_id=membership.ownership_id,
                song_id=song_id,
                added_at=ensure_utc_aware(membership.added_at),
            )
            for membership, song_id in result.all()
        ]

    async def member_song_ids(self, playlist_id: int) -> dict[int, int]:
        """Map song_id -> membership_id for a playlist."""
        stmt = (
            select(OwnedSongModel.song_id, PlaylistMembershipModel.id)
            .join(OwnedSongModel, OwnedSongModel.id == PlaylistMembershipModel.ownership_id)
            .where(PlaylistMembershipModel.playlist_id == playlist_id)
        )
        result = await self.session.execute(stmt)
        return {song_id: membership_id for song_id, membership_id in result.all()}

    async def add_memberships(
        self, playlist_id: int, ownership_ids: Collection[int]
    ) -> int:
        """Insert memberships, duplicates are a no-op."""
        now = utc_now()
        return await insert_ignore_duplicates(
            self.session,
            PlaylistMembershipModel,
            [
                {"playlist_id": playlist_id, "ownership_id": ownership_id, "added_at": now}
                for ownership_id in ownership_ids
            ],
            conflict_columns=("playlist_id", "ownership_id"),
        )

    async def remove_memberships(self, membership_ids: Collection[int]) -> int:
        """Delete memberships by ID."""
        if not membership_ids:
            return 0
        stmt = delete(PlaylistMembershipModel).where(
            PlaylistMembershipModel.id.in_(list(membership_ids))
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def delete_revocable_memberships(self, user_id: int) -> int:
        """Delete every membership backed by a subscription grant of the user."""
        revocable = select(OwnedSongModel.id).where(
            OwnedSongModel.user_id == user_id,
            OwnedSongModel.provenance == Provenance.SUBSCRIPTION.value,
        )
        stmt = delete(PlaylistMembershipModel).where(
            PlaylistMembershipModel.ownership_id.in_(revocable)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]


class SubscriptionRepository(ISubscriptionRepository):
    """SQLAlchemy implementation of subscription state."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, subscription: Subscription) -> Subscription:
        """Insert a subscription record."""
        model = SubscriptionModel(
            user_id=subscription.user_id,
            status=subscription.status.value,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            next_billing_date=subscription.next_billing_date,
        )
        self.session.add(model)
        await self.session.flush()
        return _subscription_to_entity(model)

    # Hey future me - this is THE entitlement rule, mirrored in Subscription.is_entitled():
    # ACTIVE and (no end date or end date in the future), OR CANCELLED and end date in the
    # future (they paid until then). EXPIRED never entitles.
    async def get_active(self, user_id: int, now: datetime) -> Subscription | None:
        """The subscription currently entitling the user, if any."""
        stmt = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.user_id == user_id,
                or_(
                    and_(
                        SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                        or_(
                            SubscriptionModel.end_date.is_(None),
                            SubscriptionModel.end_date > now,
                        ),
                    ),
                    and_(
                        SubscriptionModel.status == SubscriptionStatus.CANCELLED.value,
                        SubscriptionModel.end_date > now,
                    ),
                ),
            )
            .order_by(SubscriptionModel.start_date.desc(), SubscriptionModel.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _subscription_to_entity(model) if model else None

    async def get_latest(self, user_id: int) -> Subscription | None:
        """The user's most recent subscription record (latest start, then highest id)."""
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.start_date.desc(), SubscriptionModel.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _subscription_to_entity(model) if model else None

    # Hey future me - only the LATEST record per user counts here. An old lapse
    # followed by a fresh cancellation still inside the grace period must NOT show up,
    # otherwise the sweep revokes access the user is still owed.
    async def list_lapsed_user_ids(self, cutoff: datetime) -> list[int]:
        """Users whose latest subscription is cancelled/expired and ended before cutoff."""
        latest = (
            select(
                SubscriptionModel.user_id,
                SubscriptionModel.status,
                SubscriptionModel.end_date,
                func.row_number()
                .over(
                    partition_by=SubscriptionModel.user_id,
                    order_by=(
                        SubscriptionModel.start_date.desc(),
                        SubscriptionModel.id.desc(),
                    ),
                )
                .label("recency"),
            )
        ).subquery()
        stmt = (
            select(latest.c.user_id)
            .where(
                latest.c.recency == 1,
                latest.c.status.in_(
                    [SubscriptionStatus.CANCELLED.value, SubscriptionStatus.EXPIRED.value]
                ),
                latest.c.end_date.isnot(None),
                latest.c.end_date < cutoff,
            )
            .order_by(latest.c.user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class RecommendationRepository(IRecommendationRepository):
    """SQLAlchemy implementation of the recommendation cache."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def list_for_user(self, user_id: int) -> list[RecommendationEntry]:
        """Cached entries of a user ordered by display order."""
        stmt = (
            select(RecommendationModel)
            .options(selectinload(RecommendationModel.song))
            .where(RecommendationModel.user_id == user_id)
            .order_by(RecommendationModel.display_order)
        )
        result = await self.session.execute(stmt)
        return [
            RecommendationEntry(
                user_id=model.user_id,
                song_id=model.song_id,
                display_order=model.display_order,
                score=model.score,
                generated_at=ensure_utc_aware(model.generated_at),
                song=_song_to_entity(model.song) if model.song else None,
            )
            for model in result.scalars().all()
        ]

    async def has_generated_since(self, user_id: int, since: datetime) -> bool:
        """True if any cached entry was generated after `since`."""
        stmt = (
            select(RecommendationModel.id)
            .where(
                RecommendationModel.user_id == user_id,
                RecommendationModel.generated_at > since,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def replace_for_user(
        self, user_id: int, entries: Sequence[RecommendationEntry]
    ) -> None:
        """Delete the user's cache and insert the new batch.

        Caller owns the transaction - both statements MUST commit together.
        """
        await self.session.execute(
            delete(RecommendationModel).where(RecommendationModel.user_id == user_id)
        )
        self.session.add_all(
            RecommendationModel(
                user_id=entry.user_id,
                song_id=entry.song_id,
                display_order=entry.display_order,
                score=entry.score,
                generated_at=entry.generated_at,
            )
            for entry in entries
        )
        # Flush so a concurrent-regeneration conflict surfaces here, not at commit
        await self.session.flush()
