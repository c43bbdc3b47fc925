"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Collection, Sequence
from datetime import datetime

from soundledger.domain.entities import (
    Like,
    OwnershipRecord,
    Playlist,
    PlaylistMembership,
    RecommendationEntry,
    ScoredSong,
    Song,
    Subscription,
)


# Hey future me - the catalog is "read-mostly" from our side. Songs are uploaded and
# edited elsewhere; stream counts are bumped by the player. We only READ here, except
# add() which exists for catalog import scripts and tests.
class ISongRepository(ABC):
    """Repository interface for catalog songs."""

    @abstractmethod
    async def add(self, song: Song) -> Song:
        """Insert a song and return it with its assigned id."""
        pass

    @abstractmethod
    async def get_by_id(self, song_id: int) -> Song | None:
        """Get a song by ID."""
        pass

    @abstractmethod
    async def get_many(self, song_ids: Collection[int]) -> dict[int, Song]:
        """Get songs by ID, keyed by ID. Missing IDs are simply absent."""
        pass

    @abstractmethod
    async def list_playable(self, exclude_ids: Collection[int] = ()) -> list[Song]:
        """List every playable song (active, not a cover, has audio)."""
        pass

    @abstractmethod
    async def rank_by_popularity(
        self, exclude_ids: Collection[int], limit: int
    ) -> list[ScoredSong]:
        """Rank playable songs by 2 * distinct likers + stream count."""
        pass


class ILikeRepository(ABC):
    """Repository interface for the like ledger."""

    @abstractmethod
    async def get(self, user_id: int, song_id: int) -> Like | None:
        """Get the like row for a (user, song) pair."""
        pass

    @abstractmethod
    async def add(self, like: Like) -> bool:
        """Insert a like row. Returns False if the pair already had one."""
        pass

    @abstractmethod
    async def update(self, like: Like) -> None:
        """Persist is_like/updated_at of an existing row."""
        pass

    @abstractmethod
    async def delete(self, user_id: int, song_id: int) -> None:
        """Delete the like row of a (user, song) pair."""
        pass

    @abstractmethod
    async def list_song_ids(self, user_id: int, is_like: bool) -> list[int]:
        """Song IDs the user liked (is_like=True) or disliked (is_like=False)."""
        pass

    @abstractmethod
    async def count_for_song(self, song_id: int) -> tuple[int, int]:
        """Return (like_count, dislike_count) for a song."""
        pass

    @abstractmethod
    async def find_neighbors(
        self, user_id: int, liked_song_ids: Collection[int]
    ) -> list[int]:
        """Other users who liked at least one of the given songs."""
        pass

    @abstractmethod
    async def score_neighbor_songs(
        self, neighbor_ids: Collection[int], exclude_ids: Collection[int], limit: int
    ) -> list[ScoredSong]:
        """Rank playable songs by how many distinct neighbors liked them."""
        pass

    @abstractmethod
    async def list_all_with_songs(self) -> list[tuple[Like, Song | None]]:
        """Every like row with its song (for the affinity export)."""
        pass


class IOwnershipRepository(ABC):
    """Repository interface for the ownership ledger."""

    @abstractmethod
    async def get(self, user_id: int, song_id: int) -> OwnershipRecord | None:
        """Get the ownership record of a (user, song) pair."""
        pass

    @abstractmethod
    async def get_many(
        self, user_id: int, song_ids: Collection[int]
    ) -> dict[int, OwnershipRecord]:
        """Ownership records of a user for the given songs, keyed by song ID."""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: int) -> list[OwnershipRecord]:
        """All ownership records of a user."""
        pass

    @abstractmethod
    async def add(self, record: OwnershipRecord) -> OwnershipRecord:
        """Insert a record, or return the existing one for the same pair."""
        pass

    @abstractmethod
    async def add_many(self, records: Sequence[OwnershipRecord]) -> int:
        """Bulk insert, silently skipping pairs that already exist."""
        pass

    @abstractmethod
    async def mark_purchased(self, record_id: int, order_reference: str | None) -> None:
        """Turn a subscription grant into a permanent purchase."""
        pass

    @abstractmethod
    async def delete_revocable_for_user(self, user_id: int) -> int:
        """Delete all subscription-granted records of a user."""
        pass


class IPlaylistRepository(ABC):
    """Repository interface for playlists and their memberships."""

    @abstractmethod
    async def add(self, playlist: Playlist) -> Playlist:
        """Insert a playlist and return it with its assigned id."""
        pass

    @abstractmethod
    async def get_by_id(self, playlist_id: int) -> Playlist | None:
        """Get a playlist by ID."""
        pass

    @abstractmethod
    async def list_for_owner(self, owner_id: int) -> list[Playlist]:
        """All playlists of a user, ordered by name."""
        pass

    @abstractmethod
    async def get_or_create_system(
        self, owner_id: int, system_key: str, name: str
    ) -> tuple[Playlist, bool]:
        """Resolve-or-create a system playlist. Returns (playlist, created)."""
        pass

    @abstractmethod
    async def rename(self, playlist_id: int, name: str) -> None:
        """Rename a playlist."""
        pass

    @abstractmethod
    async def delete(self, playlist_id: int) -> None:
        """Delete a playlist and its memberships."""
        pass

    @abstractmethod
    async def list_memberships(self, playlist_id: int) -> list[PlaylistMembership]:
        """Memberships of a playlist in the order they were added."""
        pass

    @abstractmethod
    async def member_song_ids(self, playlist_id: int) -> dict[int, int]:
        """Map song_id -> membership_id for a playlist."""
        pass

    @abstractmethod
    async def add_memberships(
        self, playlist_id: int, ownership_ids: Collection[int]
    ) -> int:
        """Insert memberships, duplicates are a no-op. Returns inserted count."""
        pass

    @abstractmethod
    async def remove_memberships(self, membership_ids: Collection[int]) -> int:
        """Delete memberships by ID. Returns deleted count."""
        pass

    @abstractmethod
    async def delete_revocable_memberships(self, user_id: int) -> int:
        """Delete every membership backed by a subscription grant of the user."""
        pass


class ISubscriptionRepository(ABC):
    """Repository interface for subscription state."""

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        """Insert a subscription record."""
        pass

    @abstractmethod
    async def get_active(self, user_id: int, now: datetime) -> Subscription | None:
        """The subscription currently entitling the user, if any."""
        pass

    @abstractmethod
    async def get_latest(self, user_id: int) -> Subscription | None:
        """The user's most recent subscription record, if any."""
        pass

    @abstractmethod
    async def list_lapsed_user_ids(self, cutoff: datetime) -> list[int]:
        """Users whose latest subscription is cancelled/expired and ended before cutoff."""
        pass


class IRecommendationRepository(ABC):
    """Repository interface for the per-user recommendation cache."""

    @abstractmethod
    async def list_for_user(self, user_id: int) -> list[RecommendationEntry]:
        """Cached entries of a user ordered by display order."""
        pass

    @abstractmethod
    async def has_generated_since(self, user_id: int, since: datetime) -> bool:
        """True if any cached entry was generated after `since`."""
        pass

    @abstractmethod
    async def replace_for_user(
        self, user_id: int, entries: Sequence[RecommendationEntry]
    ) -> None:
        """Delete the user's cache and insert the new batch (same transaction)."""
        pass


class ISimilarityClient(ABC):
    """Port for the optional external similarity service."""

    @abstractmethod
    async def recommend(
        self, user_id: int, limit: int, exclude_song_ids: Collection[int]
    ) -> list[ScoredSong]:
        """Ask for up to `limit` scored songs. Raises SimilarityServiceException."""
        pass

    @abstractmethod
    async def upsert_affinity(
        self, like: Like, embedding: Sequence[float] | None = None
    ) -> None:
        """Upsert one like row. Raises SimilarityServiceException."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


class IEmbeddingClient(ABC):
    """Port for the optional text-embedding generator."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a text. Raises EmbeddingServiceException."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


__all__ = [
    "IEmbeddingClient",
    "ILikeRepository",
    "IOwnershipRepository",
    "IPlaylistRepository",
    "IRecommendationRepository",
    "ISimilarityClient",
    "ISongRepository",
    "ISubscriptionRepository",
]
