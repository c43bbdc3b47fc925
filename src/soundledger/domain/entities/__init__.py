"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import PurePosixPath


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def ensure_utc_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# Characters an audio ref may consist of and still count as missing. The SQL playable
# predicate trims the same set so both sides agree on which songs can play.
BLANK_AUDIO_REF_CHARS = " \t\r\n"


# Hey future me - Provenance is WHY a user owns a song. PURCHASED rows are permanent and
# never touched by the cleanup sweep. SUBSCRIPTION rows are grants we materialized because
# the user was entitled at check time - they get revoked 48h after the subscription lapses.
# The old app guessed this from "is the payment order id null/empty?" which silently
# misclassifies a purchase stored with an empty order id. Now it's an explicit column.
class Provenance(str, Enum):
    """Why an ownership record exists."""

    PURCHASED = "purchased"
    SUBSCRIPTION = "subscription"


class SubscriptionStatus(str, Enum):
    """Billing status of a subscription record."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class LikeState(str, Enum):
    """Affinity state of a (user, song) pair."""

    UNSET = "unset"
    LIKED = "liked"
    DISLIKED = "disliked"


# Hey future me - AccessOutcome is the INTERNAL reason behind a yes/no access decision.
# Callers outside this package only ever see the boolean (see AccessService.can_access),
# because "song doesn't exist" and "you can't play it" must look identical from outside.
# The distinct values are for logs and tests.
class AccessOutcome(str, Enum):
    """Result of resolving a user's access to a song."""

    OWNED = "owned"
    GRANTED = "granted"
    NOT_FOUND = "not_found"
    NOT_PLAYABLE = "not_playable"
    NOT_ENTITLED = "not_entitled"

    @property
    def allowed(self) -> bool:
        return self in (AccessOutcome.OWNED, AccessOutcome.GRANTED)


@dataclass
class Song:
    """Catalog entry for a track or an album cover image."""

    id: int
    title: str | None = None
    album_name: str | None = None
    is_album_cover: bool = False
    audio_ref: str | None = None
    image_ref: str | None = None
    genre: str | None = None
    track_number: int | None = None
    stream_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_playable(self) -> bool:
        """Album covers never play; tracks need an audio blob and must be active."""
        return (
            not self.is_album_cover
            and self.is_active
            and bool(self.audio_ref and self.audio_ref.strip(BLANK_AUDIO_REF_CHARS))
        )

    @property
    def display_name(self) -> str:
        """Best human-readable name: title, else audio file stem, else a fallback."""
        if self.title:
            return self.title
        if self.audio_ref:
            return PurePosixPath(self.audio_ref).stem
        return f"Song {self.id}"

    def embedding_text(self) -> str:
        """Short text describing the song for the embedding generator."""
        parts = [self.display_name, self.album_name or "", self.genre or ""]
        return " ".join(part for part in parts if part).strip()


@dataclass
class Like:
    """One row of the like ledger. At most one per (user, song)."""

    user_id: int
    song_id: int
    is_like: bool
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def state(self) -> LikeState:
        return LikeState.LIKED if self.is_like else LikeState.DISLIKED


def next_like_state(current: LikeState, pressed: LikeState) -> LikeState:
    """Transition table for the like/dislike buttons.

    Pressing the button matching the current state clears it, pressing the other
    one (or pressing anything from UNSET) switches to the pressed state.
    """
    if pressed is LikeState.UNSET:
        raise ValueError("Only LIKED or DISLIKED can be toggled")
    if current is pressed:
        return LikeState.UNSET
    return pressed


@dataclass
class OwnershipRecord:
    """A user's right to stream a song and put it in playlists."""

    user_id: int
    song_id: int
    provenance: Provenance
    id: int | None = None
    order_reference: str | None = None
    acquired_at: datetime = field(default_factory=utc_now)

    @property
    def is_revocable(self) -> bool:
        return self.provenance is Provenance.SUBSCRIPTION


@dataclass
class Playlist:
    """User playlist. System-generated ones are managed by the app, not the user."""

    id: int
    owner_id: int
    name: str
    is_system_generated: bool = False
    system_key: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class PlaylistMembership:
    """A song (through its ownership record) placed in a playlist."""

    id: int
    playlist_id: int
    ownership_id: int
    song_id: int
    added_at: datetime = field(default_factory=utc_now)


@dataclass
class Subscription:
    """Subscription state as reported by the billing side."""

    user_id: int
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime | None = None
    next_billing_date: datetime | None = None
    id: int | None = None

    def is_entitled(self, now: datetime) -> bool:
        """Does this subscription currently grant catalog access?

        ACTIVE counts until its end date (open-ended if none). CANCELLED keeps
        access until the paid period ends. EXPIRED never entitles.
        """
        end = ensure_utc_aware(self.end_date) if self.end_date else None
        if self.status is SubscriptionStatus.ACTIVE:
            return end is None or end > now
        if self.status is SubscriptionStatus.CANCELLED:
            return end is not None and end > now
        return False


@dataclass(frozen=True)
class ScoredSong:
    """A recommendation candidate before validation."""

    song_id: int
    score: float


@dataclass
class RecommendationEntry:
    """One cached recommendation. A user's entries are always one generation."""

    user_id: int
    song_id: int
    display_order: int
    score: float
    generated_at: datetime
    song: Song | None = None


@dataclass
class AccessibleSong:
    """A song the user may add to a playlist, with the ownership backing it."""

    song: Song
    ownership: OwnershipRecord


__all__ = [
    "BLANK_AUDIO_REF_CHARS",
    "AccessOutcome",
    "AccessibleSong",
    "Like",
    "LikeState",
    "OwnershipRecord",
    "Playlist",
    "PlaylistMembership",
    "Provenance",
    "RecommendationEntry",
    "ScoredSong",
    "Song",
    "Subscription",
    "SubscriptionStatus",
    "ensure_utc_aware",
    "next_like_state",
    "utc_now",
]
