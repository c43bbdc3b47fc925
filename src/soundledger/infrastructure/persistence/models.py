"""SQLAlchemy ORM models for SoundLedger."""

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from soundledger.domain.entities import BLANK_AUDIO_REF_CHARS, utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to share one metadata registry.
    """

    pass


# Hey future me - songs are the catalog. Album covers live in the same table (is_album_cover)
# because the upload pipeline stores them side by side; they are NEVER playable. A song is
# playable when it is active, not a cover, and has an audio blob. Every "playable" query in
# the repositories uses PLAYABLE_SONG below so the rule lives in exactly one place.
class SongModel(Base):
    """SQLAlchemy model for a catalog song."""

    __tablename__ = "songs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    album_name: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    is_album_cover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    audio_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    genre: Mapped[str | None] = mapped_column(String(50), nullable=True)
    track_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stream_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa.true()
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_songs_playable", "is_album_cover", "is_active"),)


PLAYABLE_SONG = sa.and_(
    SongModel.is_album_cover.is_(False),
    SongModel.is_active.is_(True),
    SongModel.audio_ref.isnot(None),
    sa.func.trim(SongModel.audio_ref, BLANK_AUDIO_REF_CHARS) != "",
)


class SongLikeModel(Base):
    """SQLAlchemy model for the like ledger. One row per (user, song)."""

    __tablename__ = "song_likes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    song_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_like: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    song: Mapped["SongModel"] = relationship("SongModel")

    __table_args__ = (
        UniqueConstraint("user_id", "song_id", name="uq_song_likes_user_song"),
    )


# Hey future me - provenance is a plain string column ('purchased' / 'subscription'), not a
# DB enum - keeps SQLite and PostgreSQL migrations identical. order_reference is only
# informational (payment order id); NEVER derive provenance from it being empty!
class OwnedSongModel(Base):
    """SQLAlchemy model for the ownership ledger."""

    __tablename__ = "owned_songs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    song_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provenance: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    order_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    song: Mapped["SongModel"] = relationship("SongModel")
    memberships: Mapped[list["PlaylistMembershipModel"]] = relationship(
        "PlaylistMembershipModel",
        back_populates="ownership",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "song_id", name="uq_owned_songs_user_song"),
    )


# Hey future me - system_key is how we find THE "Liked Songs" playlist of a user. It's NULL
# for normal playlists; NULLs never collide in a unique constraint (SQLite and PostgreSQL),
# so (owner_id, system_key) only constrains system playlists. That makes the
# lookup-then-create race harmless: the loser hits the constraint and re-reads.
class PlaylistModel(Base):
    """SQLAlchemy model for a playlist."""

    __tablename__ = "playlists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_system_generated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa.false()
    )
    system_key: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    memberships: Mapped[list["PlaylistMembershipModel"]] = relationship(
        "PlaylistMembershipModel",
        back_populates="playlist",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "system_key", name="uq_playlists_owner_system_key"),
    )


class PlaylistMembershipModel(Base):
    """SQLAlchemy model for a song (via its ownership record) in a playlist."""

    __tablename__ = "playlist_memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    playlist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False
    )
    ownership_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("owned_songs.id", ondelete="CASCADE"), nullable=False
    )
    added_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    playlist: Mapped["PlaylistModel"] = relationship(
        "PlaylistModel", back_populates="memberships"
    )
    ownership: Mapped["OwnedSongModel"] = relationship(
        "OwnedSongModel", back_populates="memberships"
    )

    __table_args__ = (
        UniqueConstraint(
            "playlist_id", "ownership_id", name="uq_playlist_memberships_entry"
        ),
        Index("ix_playlist_memberships_ownership", "ownership_id"),
    )


class SubscriptionModel(Base):
    """SQLAlchemy model for subscription state (written by the billing side)."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    start_date: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    end_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    next_billing_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )


# Hey future me - (user_id, display_order) is UNIQUE on purpose! Regeneration is
# delete-then-insert in one transaction. If two regenerations for the same user race, the
# second insert collides with the first batch instead of silently interleaving two
# generations. The loser rolls back and reads the winner's batch.
class RecommendationModel(Base):
    """SQLAlchemy model for one cached recommendation."""

    __tablename__ = "recommendations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    song_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False
    )
    display_order: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    song: Mapped["SongModel"] = relationship("SongModel")

    __table_args__ = (
        UniqueConstraint("user_id", "display_order", name="uq_recommendations_slot"),
    )
