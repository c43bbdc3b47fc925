"""initial schema - catalog, likes, ownership, playlists, subscriptions, recommendations

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

Hey future me - the unique constraints in here ARE the concurrency story:
- uq_song_likes_user_song: one like row per (user, song)
- uq_owned_songs_user_song: one ownership record per (user, song)
- uq_playlists_owner_system_key: one Liked Songs playlist per user
- uq_playlist_memberships_entry: duplicate membership inserts are no-ops
- uq_recommendations_slot: two regenerations can't interleave their batches
Don't drop any of them without replacing the guarantee.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "songs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("album_name", sa.String(length=200), nullable=True),
        sa.Column("is_album_cover", sa.Boolean(), nullable=False),
        sa.Column("audio_ref", sa.String(length=500), nullable=True),
        sa.Column("image_ref", sa.String(length=500), nullable=True),
        sa.Column("genre", sa.String(length=50), nullable=True),
        sa.Column("track_number", sa.Integer(), nullable=True),
        sa.Column("stream_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_songs_album_name", "songs", ["album_name"])
    op.create_index("ix_songs_playable", "songs", ["is_album_cover", "is_active"])

    op.create_table(
        "song_likes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "song_id",
            sa.Integer(),
            sa.ForeignKey("songs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_like", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "song_id", name="uq_song_likes_user_song"),
    )
    op.create_index("ix_song_likes_user_id", "song_likes", ["user_id"])
    op.create_index("ix_song_likes_song_id", "song_likes", ["song_id"])

    op.create_table(
        "owned_songs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "song_id",
            sa.Integer(),
            sa.ForeignKey("songs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provenance", sa.String(length=20), nullable=False),
        sa.Column("order_reference", sa.String(length=100), nullable=True),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "song_id", name="uq_owned_songs_user_song"),
    )
    op.create_index("ix_owned_songs_user_id", "owned_songs", ["user_id"])
    op.create_index("ix_owned_songs_song_id", "owned_songs", ["song_id"])
    op.create_index("ix_owned_songs_provenance", "owned_songs", ["provenance"])

    op.create_table(
        "playlists",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "is_system_generated",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("system_key", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "owner_id", "system_key", name="uq_playlists_owner_system_key"
        ),
    )
    op.create_index("ix_playlists_owner_id", "playlists", ["owner_id"])

    op.create_table(
        "playlist_memberships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "playlist_id",
            sa.Integer(),
            sa.ForeignKey("playlists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "ownership_id",
            sa.Integer(),
            sa.ForeignKey("owned_songs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "playlist_id", "ownership_id", name="uq_playlist_memberships_entry"
        ),
    )
    op.create_index(
        "ix_playlist_memberships_ownership", "playlist_memberships", ["ownership_id"]
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_billing_date", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "recommendations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "song_id",
            sa.Integer(),
            sa.ForeignKey("songs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "display_order", name="uq_recommendations_slot"),
    )
    op.create_index("ix_recommendations_user_id", "recommendations", ["user_id"])
    op.create_index(
        "ix_recommendations_generated_at", "recommendations", ["generated_at"]
    )


def downgrade() -> None:
    op.drop_table("recommendations")
    op.drop_table("subscriptions")
    op.drop_table("playlist_memberships")
    op.drop_table("playlists")
    op.drop_table("owned_songs")
    op.drop_table("song_likes")
    op.drop_table("songs")
