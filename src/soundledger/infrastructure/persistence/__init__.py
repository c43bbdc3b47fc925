"""Infrastructure persistence layer."""

from .batch_utils import chunked, insert_ignore_duplicates
from .database import Database
from .models import (
    Base,
    OwnedSongModel,
    PlaylistMembershipModel,
    PlaylistModel,
    RecommendationModel,
    SongLikeModel,
    SongModel,
    SubscriptionModel,
)
from .repositories import (
    LikeRepository,
    OwnershipRepository,
    PlaylistRepository,
    RecommendationRepository,
    SongRepository,
    SubscriptionRepository,
)

__all__ = [
    "Base",
    "Database",
    "LikeRepository",
    "OwnedSongModel",
    "OwnershipRepository",
    "PlaylistMembershipModel",
    "PlaylistModel",
    "PlaylistRepository",
    "RecommendationModel",
    "RecommendationRepository",
    "SongLikeModel",
    "SongModel",
    "SongRepository",
    "SubscriptionModel",
    "SubscriptionRepository",
    "chunked",
    "insert_ignore_duplicates",
]
