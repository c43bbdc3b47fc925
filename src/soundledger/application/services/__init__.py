"""Application services - access, likes, playlists, recommendations, cleanup."""

from soundledger.application.services.access_service import (
    AccessResolver,
    AccessService,
)
from soundledger.application.services.like_service import LikeService
from soundledger.application.services.liked_songs_service import (
    LIKED_SONGS_KEY,
    LIKED_SONGS_NAME,
    LikedSongsService,
    LikedSongsSyncResult,
)
from soundledger.application.services.playlist_service import PlaylistService
from soundledger.application.services.recommendation_service import (
    AffinitySyncResult,
    RecommendationService,
)
from soundledger.application.services.recommendation_strategies import (
    LocalGraphStrategy,
    RecommendationContext,
    RecommendationStrategy,
    SimilarityServiceStrategy,
)
from soundledger.application.services.subscription_cleanup_service import (
    CleanupReport,
    SubscriptionCleanupService,
)

__all__ = [
    "LIKED_SONGS_KEY",
    "LIKED_SONGS_NAME",
    "AccessResolver",
    "AccessService",
    "AffinitySyncResult",
    "CleanupReport",
    "LikeService",
    "LikedSongsService",
    "LikedSongsSyncResult",
    "LocalGraphStrategy",
    "PlaylistService",
    "RecommendationContext",
    "RecommendationService",
    "RecommendationStrategy",
    "SimilarityServiceStrategy",
    "SubscriptionCleanupService",
]
