"""Configuration module for SoundLedger."""

from .settings import (
    AffinitySyncSettings,
    CleanupSettings,
    DatabaseSettings,
    EmbeddingSettings,
    ObservabilitySettings,
    RecommendationSettings,
    Settings,
    SimilaritySettings,
    get_settings,
)

__all__ = [
    "AffinitySyncSettings",
    "CleanupSettings",
    "DatabaseSettings",
    "EmbeddingSettings",
    "ObservabilitySettings",
    "RecommendationSettings",
    "Settings",
    "SimilaritySettings",
    "get_settings",
]
