"""External integration client implementations."""

from soundledger.infrastructure.integrations.embedding_client import EmbeddingClient
from soundledger.infrastructure.integrations.similarity_client import SimilarityClient

__all__ = [
    "EmbeddingClient",
    "SimilarityClient",
]
