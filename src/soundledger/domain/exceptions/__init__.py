"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is kept as an attribute so handlers can read it without str().
    # Never raise this directly - pick a subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidReferenceException(EntityNotFoundException):
    """Raised when a mutation references an entity that doesn't exist.

    Queries never raise this - they answer "no" or return an empty list.
    Only writes that need the row to exist (liking a song, buying it,
    adding it to a playlist) use it.
    """


class ValidationException(DomainException):
    """Raised when input violates a business rule (empty playlist name, etc.)."""

    pass


class InvalidStateException(DomainException):
    """Raised when an entity is in the wrong state for the operation.

    Example: renaming or deleting a system-generated playlist.
    """

    pass


# Hey future me - everything below is for UNRELIABLE collaborators (similarity service,
# embedding API). Integrations raise these, services catch them and fall back locally.
# They should never reach a caller of the application services.
class ExternalServiceException(DomainException):
    """An optional external dependency failed (timeout, bad payload, unreachable)."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class SimilarityServiceException(ExternalServiceException):
    """Similarity service call failed."""

    def __init__(self, message: str) -> None:
        super().__init__("similarity", message)


class EmbeddingServiceException(ExternalServiceException):
    """Embedding generator call failed."""

    def __init__(self, message: str) -> None:
        super().__init__("embeddings", message)


__all__ = [
    "DomainException",
    "EmbeddingServiceException",
    "EntityNotFoundException",
    "ExternalServiceException",
    "InvalidReferenceException",
    "InvalidStateException",
    "SimilarityServiceException",
    "ValidationException",
]
