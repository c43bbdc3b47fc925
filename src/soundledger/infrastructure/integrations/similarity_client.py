"""Similarity service HTTP client (PostgREST-style RPC + table upsert)."""

import logging
from collections.abc import Collection, Sequence
from typing import Any

import httpx

from soundledger.config.settings import SimilaritySettings
from soundledger.domain.entities import Like, ScoredSong
from soundledger.domain.exceptions import SimilarityServiceException
from soundledger.domain.ports import ISimilarityClient

logger = logging.getLogger(__name__)


def _format_vector(embedding: Sequence[float]) -> str:
    # pgvector accepts its text form "[0.1,0.2,...]"
    return "[" + ",".join(repr(float(value)) for value in embedding) + "]"


class SimilarityClient(ISimilarityClient):
    """HTTP client for the external similarity service.

    Hey future me - this service is OPTIONAL and UNRELIABLE. Every failure mode (timeout,
    connection error, non-2xx, garbage JSON) is turned into SimilarityServiceException so
    the recommendation service has exactly one thing to catch before falling back to the
    local graph. Never let raw httpx errors escape from here.
    """

    def __init__(
        self,
        settings: SimilaritySettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize similarity client.

        Args:
            settings: Similarity service settings
            client: Optional pre-built HTTP client (tests, shared pools)
        """
        self.settings = settings
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.url.rstrip("/"),
                timeout=self.settings.timeout,
                headers={
                    "apikey": self.settings.api_key,
                    "Authorization": f"Bearer {self.settings.api_key}",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(
        self, path: str, payload: dict[str, Any], headers: dict[str, str] | None = None
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise SimilarityServiceException(f"timeout calling {path}") from e
        except httpx.HTTPStatusError as e:
            raise SimilarityServiceException(
                f"{path} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SimilarityServiceException(f"request to {path} failed: {e}") from e
        return response

    async def recommend(
        self, user_id: int, limit: int, exclude_song_ids: Collection[int]
    ) -> list[ScoredSong]:
        """
        Ask the RPC function for scored songs.

        Args:
            user_id: User to recommend for
            limit: Maximum number of songs wanted
            exclude_song_ids: Songs the service must not return

        Returns:
            Scored songs in the order the service ranked them. Rows without a score
            are dropped.

        Raises:
            SimilarityServiceException: On any transport or payload problem
        """
        response = await self._post(
            f"/rest/v1/rpc/{self.settings.rpc_function}",
            {
                "p_user_id": user_id,
                "p_limit": limit,
                "p_exclude_songs": sorted(exclude_song_ids),
            },
        )

        try:
            rows = response.json()
        except ValueError as e:
            raise SimilarityServiceException("response is not JSON") from e
        if not isinstance(rows, list):
            raise SimilarityServiceException("expected a JSON array of rows")

        results: list[ScoredSong] = []
        for row in rows:
            if not isinstance(row, dict):
                raise SimilarityServiceException(f"unexpected row: {row!r}")
            score = row.get("score")
            if score is None:
                continue
            try:
                results.append(ScoredSong(song_id=int(row["song_id"]), score=float(score)))
            except (KeyError, TypeError, ValueError) as e:
                raise SimilarityServiceException(f"malformed row: {row!r}") from e

        logger.debug(
            "Similarity service returned %d scored songs for user %s",
            len(results),
            user_id,
        )
        return results

    async def upsert_affinity(
        self, like: Like, embedding: Sequence[float] | None = None
    ) -> None:
        """
        Upsert one like row (merge on user_id, song_id).

        Raises:
            SimilarityServiceException: On any transport problem
        """
        payload: dict[str, Any] = {
            "user_id": like.user_id,
            "song_id": like.song_id,
            "is_like": like.is_like,
            "created_at": like.created_at.isoformat(),
            "updated_at": like.updated_at.isoformat(),
        }
        if embedding is not None:
            payload["embedding"] = _format_vector(embedding)

        await self._post(
            f"/rest/v1/{self.settings.affinity_table}?on_conflict=user_id,song_id",
            payload,
            headers={"Prefer": "resolution=merge-duplicates"},
        )

    async def __aenter__(self) -> "SimilarityClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
