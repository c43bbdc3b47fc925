"""Text-embedding HTTP client (OpenAI-compatible /embeddings)."""

from typing import Any

import httpx

from soundledger.config.settings import EmbeddingSettings
from soundledger.domain.exceptions import EmbeddingServiceException
from soundledger.domain.ports import IEmbeddingClient


class EmbeddingClient(IEmbeddingClient):
    """HTTP client for the embedding generator."""

    def __init__(
        self,
        settings: EmbeddingSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url.rstrip("/"),
                timeout=self.settings.timeout,
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def embed(self, text: str) -> list[float]:
        """
        Embed a short text.

        Raises:
            EmbeddingServiceException: On transport errors or an unexpected payload
        """
        client = await self._get_client()
        try:
            response = await client.post(
                "/embeddings",
                json={
                    "model": self.settings.model,
                    "input": text,
                    "dimensions": self.settings.dimensions,
                },
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
            embedding = data["data"][0]["embedding"]
        except httpx.HTTPStatusError as e:
            raise EmbeddingServiceException(
                f"HTTP {e.response.status_code} from /embeddings"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingServiceException(f"request failed: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingServiceException("unexpected response payload") from e

        return [float(value) for value in embedding]

    async def __aenter__(self) -> "EmbeddingClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
