"""Tests for the similarity service client."""

import json
from datetime import UTC, datetime

import httpx
import pytest
from pytest_httpx import HTTPXMock

from soundledger.config import SimilaritySettings
from soundledger.domain.entities import Like, ScoredSong
from soundledger.domain.exceptions import SimilarityServiceException
from soundledger.infrastructure.integrations import SimilarityClient

BASE_URL = "https://similarity.example"
RPC_URL = f"{BASE_URL}/rest/v1/rpc/get_recommendations"


@pytest.fixture
async def client():
    similarity = SimilarityClient(
        SimilaritySettings(url=BASE_URL, api_key="secret-key", timeout=2.0)
    )
    yield similarity
    await similarity.close()


class TestRecommend:
    async def test_parses_scored_rows(self, client: SimilarityClient, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            url=RPC_URL,
            method="POST",
            json=[
                {"song_id": 30, "score": 0.9},
                {"song_id": 40, "score": None},
                {"song_id": "50", "score": "0.5"},
            ],
        )

        results = await client.recommend(1, 20, {3, 2})

        assert results == [ScoredSong(30, 0.9), ScoredSong(50, 0.5)]
        request = httpx_mock.get_request()
        assert request is not None
        assert json.loads(request.content) == {
            "p_user_id": 1,
            "p_limit": 20,
            "p_exclude_songs": [2, 3],
        }
        assert request.headers["apikey"] == "secret-key"
        assert request.headers["Authorization"] == "Bearer secret-key"

    async def test_timeout_becomes_domain_exception(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with pytest.raises(SimilarityServiceException, match="timeout"):
            await client.recommend(1, 20, set())

    async def test_http_error_becomes_domain_exception(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_response(url=RPC_URL, method="POST", status_code=503)

        with pytest.raises(SimilarityServiceException, match="503"):
            await client.recommend(1, 20, set())

    async def test_non_list_payload_is_rejected(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_response(url=RPC_URL, method="POST", json={"error": "nope"})

        with pytest.raises(SimilarityServiceException):
            await client.recommend(1, 20, set())

    async def test_garbage_body_is_rejected(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_response(url=RPC_URL, method="POST", text="<html>oops</html>")

        with pytest.raises(SimilarityServiceException, match="JSON"):
            await client.recommend(1, 20, set())


class TestUpsertAffinity:
    async def test_posts_merge_upsert(self, client: SimilarityClient, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", status_code=201)
        stamp = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)

        await client.upsert_affinity(
            Like(user_id=1, song_id=2, is_like=True, created_at=stamp, updated_at=stamp),
            embedding=[0.5, 0.25],
        )

        request = httpx_mock.get_request()
        assert request is not None
        assert request.url.path == "/rest/v1/song_likes"
        assert request.url.params["on_conflict"] == "user_id,song_id"
        assert request.headers["Prefer"] == "resolution=merge-duplicates"
        body = json.loads(request.content)
        assert body["user_id"] == 1
        assert body["song_id"] == 2
        assert body["is_like"] is True
        assert body["embedding"] == "[0.5,0.25]"

    async def test_without_embedding_omits_field(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_response(method="POST", status_code=201)

        await client.upsert_affinity(Like(user_id=1, song_id=2, is_like=False))

        request = httpx_mock.get_request()
        assert request is not None
        assert "embedding" not in json.loads(request.content)

    async def test_connection_error_is_wrapped(
        self, client: SimilarityClient, httpx_mock: HTTPXMock
    ):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(SimilarityServiceException):
            await client.upsert_affinity(Like(user_id=1, song_id=2, is_like=True))
