"""
Unit tests for the embedding client.

The OpenAI SDK client is replaced with a mock; SDK exceptions are built
from real httpx requests/responses so classification sees what it would
in production.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from heelix.exceptions import (
    EmbeddingAuthError,
    EmbeddingQuotaError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingTransientError,
)
from heelix.rag.embeddings import EmbeddingClient, classify_error
from heelix.utils.retry import RetryConfig

DIMS = 8
URL = "https://api.openai.com/v1/embeddings"


def request():
    return httpx.Request("POST", URL)


def status_error(cls, status, body=None):
    response = httpx.Response(status, request=request())
    return cls(f"HTTP {status}", response=response, body=body)


def embedding_response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


@pytest.fixture
def sdk_client():
    client = MagicMock()
    client.embeddings.create = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def client():
    return EmbeddingClient(
        model="text-embedding-3-small",
        dimensions=DIMS,
        timeout=5.0,
        retry_config=RetryConfig(max_attempts=3, initial_delay_ms=1, max_delay_ms=1, jitter=False),
    )


class TestClassification:

    def test_connection_error_is_transient(self):
        assert isinstance(classify_error(openai.APIConnectionError(request=request())),
                          EmbeddingTransientError)

    def test_timeout_is_transient(self):
        assert isinstance(classify_error(openai.APITimeoutError(request=request())),
                          EmbeddingTransientError)

    def test_server_error_is_transient(self):
        error = classify_error(status_error(openai.InternalServerError, 503))
        assert isinstance(error, EmbeddingTransientError)
        assert error.status_code == 503
        assert error.transient

    def test_rate_limit_is_transient(self):
        error = classify_error(status_error(openai.RateLimitError, 429,
                                            {"code": "rate_limit_exceeded"}))
        assert isinstance(error, EmbeddingTransientError)

    def test_insufficient_quota_is_terminal(self):
        error = classify_error(status_error(openai.RateLimitError, 429,
                                            {"code": "insufficient_quota"}))
        assert isinstance(error, EmbeddingQuotaError)
        assert not error.transient

    @pytest.mark.parametrize("cls,status", [
        (openai.AuthenticationError, 401),
        (openai.PermissionDeniedError, 403),
    ])
    def test_auth_failures(self, cls, status):
        assert isinstance(classify_error(status_error(cls, status)), EmbeddingAuthError)

    def test_other_4xx_is_request_error(self):
        error = classify_error(status_error(openai.BadRequestError, 400))
        assert isinstance(error, EmbeddingRequestError)
        assert error.status_code == 400


@pytest.mark.asyncio
class TestEmbed:

    async def test_returns_vector(self, client, sdk_client):
        sdk_client.embeddings.create.return_value = embedding_response([0.5] * DIMS)

        with patch("openai.AsyncOpenAI", return_value=sdk_client) as factory:
            vector = await client.embed("hello world", "sk-1")

        assert vector == [0.5] * DIMS
        factory.assert_called_once_with(api_key="sk-1", timeout=5.0, max_retries=0)
        kwargs = sdk_client.embeddings.create.call_args.kwargs
        assert kwargs == {"model": "text-embedding-3-small", "input": "hello world", "dimensions": DIMS}

    async def test_sdk_client_cached_per_credential(self, client, sdk_client):
        sdk_client.embeddings.create.return_value = embedding_response([0.5] * DIMS)

        with patch("openai.AsyncOpenAI", return_value=sdk_client) as factory:
            await client.embed("a", "sk-1")
            await client.embed("b", "sk-1")
            await client.embed("c", "sk-2")

        assert factory.call_count == 2

    async def test_missing_key_fails_before_network(self, client, sdk_client):
        with patch("openai.AsyncOpenAI", return_value=sdk_client) as factory:
            with pytest.raises(EmbeddingAuthError):
                await client.embed("text", "")
        factory.assert_not_called()

    async def test_retries_transient_then_succeeds(self, client, sdk_client):
        sdk_client.embeddings.create.side_effect = [
            openai.APIConnectionError(request=request()),
            status_error(openai.InternalServerError, 502),
            embedding_response([1.0] * DIMS),
        ]

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            vector = await client.embed("text", "sk-1")

        assert vector == [1.0] * DIMS
        assert sdk_client.embeddings.create.await_count == 3

    async def test_exhausted_retries_raise_transient(self, client, sdk_client):
        sdk_client.embeddings.create.side_effect = openai.APITimeoutError(request=request())

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(EmbeddingTransientError) as exc_info:
                await client.embed("text", "sk-1")

        assert exc_info.value.attempts == 3
        assert sdk_client.embeddings.create.await_count == 3

    async def test_auth_failure_not_retried(self, client, sdk_client):
        sdk_client.embeddings.create.side_effect = status_error(openai.AuthenticationError, 401)

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(EmbeddingAuthError):
                await client.embed("text", "sk-bad")

        assert sdk_client.embeddings.create.await_count == 1

    async def test_quota_not_retried(self, client, sdk_client):
        sdk_client.embeddings.create.side_effect = status_error(
            openai.RateLimitError, 429, {"code": "insufficient_quota"}
        )

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(EmbeddingQuotaError):
                await client.embed("text", "sk-1")

        assert sdk_client.embeddings.create.await_count == 1

    async def test_wrong_dimensionality_rejected(self, client, sdk_client):
        sdk_client.embeddings.create.return_value = embedding_response([0.5] * (DIMS + 1))

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(EmbeddingResponseError):
                await client.embed("text", "sk-1")

    async def test_malformed_response_rejected(self, client, sdk_client):
        sdk_client.embeddings.create.return_value = SimpleNamespace(data=[])

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(EmbeddingResponseError):
                await client.embed("text", "sk-1")

    async def test_close_releases_clients(self, client, sdk_client):
        sdk_client.embeddings.create.return_value = embedding_response([0.5] * DIMS)

        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            await client.embed("text", "sk-1")
            await client.close()

        sdk_client.close.assert_awaited_once()
