"""
Embedding client for Heelix using the OpenAI embeddings API.

Converts text to a fixed-length vector. The client is stateless apart from
a cache of SDK clients keyed by credential; the credential is passed on
every call so a key changed in settings applies to the next request.

Failure handling:
- Connection errors, timeouts, 5xx and plain rate limits are retried with
  exponential backoff and jitter, then raised as EmbeddingTransientError
- 401/403, quota exhaustion, other 4xx and malformed responses are raised
  immediately, each as its own EmbeddingError subclass
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingQuotaError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingTransientError,
)
from ..utils.retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
DEFAULT_TIMEOUT_SECONDS = 30.0

# Lazy import to keep CLI startup fast
_openai = None


def _get_openai():
    """Lazy import OpenAI."""
    global _openai
    if _openai is None:
        try:
            import openai
            _openai = openai
        except ImportError:
            raise ImportError(
                "OpenAI not installed. Run: pip install openai"
            )
    return _openai


def _error_code(exc: Exception) -> Optional[str]:
    """Pull the service error code (e.g. 'insufficient_quota') off an SDK error"""
    code = getattr(exc, "code", None)
    if code:
        return code
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return error.get("code") or error.get("type")
    return None


def classify_error(exc: Exception) -> EmbeddingError:
    """
    Map an OpenAI SDK exception onto the embedding error hierarchy.

    Args:
        exc: Exception raised by the SDK

    Returns:
        EmbeddingError subclass describing the failure
    """
    openai = _get_openai()
    status_code = getattr(exc, "status_code", None)

    # APITimeoutError subclasses APIConnectionError
    if isinstance(exc, openai.APIConnectionError):
        return EmbeddingTransientError(f"Embedding service unreachable: {exc}")

    if isinstance(exc, openai.RateLimitError):
        if _error_code(exc) == "insufficient_quota":
            return EmbeddingQuotaError(f"Embedding quota exhausted: {exc}", status_code=status_code)
        return EmbeddingTransientError(f"Embedding rate limited: {exc}", status_code=status_code)

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return EmbeddingAuthError(f"Embedding credential rejected: {exc}", status_code=status_code)

    if isinstance(exc, openai.APIStatusError):
        if status_code is not None and status_code >= 500:
            return EmbeddingTransientError(
                f"Embedding service error ({status_code}): {exc}", status_code=status_code
            )
        return EmbeddingRequestError(
            f"Embedding request rejected ({status_code}): {exc}", status_code=status_code
        )

    return EmbeddingResponseError(f"Unexpected embedding failure: {exc}")


class EmbeddingClient:
    """
    Async adapter around the OpenAI embeddings endpoint.

    Args:
        model: Embedding model name
        dimensions: Expected vector length; responses of another length are rejected
        timeout: Per-request timeout in seconds
        retry_config: Backoff policy for transient failures

    Example:
        client = EmbeddingClient.from_config(config)
        vector = await client.embed("meeting notes", config.get_openai_api_key())
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._clients: Dict[str, Any] = {}

    @classmethod
    def from_config(cls, config) -> "EmbeddingClient":
        return cls(
            model=config.get("embedding_model", "vectorization", DEFAULT_MODEL),
            dimensions=config.embedding_dimensions,
            timeout=float(config.get("embedding_timeout_seconds", "vectorization",
                                     DEFAULT_TIMEOUT_SECONDS)),
            retry_config=RetryConfig(
                max_attempts=int(config.get("embedding_max_attempts", "vectorization", 3))
            ),
        )

    def _get_client(self, api_key: str):
        if api_key not in self._clients:
            openai = _get_openai()
            # SDK retries are disabled; retry policy lives in retry_with_backoff
            self._clients[api_key] = openai.AsyncOpenAI(
                api_key=api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._clients[api_key]

    def _supports_dimensions(self) -> bool:
        return self.model.startswith("text-embedding-3")

    async def _request(self, text: str, api_key: str) -> List[float]:
        openai = _get_openai()
        client = self._get_client(api_key)
        kwargs = {"model": self.model, "input": text}
        if self._supports_dimensions():
            kwargs["dimensions"] = self.dimensions

        try:
            response = await client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            raise classify_error(e) from e

        try:
            vector = list(response.data[0].embedding)
        except (AttributeError, IndexError, TypeError) as e:
            raise EmbeddingResponseError(f"Malformed embedding response: {e}") from e

        if len(vector) != self.dimensions:
            raise EmbeddingResponseError(
                f"Expected {self.dimensions} dimensions, got {len(vector)}"
            )
        return vector

    async def embed(self, text: str, api_key: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed
            api_key: OpenAI credential, validated on every call

        Returns:
            Vector of `dimensions` floats

        Raises:
            EmbeddingError: One of its subclasses, see module docstring
        """
        if not api_key or not api_key.strip():
            raise EmbeddingAuthError("No embedding credential configured")
        if not text or not text.strip():
            raise EmbeddingRequestError("Cannot embed empty text")

        result = await retry_with_backoff(
            lambda: self._request(text, api_key.strip()),
            self.retry_config,
            retry_on=(EmbeddingTransientError,),
            operation_name=f"embed[{self.model}]",
        )
        if result.success:
            return result.result

        error = result.error
        if isinstance(error, EmbeddingTransientError):
            error.attempts = result.attempts
        raise error

    async def close(self) -> None:
        """Close cached SDK clients"""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
