"""
Custom exceptions for Heelix.
"""

from typing import Optional


class HeelixError(Exception):
    """Base exception for all Heelix errors."""
    pass


# === Embedding service ===

class EmbeddingError(HeelixError):
    """
    Error obtaining an embedding from the remote service.

    `transient` tells callers whether the same request may succeed later
    without a configuration change.
    """

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingTransientError(EmbeddingError):
    """
    Retries exhausted on a recoverable failure.

    Raised when:
    - The service is unreachable or the request times out
    - The service answers with a 5xx status
    - The request is rate limited (not quota exhaustion)
    """

    transient = True

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 0):
        super().__init__(message, status_code=status_code)
        self.attempts = attempts


class EmbeddingAuthError(EmbeddingError):
    """Credential missing or rejected (401/403)."""
    pass


class EmbeddingQuotaError(EmbeddingError):
    """Account quota exhausted (insufficient_quota)."""
    pass


class EmbeddingRequestError(EmbeddingError):
    """The service rejected the request itself (other 4xx)."""
    pass


class EmbeddingResponseError(EmbeddingError):
    """
    The service answered with something that is not a usable vector.

    Raised when:
    - The response carries no embedding
    - The embedding length differs from the configured dimensionality
    """
    pass


# === Vector index ===

class VectorIndexError(HeelixError):
    """Base error for the shared vector index."""
    pass


class IndexUnavailableError(VectorIndexError):
    """The index handle was never opened, failed to open, or was closed."""
    pass


class IndexCorruptError(VectorIndexError):
    """
    Structural failure inside the index.

    Raised when:
    - A vector's dimensionality differs from the index
    - A vector is non-finite or has zero norm
    - Persisted entries disagree with the configured dimensionality
    - The backend fails while mutating or querying
    """
    pass


# === Retrieval ===

class RetrievalError(HeelixError):
    """Base error for semantic retrieval."""
    pass


class EmbeddingUnavailableError(RetrievalError):
    """The query could not be embedded (missing credential or embedding failure)."""

    def __init__(self, message: str, cause: Optional[EmbeddingError] = None):
        super().__init__(message)
        self.cause = cause


class RetrievalIndexError(RetrievalError):
    """The index failed structurally while answering a query."""
    pass


# === Record store ===

class RecordNotFoundError(HeelixError):
    """A store operation addressed a record that does not exist."""

    def __init__(self, kind: str, record_id: int):
        super().__init__(f"No {kind} with id {record_id}")
        self.kind = kind
        self.record_id = record_id
