"""
Shared fixtures for the Heelix test suite.

Provides a deterministic embedding client (no network), a configured
home directory, an initialized record store and an opened in-memory index.
"""

import hashlib
import math
import re
from typing import List

import pytest
import pytest_asyncio

from heelix.core.config import Config
from heelix.core.schema import initialize_database
from heelix.core.store import RecordStore
from heelix.exceptions import EmbeddingAuthError
from heelix.rag.index import IndexHandle, InMemoryVectorIndex

TEST_DIMENSIONS = 32
TEST_API_KEY = "sk-test-key"


class StubEmbeddingClient:
    """
    Deterministic stand-in for EmbeddingClient.

    Hashes each word into one of TEST_DIMENSIONS buckets, so texts sharing
    words are close in cosine space. Queue exceptions in `failures` to make
    the next calls fail.
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS):
        self.dimensions = dimensions
        self.calls: List[str] = []
        self.failures: List[Exception] = []
        self.closed = False

    def vector_for(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        return [x / norm for x in vector]

    async def embed(self, text: str, api_key: str) -> List[float]:
        self.calls.append(text)
        if not api_key:
            raise EmbeddingAuthError("No embedding credential configured")
        if self.failures:
            raise self.failures.pop(0)
        return self.vector_for(text)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def no_env_api_key(monkeypatch):
    """Keep the developer's real credentials out of the tests"""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("HEELIX_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("HEELIX_HOME", raising=False)


@pytest.fixture
def config(tmp_path):
    """Config in a temporary home with a small dimensionality and a test key"""
    cfg = Config(tmp_path / "heelix")
    cfg.set("embedding_dimensions", TEST_DIMENSIONS, section="vectorization")
    cfg.set("openai_api_key", TEST_API_KEY, section="vectorization")
    return cfg


@pytest.fixture
def store(config):
    db = initialize_database(config.get_database_path())
    return RecordStore(db, config=config)


@pytest.fixture
def embedder():
    return StubEmbeddingClient()


@pytest_asyncio.fixture
async def index():
    handle = IndexHandle(InMemoryVectorIndex(), dimensions=TEST_DIMENSIONS)
    await handle.open()
    yield handle
    await handle.close()
