"""
Shared vector index for activities and documents.

One ANN index holds entries of both kinds, keyed by IndexTag. The
IndexHandle is the only way in: it is built by the application, opened
explicitly at startup, and serialises every insert, delete and search
behind a single asyncio.Lock. Backend calls are blocking, so they run in a
worker thread while the lock is held.

CS Concept: Chroma's HNSW graph gives approximate nearest neighbours in
roughly O(log n). Cosine distance is used, so score = 1 - distance.

Architecture Pattern: the backend sits behind the small VectorIndex
interface; ChromaDB is the persistent implementation and InMemoryVectorIndex
an exact, process-local one.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import HeelixError, IndexCorruptError, IndexUnavailableError
from .tags import IndexTag

logger = logging.getLogger(__name__)

# Lazy import, chromadb is slow to load
_chromadb = None


def _get_chromadb():
    """Lazy import ChromaDB."""
    global _chromadb
    if _chromadb is None:
        try:
            import chromadb
            _chromadb = chromadb
        except ImportError:
            raise ImportError("ChromaDB not installed. Run: pip install chromadb")
    return _chromadb


# Extra candidates fetched per search so equal scores at the cut-off can be
# ordered by insertion sequence
TIE_BREAK_CANDIDATES = 16

QueryRow = Tuple[str, float, Dict[str, Any]]


@dataclass(frozen=True)
class IndexHit:
    """One search result"""
    tag: IndexTag
    score: float
    seq: int = 0


class VectorIndex(ABC):
    """
    Blocking backend interface used by IndexHandle.

    Entries are keyed by IndexTag.key; metadata holds kind, record_id and
    the insertion sequence number.
    """

    @abstractmethod
    def open(self) -> None:
        """Create or load the backing store"""

    @abstractmethod
    def upsert(self, key: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        """Add or replace one entry"""

    @abstractmethod
    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        """Metadata of an entry, or None if absent"""

    @abstractmethod
    def query(self, vector: Sequence[float], n_results: int) -> List[QueryRow]:
        """Nearest entries as (key, cosine distance, metadata)"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove an entry; False if it was not present"""

    @abstractmethod
    def count(self) -> int:
        """Number of entries"""

    @abstractmethod
    def keys(self) -> List[str]:
        """All entry keys"""

    @abstractmethod
    def stored_dimensions(self) -> Optional[int]:
        """Dimensionality of persisted entries, None when empty"""

    def close(self) -> None:
        """Flush and release resources"""


class ChromaVectorIndex(VectorIndex):
    """
    Persistent ChromaDB collection in cosine space.

    Args:
        persist_directory: Where ChromaDB keeps its files
        collection_name: Collection holding both record kinds

    Example:
        backend = ChromaVectorIndex(config.get_index_directory())
        handle = IndexHandle(backend, dimensions=1536)
        await handle.open()
    """

    def __init__(self, persist_directory: Path, collection_name: str = "heelix_records"):
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self.client = None
        self.collection = None

    def open(self) -> None:
        self.persist_directory.mkdir(parents=True, exist_ok=True)
        chromadb = _get_chromadb()
        self.client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=chromadb.Settings(anonymized_telemetry=False),
        )
        self.collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
            # Vectors always come from EmbeddingClient
            embedding_function=None,
        )
        logger.info(
            f"Opened collection {self.collection_name} at {self.persist_directory} "
            f"({self.collection.count()} entries)"
        )

    def upsert(self, key: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        self.collection.upsert(
            ids=[key],
            embeddings=[list(vector)],
            metadatas=[metadata],
        )

    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        result = self.collection.get(ids=[key], include=["metadatas"])
        if not result["ids"]:
            return None
        return dict(result["metadatas"][0] or {})

    def query(self, vector: Sequence[float], n_results: int) -> List[QueryRow]:
        results = self.collection.query(
            query_embeddings=[list(vector)],
            n_results=n_results,
            include=["metadatas", "distances"],
        )
        rows = []
        for i in range(len(results["ids"][0])):
            rows.append((
                results["ids"][0][i],
                float(results["distances"][0][i]),
                dict(results["metadatas"][0][i] or {}),
            ))
        return rows

    def delete(self, key: str) -> bool:
        if self.get_metadata(key) is None:
            return False
        self.collection.delete(ids=[key])
        return True

    def count(self) -> int:
        return self.collection.count()

    def keys(self) -> List[str]:
        return list(self.collection.get(include=["metadatas"])["ids"])

    def stored_dimensions(self) -> Optional[int]:
        result = self.collection.get(limit=1, include=["embeddings"])
        embeddings = result.get("embeddings")
        # May be a numpy array, so no truthiness test
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    def close(self) -> None:
        # Chroma writes through on every call; dropping references is enough
        self.collection = None
        self.client = None


class InMemoryVectorIndex(VectorIndex):
    """Exact brute-force cosine index kept in process memory"""

    def __init__(self):
        self._entries: Dict[str, Tuple[List[float], Dict[str, Any]]] = {}

    def open(self) -> None:
        pass

    def upsert(self, key: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        self._entries[key] = (list(vector), dict(metadata))

    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        return dict(entry[1]) if entry else None

    def query(self, vector: Sequence[float], n_results: int) -> List[QueryRow]:
        query_norm = _norm(vector)
        rows = []
        for key, (stored, metadata) in self._entries.items():
            similarity = sum(a * b for a, b in zip(vector, stored)) / (query_norm * _norm(stored))
            rows.append((key, 1.0 - similarity, dict(metadata)))
        rows.sort(key=lambda row: row[1])
        return rows[:n_results]

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def count(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def stored_dimensions(self) -> Optional[int]:
        for vector, _ in self._entries.values():
            return len(vector)
        return None


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(x * x for x in vector))


class IndexHandle:
    """
    Exclusive-access wrapper around the shared vector index.

    Args:
        backend: VectorIndex implementation
        dimensions: Vector length every entry and query must have

    Example:
        handle = IndexHandle(ChromaVectorIndex(path), dimensions=1536)
        await handle.open()
        await handle.insert(IndexTag.document(12), vector)
        hits = await handle.search(query_vector, k=5)
        await handle.close()
    """

    def __init__(self, backend: VectorIndex, dimensions: int):
        self.backend = backend
        self.dimensions = dimensions
        self._lock = asyncio.Lock()
        self._open = False
        self._last_seq = 0

    @classmethod
    def from_config(cls, config) -> "IndexHandle":
        backend = ChromaVectorIndex(
            config.get_index_directory(),
            collection_name=config.get("collection_name", "vectorization", "heelix_records"),
        )
        return cls(backend, dimensions=config.embedding_dimensions)

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        """
        Create or load the backend and check it against the configured dimensionality.

        Raises:
            IndexUnavailableError: If the backend cannot be created or loaded
            IndexCorruptError: If persisted entries have another dimensionality
        """
        async with self._lock:
            if self._open:
                return
            try:
                await self._in_thread(self.backend.open)
                stored = await self._in_thread(self.backend.stored_dimensions)
            except HeelixError:
                raise
            except Exception as e:
                logger.error(f"Vector index could not be opened: {e}")
                raise IndexUnavailableError(f"Vector index could not be opened: {e}") from e

            if stored is not None and stored != self.dimensions:
                await self._in_thread(self.backend.close)
                raise IndexCorruptError(
                    f"Index holds {stored}-dimensional vectors, configured for {self.dimensions}"
                )
            self._open = True
        logger.info(f"Vector index open ({self.dimensions} dimensions)")

    async def close(self) -> None:
        """Wait for in-flight work, flush the backend and mark the handle closed"""
        async with self._lock:
            if not self._open:
                return
            self._open = False
            await self._in_thread(self.backend.close)
        logger.info("Vector index closed")

    @asynccontextmanager
    async def acquire_for_write(self):
        """
        Exclusive access to the backend.

        Suspends until the lock is free; the lock is released on every exit
        path, including cancellation.

        Raises:
            IndexUnavailableError: If the handle is not open
        """
        async with self._lock:
            self._require_open()
            yield self.backend

    def _require_open(self) -> None:
        if not self._open:
            raise IndexUnavailableError("Vector index is not open")

    async def _in_thread(self, func, *args):
        """
        Run a blocking backend call in a worker thread.

        A worker thread cannot be interrupted, so when the caller is cancelled
        this still waits for the call to finish before re-raising. The lock is
        therefore never released while the backend is mid-call.
        """
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            while not future.done():
                try:
                    await asyncio.wait({future})
                except asyncio.CancelledError:
                    continue
            if not future.cancelled() and future.exception() is not None:
                logger.warning(f"Backend call failed after cancellation: {future.exception()}")
            raise

    def _check_vector(self, vector: Sequence[float], what: str) -> List[float]:
        values = [float(x) for x in vector]
        if len(values) != self.dimensions:
            raise IndexCorruptError(
                f"{what} has {len(values)} dimensions, index expects {self.dimensions}"
            )
        if not all(math.isfinite(x) for x in values):
            raise IndexCorruptError(f"{what} contains non-finite values")
        return values

    def _next_seq(self) -> int:
        self._last_seq = max(time.time_ns(), self._last_seq + 1)
        return self._last_seq

    async def insert(self, tag: IndexTag, vector: Sequence[float]) -> None:
        """
        Add or replace the entry for `tag`.

        Replacing keeps the entry's original insertion sequence, so
        inserting the same tag twice leaves exactly one entry.

        Raises:
            IndexUnavailableError: If the handle is not open
            IndexCorruptError: On wrong dimensionality, non-finite or
                zero-norm vectors, or a backend failure
        """
        values = self._check_vector(vector, f"Vector for {tag.key}")
        if _norm(values) == 0.0:
            raise IndexCorruptError(f"Vector for {tag.key} has zero norm")

        async with self.acquire_for_write() as backend:
            try:
                existing = await self._in_thread(backend.get_metadata, tag.key)
                if existing and "seq" in existing:
                    seq = int(existing["seq"])
                else:
                    seq = self._next_seq()
                metadata = dict(tag.to_metadata(), seq=seq)
                await self._in_thread(backend.upsert, tag.key, values, metadata)
            except HeelixError:
                raise
            except Exception as e:
                raise IndexCorruptError(f"Index insert failed for {tag.key}: {e}") from e

        logger.debug(f"Indexed {tag.key}")

    async def delete(self, tag: IndexTag) -> bool:
        """Remove the entry for `tag`; returns False if there was none"""
        async with self.acquire_for_write() as backend:
            try:
                removed = await self._in_thread(backend.delete, tag.key)
            except Exception as e:
                raise IndexCorruptError(f"Index delete failed for {tag.key}: {e}") from e
        if removed:
            logger.info(f"Removed {tag.key} from vector index")
        return removed

    async def search(self, query_vector: Sequence[float], k: int) -> List[IndexHit]:
        """
        Up to k nearest entries, most similar first.

        Equal scores are ordered by insertion. An empty index, k <= 0 or a
        zero-norm query yields an empty list.

        Raises:
            IndexUnavailableError: If the handle is not open
            IndexCorruptError: On query dimensionality mismatch or backend failure
        """
        self._require_open()
        values = self._check_vector(query_vector, "Query vector")
        if k <= 0 or _norm(values) == 0.0:
            return []

        async with self.acquire_for_write() as backend:
            try:
                total = await self._in_thread(backend.count)
                if total == 0:
                    return []
                n_results = min(total, k + TIE_BREAK_CANDIDATES)
                rows = await self._in_thread(backend.query, values, n_results)
            except Exception as e:
                raise IndexCorruptError(f"Index search failed: {e}") from e

        hits = []
        for key, distance, metadata in rows:
            try:
                tag = IndexTag.parse(key)
            except ValueError:
                logger.warning(f"Skipping unrecognised index key {key!r}")
                continue
            hits.append(IndexHit(tag=tag, score=1.0 - distance, seq=int(metadata.get("seq", 0))))

        hits.sort(key=lambda hit: (-hit.score, hit.seq))
        return hits[:k]

    async def count(self) -> int:
        """
        Number of entries.

        Raises:
            IndexUnavailableError: If the handle is not open
            IndexCorruptError: On backend failure
        """
        async with self.acquire_for_write() as backend:
            try:
                return await self._in_thread(backend.count)
            except Exception as e:
                raise IndexCorruptError(f"Index count failed: {e}") from e

    async def tags(self) -> List[IndexTag]:
        """Every tag currently in the index"""
        async with self.acquire_for_write() as backend:
            try:
                keys = await self._in_thread(backend.keys)
            except Exception as e:
                raise IndexCorruptError(f"Index listing failed: {e}") from e
        tags = []
        for key in keys:
            try:
                tags.append(IndexTag.parse(key))
            except ValueError:
                logger.warning(f"Skipping unrecognised index key {key!r}")
        return tags
