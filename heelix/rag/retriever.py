"""
Semantic retrieval over captured activities and project documents.

Embeds a query, searches the shared index and maps every hit back to the
record store for its current text. The index never stores text, so a hit
whose record has been deleted is dropped and its entry pruned.

CS Concept: This is the **Facade Pattern** - the chat engine sees one
`retrieve()` call instead of an embedding client, an index and a store.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.models import RecordKind
from ..exceptions import (
    EmbeddingError,
    EmbeddingUnavailableError,
    IndexCorruptError,
    IndexUnavailableError,
    RetrievalError,
    RetrievalIndexError,
    VectorIndexError,
)
from .index import IndexHit

logger = logging.getLogger(__name__)


@dataclass
class RetrievedItem:
    """A record matched by a query, with its current text"""
    record_kind: RecordKind
    record_id: int
    text: str
    score: float
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_kind": self.record_kind.value,
            "record_id": self.record_id,
            "text": self.text,
            "score": self.score,
            "title": self.title,
        }


class Retriever:
    """
    High-level interface for similarity queries.

    Args:
        store: RecordStore used to resolve hits to text
        index: IndexHandle shared with the orchestrator
        embedder: EmbeddingClient
        config: Config, read at call time for the credential and default k

    Example:
        retriever = Retriever(store, index, embedder, config)
        items = await retriever.retrieve("quarterly planning", k=5)
        context = await retriever.build_context("What did I plan for Q3?")
    """

    def __init__(self, store, index, embedder, config):
        self.store = store
        self.index = index
        self.embedder = embedder
        self.config = config

    def _default_k(self) -> int:
        return int(self.config.get("retrieval_default_k", "vectorization", 5))

    async def retrieve(self, query_text: str, k: Optional[int] = None) -> List[RetrievedItem]:
        """
        Records most similar to the query, most similar first.

        Args:
            query_text: Natural language query
            k: Maximum number of items (defaults to retrieval_default_k)

        Returns:
            Up to k items; empty when the index is not open or holds nothing

        Raises:
            EmbeddingUnavailableError: If the query cannot be embedded
            RetrievalIndexError: If the index fails structurally
        """
        if k is None:
            k = self._default_k()

        api_key = self.config.get_openai_api_key()
        if not api_key:
            raise EmbeddingUnavailableError("No embedding credential configured")

        if not self.index.is_open or k <= 0:
            return []
        try:
            if await self.index.count() == 0:
                return []
        except IndexUnavailableError:
            return []
        except IndexCorruptError as e:
            logger.error(f"Vector index failed during retrieval: {e}")
            raise RetrievalIndexError(str(e)) from e

        try:
            vector = await self.embedder.embed(query_text, api_key)
        except EmbeddingError as e:
            raise EmbeddingUnavailableError(f"Query could not be embedded: {e}", cause=e) from e

        try:
            hits = await self.index.search(vector, k)
        except IndexUnavailableError:
            # Closed between the check and the search
            return []
        except IndexCorruptError as e:
            logger.error(f"Vector index failed during retrieval: {e}")
            raise RetrievalIndexError(str(e)) from e

        items = []
        for hit in hits:
            item = await self._resolve(hit)
            if item is not None:
                items.append(item)

        logger.debug(f"Retrieved {len(items)}/{len(hits)} items for query ({len(query_text)} chars)")
        return items

    async def _resolve(self, hit: IndexHit) -> Optional[RetrievedItem]:
        tag = hit.tag
        text = await asyncio.to_thread(self.store.get_text, tag.kind, tag.record_id)
        if text is None:
            await self._prune(hit)
            return None

        title = await asyncio.to_thread(self.store.get_title, tag.kind, tag.record_id)
        return RetrievedItem(
            record_kind=tag.kind,
            record_id=tag.record_id,
            text=text,
            score=hit.score,
            title=title,
        )

    async def _prune(self, hit: IndexHit) -> None:
        try:
            await self.index.delete(hit.tag)
            logger.info(f"Pruned dangling index entry {hit.tag.key}")
        except VectorIndexError as e:
            logger.warning(f"Could not prune dangling entry {hit.tag.key}: {e}")

    async def build_context(self, query_text: str, k: Optional[int] = None) -> str:
        """
        Retrieve and format results as a grounding block for the chat engine.

        Returns an empty string when nothing is found or retrieval fails.
        """
        try:
            items = await self.retrieve(query_text, k)
        except RetrievalError as e:
            logger.warning(f"Retrieval unavailable, answering without context: {e}")
            return ""

        if not items:
            return ""

        formatted = [
            f'Found {len(items)} relevant record(s) for: "{query_text}"\n'
        ]

        for i, item in enumerate(items, 1):
            header_parts = [f"[{item.record_kind.value}]"]
            if item.title:
                header_parts.append(item.title)
            header_parts.append(f"(relevance: {item.score * 100:.0f}%)")

            formatted.append(f"\n**Result {i}** {' | '.join(header_parts)}:")
            formatted.append(item.text)
            formatted.append("\n---")

        return "\n".join(formatted)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about indexed content.

        Returns:
            Dict with the index entry count (None when the index is not open)
            and per-kind store totals and vectorized counts
        """
        try:
            indexed = await self.index.count()
        except VectorIndexError as e:
            logger.warning(f"Index entry count unavailable: {e}")
            indexed = None
        by_kind = await asyncio.to_thread(self.store.get_counts)
        return {
            "indexed_entries": indexed,
            "by_kind": by_kind,
            "vectorization_enabled": self.config.is_vectorization_enabled(),
            "credential_configured": bool(self.config.get_openai_api_key()),
        }
