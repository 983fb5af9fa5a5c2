"""
Vectorization orchestrator.

Decides, on every capture or document edit, whether the record must be
embedded and indexed, then performs embed-then-insert and reconciles the
record's `vectorized` flag.

A record is indexed when ALL of these hold:
1. its text is longer than `vectorize_min_chars`
2. its `vectorized` flag is false (bypassed by force / reindex_on_edit)
3. `vectorization_enabled` is true
4. an embedding credential is configured

Failures never undo the text write. A record that failed to embed or index
keeps its flag false and is picked up again by the next write that
satisfies the trigger (or by the Reconciler, when enabled).
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.models import RecordKind
from ..exceptions import (
    EmbeddingError,
    IndexCorruptError,
    IndexUnavailableError,
    RecordNotFoundError,
    VectorIndexError,
)
from .tags import IndexTag

logger = logging.getLogger(__name__)


class VectorizationStatus(str, Enum):
    INDEXED = "indexed"
    TOO_SHORT = "too_short"
    ALREADY_VECTORIZED = "already_vectorized"
    DISABLED = "disabled"
    MISSING_CREDENTIAL = "missing_credential"
    EMBEDDING_FAILED = "embedding_failed"
    INDEX_UNAVAILABLE = "index_unavailable"
    INDEX_FAILED = "index_failed"
    FLAG_DRIFT = "flag_drift"


SKIPPED_STATUSES = frozenset({
    VectorizationStatus.TOO_SHORT,
    VectorizationStatus.ALREADY_VECTORIZED,
    VectorizationStatus.DISABLED,
    VectorizationStatus.MISSING_CREDENTIAL,
})


@dataclass
class VectorizationResult:
    """Outcome of one trigger evaluation"""
    tag: IndexTag
    status: VectorizationStatus
    detail: Optional[str] = None

    @property
    def indexed(self) -> bool:
        """True when an index insertion happened (even if the flag update drifted)"""
        return self.status in (VectorizationStatus.INDEXED, VectorizationStatus.FLAG_DRIFT)

    @property
    def skipped(self) -> bool:
        return self.status in SKIPPED_STATUSES

    def to_dict(self):
        return {
            "kind": self.tag.kind.value,
            "record_id": self.tag.record_id,
            "status": self.status.value,
            "detail": self.detail,
        }


class VectorizationOrchestrator:
    """
    Evaluates the vectorization trigger and performs embed-then-insert.

    Args:
        store: RecordStore (or any object with the same text/flag methods)
        index: Opened IndexHandle shared with retrieval
        embedder: EmbeddingClient
        config: Config, read at call time for flags, credential and threshold

    Example:
        orchestrator = VectorizationOrchestrator(store, index, embedder, config)
        result = await orchestrator.update_document_text(12, new_text)
        if result.status is VectorizationStatus.EMBEDDING_FAILED:
            ...  # retried on the next qualifying write
    """

    def __init__(self, store, index, embedder, config):
        self.store = store
        self.index = index
        self.embedder = embedder
        self.config = config

    # === Write paths ===

    async def record_activity(
        self,
        user_id: str,
        captured_text: str,
        interval_length: Optional[int] = None,
        window_title: Optional[str] = None,
    ) -> Optional[VectorizationResult]:
        """
        Persist a captured activity and evaluate it for indexing.

        Returns:
            VectorizationResult for the new activity, or None when user_id is
            empty (nothing is recorded)
        """
        if not user_id:
            logger.debug("Capture without a user id ignored")
            return None

        if interval_length is None:
            interval_length = int(self.config.get("capture_interval_seconds", "settings", 20))

        activity_id = await asyncio.to_thread(
            self.store.save_activity, user_id, captured_text, interval_length, window_title
        )
        return await self.vectorize(RecordKind.ACTIVITY, activity_id)

    async def update_document_text(
        self,
        document_id: int,
        text: str,
        force: bool = False,
    ) -> VectorizationResult:
        """
        Replace a document's text and evaluate it for indexing.

        With force=True, or when `reindex_on_edit` is enabled, an already
        vectorized document is embedded again and its entry replaced.

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        qualifies = await asyncio.to_thread(self.store.write_text, document_id, text)
        logger.debug(f"document:{document_id} written, qualifies on length/flag: {qualifies}")

        reindex = force or bool(self.config.get("reindex_on_edit", "vectorization", False))
        return await self.vectorize(RecordKind.DOCUMENT, document_id, force=reindex)

    # === Trigger evaluation ===

    async def vectorize(self, kind, record_id: int, force: bool = False) -> VectorizationResult:
        """
        Evaluate the trigger for an existing record and index it if eligible.

        Args:
            kind: RecordKind (or its string value)
            record_id: Record id within its kind
            force: Ignore the vectorized flag

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        tag = IndexTag(RecordKind(kind), record_id)

        text = await asyncio.to_thread(self.store.get_text, tag.kind, record_id)
        if text is None:
            raise RecordNotFoundError(tag.kind.value, record_id)

        skip = await self._check_trigger(tag, text, force)
        if skip is not None:
            logger.debug(f"{tag.key} not vectorized: {skip.status.value}")
            return skip

        if not self.index.is_open:
            logger.warning(f"Vector index not open, {tag.key} left unindexed")
            return VectorizationResult(
                tag, VectorizationStatus.INDEX_UNAVAILABLE, "Vector index is not open"
            )

        try:
            vector = await self.embedder.embed(text, self.config.get_openai_api_key())
        except EmbeddingError as e:
            if e.transient:
                logger.warning(f"Embedding failed for {tag.key} (will retry on next write): {e}")
            else:
                logger.error(f"Embedding failed for {tag.key}: {e}")
            return VectorizationResult(tag, VectorizationStatus.EMBEDDING_FAILED, str(e))

        try:
            await self.index.insert(tag, vector)
        except IndexUnavailableError as e:
            logger.warning(f"Vector index unavailable, {tag.key} left unindexed: {e}")
            return VectorizationResult(tag, VectorizationStatus.INDEX_UNAVAILABLE, str(e))
        except IndexCorruptError as e:
            logger.error(f"Vector index rejected {tag.key}: {e}")
            return VectorizationResult(tag, VectorizationStatus.INDEX_FAILED, str(e))

        try:
            flagged = await asyncio.to_thread(self.store.set_flag, tag.kind, record_id)
        except sqlite3.Error as e:
            logger.warning(f"Consistency drift: {tag.key} indexed but flag update failed: {e}")
            return VectorizationResult(tag, VectorizationStatus.FLAG_DRIFT, str(e))

        if not flagged:
            logger.warning(f"Consistency drift: {tag.key} indexed but the record is gone")
            return VectorizationResult(tag, VectorizationStatus.FLAG_DRIFT, "record deleted")

        logger.info(f"Vectorized {tag.key} ({len(text)} chars)")
        return VectorizationResult(tag, VectorizationStatus.INDEXED)

    async def _check_trigger(self, tag: IndexTag, text: str,
                             force: bool) -> Optional[VectorizationResult]:
        """Return a skip result, or None when the record must be indexed"""
        min_chars = self.config.vectorize_min_chars
        if len(text) <= min_chars:
            return VectorizationResult(
                tag, VectorizationStatus.TOO_SHORT, f"{len(text)} <= {min_chars} chars"
            )

        if not force:
            already = await asyncio.to_thread(self.store.get_flag, tag.kind, tag.record_id)
            if already:
                return VectorizationResult(tag, VectorizationStatus.ALREADY_VECTORIZED)

        if not self.config.is_vectorization_enabled():
            return VectorizationResult(tag, VectorizationStatus.DISABLED)

        if not self.config.get_openai_api_key():
            logger.info(f"No embedding credential configured, {tag.key} left unindexed")
            return VectorizationResult(tag, VectorizationStatus.MISSING_CREDENTIAL)

        return None

    # === Deletion ===

    async def forget(self, kind, record_id: int) -> bool:
        """
        Drop the index entry of a deleted record.

        Best effort: failures are logged and reported as False; the entry is
        then pruned lazily on a retrieval miss.
        """
        tag = IndexTag(RecordKind(kind), record_id)
        if not self.index.is_open:
            logger.debug(f"Vector index not open, {tag.key} left for lazy pruning")
            return False
        try:
            return await self.index.delete(tag)
        except VectorIndexError as e:
            logger.warning(f"Could not drop {tag.key} from the vector index: {e}")
            return False
