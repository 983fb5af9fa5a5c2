"""
Reconciliation between the record store and the vector index.

Opt-in companion to retry-by-recurrence:
- reconcile_pending() re-evaluates every record that qualifies on length
  but is still unflagged (e.g. its embedding failed and it was never
  edited again)
- prune_dangling() drops index entries whose record no longer exists

Run on demand by `heelix reconcile`, or periodically by run_forever() when
`reconcile_interval_seconds` is positive.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.models import RecordKind
from ..exceptions import RecordNotFoundError, VectorIndexError

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Scans for eligible-but-unindexed records and dangling index entries.

    Args:
        store: RecordStore
        index: IndexHandle
        orchestrator: VectorizationOrchestrator used to index pending records
        config: Config for the threshold and interval
    """

    def __init__(self, store, index, orchestrator, config):
        self.store = store
        self.index = index
        self.orchestrator = orchestrator
        self.config = config

    async def reconcile_pending(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Vectorize records whose flag is still false.

        Args:
            limit: Maximum records to attempt per kind

        Returns:
            Dict with per-status counts
        """
        start_time = datetime.now()
        min_chars = self.config.vectorize_min_chars
        by_status: Dict[str, int] = {}
        attempted = 0

        for kind in RecordKind:
            pending = await asyncio.to_thread(
                self.store.list_unvectorized, kind, min_chars, limit
            )
            if pending:
                logger.info(f"Reconciling {len(pending)} unindexed {kind.value} record(s)")

            for record_id in pending:
                try:
                    result = await self.orchestrator.vectorize(kind, record_id)
                except RecordNotFoundError:
                    # Deleted since the scan
                    continue
                attempted += 1
                status = result.status.value
                by_status[status] = by_status.get(status, 0) + 1

        return {
            "success": True,
            "attempted": attempted,
            "by_status": by_status,
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
        }

    async def prune_dangling(self) -> Dict[str, Any]:
        """
        Remove index entries whose record has been deleted.

        Returns:
            Dict with entries checked and removed
        """
        try:
            tags = await self.index.tags()
        except VectorIndexError as e:
            logger.error(f"Prune skipped, vector index unavailable: {e}")
            return {"success": False, "error": str(e)}

        removed = 0
        for tag in tags:
            exists = await asyncio.to_thread(self.store.record_exists, tag.kind, tag.record_id)
            if exists:
                continue
            try:
                if await self.index.delete(tag):
                    removed += 1
            except VectorIndexError as e:
                logger.warning(f"Could not prune {tag.key}: {e}")

        if removed:
            logger.info(f"Pruned {removed} dangling index entr{'y' if removed == 1 else 'ies'}")
        return {"success": True, "checked": len(tags), "removed": removed}

    async def run_once(self, prune: bool = False) -> Dict[str, Any]:
        stats = {"pending": await self.reconcile_pending()}
        if prune:
            stats["prune"] = await self.prune_dangling()
        return stats

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """
        Reconcile periodically until cancelled.

        Each pass both indexes pending records and prunes dangling entries.
        A failing pass is logged and the next one runs on schedule.
        """
        if interval_seconds is None:
            interval_seconds = float(
                self.config.get("reconcile_interval_seconds", "vectorization", 0)
            )
        if interval_seconds <= 0:
            raise ValueError("reconcile interval must be positive")

        logger.info(f"Background reconciliation every {interval_seconds:.0f}s")
        while True:
            await asyncio.sleep(interval_seconds)
            if not self.index.is_open:
                logger.debug("Vector index not open, reconciliation pass skipped")
                continue
            try:
                await self.run_once(prune=True)
            except Exception as e:
                logger.warning(f"Reconciliation pass failed, retrying in {interval_seconds:.0f}s: {e}")
