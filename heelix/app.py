"""
Application composition root.

Builds every component in a fixed order and tears them down again:

    startup:  config -> database schema -> record store -> Unassigned project
              -> index handle (opened) -> embedding client
              -> orchestrator, retriever, reconciler -> optional reconcile task
    shutdown: reconcile task cancelled -> index closed (flushed) -> SDK clients closed

Usage:
    async with await Application.create(config) as app:
        await app.orchestrator.record_activity("me", text)
        items = await app.retriever.retrieve("what was I reading")
"""

import asyncio
import logging
from typing import List, Optional

from .core.config import Config
from .core.models import RecordKind
from .core.schema import initialize_database
from .core.store import RecordStore
from .exceptions import VectorIndexError
from .rag.embeddings import EmbeddingClient
from .rag.index import IndexHandle, VectorIndex
from .rag.reconcile import Reconciler
from .rag.retriever import Retriever
from .rag.vectorizer import VectorizationOrchestrator, VectorizationResult

logger = logging.getLogger(__name__)


class Application:
    """Holds the opened components for one process"""

    def __init__(
        self,
        config: Config,
        store: RecordStore,
        index: IndexHandle,
        embedder,
    ):
        self.config = config
        self.store = store
        self.index = index
        self.embedder = embedder
        self.orchestrator = VectorizationOrchestrator(store, index, embedder, config)
        self.retriever = Retriever(store, index, embedder, config)
        self.reconciler = Reconciler(store, index, self.orchestrator, config)
        self._reconcile_task: Optional[asyncio.Task] = None

    @classmethod
    async def create(
        cls,
        config: Optional[Config] = None,
        backend: Optional[VectorIndex] = None,
        embedder=None,
        start_background: bool = True,
    ) -> "Application":
        """
        Build and open all components.

        A vector index that fails to open is logged; the application still
        starts, captures and edits are stored, and vectorization reports
        `index_unavailable` until the next start.

        Args:
            config: Configuration (defaults to Config())
            backend: Vector index backend (defaults to ChromaDB under the data directory)
            embedder: Embedding client (defaults to EmbeddingClient.from_config)
            start_background: Start the periodic reconciler when configured
        """
        if config is None:
            config = Config()

        db = await asyncio.to_thread(initialize_database, config.get_database_path())
        store = RecordStore(db, config=config)
        await asyncio.to_thread(store.ensure_unassigned_project)

        if backend is None:
            index = IndexHandle.from_config(config)
        else:
            index = IndexHandle(backend, dimensions=config.embedding_dimensions)
        try:
            await index.open()
        except VectorIndexError as e:
            logger.error(f"Starting without a vector index: {e}")

        if embedder is None:
            embedder = EmbeddingClient.from_config(config)

        app = cls(config, store, index, embedder)
        if start_background:
            app.start_reconciler()
        return app

    def start_reconciler(self) -> bool:
        """Start the periodic reconcile task if reconcile_interval_seconds > 0"""
        interval = float(self.config.get("reconcile_interval_seconds", "vectorization", 0))
        if interval <= 0 or self._reconcile_task is not None:
            return False
        self._reconcile_task = asyncio.create_task(
            self.reconciler.run_forever(interval), name="heelix-reconcile"
        )
        return True

    async def shutdown(self) -> None:
        if self._reconcile_task is not None:
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Background reconciler had stopped with an error: {e}")
            self._reconcile_task = None

        try:
            await self.index.close()
        finally:
            await self.embedder.close()
        logger.info("Heelix shut down")

    async def __aenter__(self) -> "Application":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # === Deletions that keep the index in step ===

    async def delete_activity(self, activity_id: int) -> bool:
        deleted = await asyncio.to_thread(self.store.delete_activity, activity_id)
        if deleted:
            await self.orchestrator.forget(RecordKind.ACTIVITY, activity_id)
        return deleted

    async def delete_document(self, document_id: int) -> bool:
        deleted = await asyncio.to_thread(self.store.delete_document, document_id)
        if deleted:
            await self.orchestrator.forget(RecordKind.DOCUMENT, document_id)
        return deleted

    async def delete_project(self, project_id: int) -> List[int]:
        """Delete a project; its documents leave the index with it"""
        document_ids = await asyncio.to_thread(self.store.delete_project, project_id)
        for document_id in document_ids:
            await self.orchestrator.forget(RecordKind.DOCUMENT, document_id)
        return document_ids

    # === Multi-project tagging ===

    async def tag_document(self, document_id: int, project_id: int) -> Optional[VectorizationResult]:
        """
        Add a document to another project and vectorize the new copy.

        Returns:
            The copy's VectorizationResult, or None if the document was
            already in the project
        """
        copy_id = await asyncio.to_thread(
            self.store.tag_document_with_project, document_id, project_id
        )
        if copy_id is None:
            return None
        return await self.orchestrator.vectorize(RecordKind.DOCUMENT, copy_id)

    async def untag_document(self, document_id: int, project_id: int) -> List[int]:
        """Remove a document from a project; the removed copies leave the index"""
        removed = await asyncio.to_thread(
            self.store.untag_document_from_project, document_id, project_id
        )
        for copy_id in removed:
            await self.orchestrator.forget(RecordKind.DOCUMENT, copy_id)
        return removed
