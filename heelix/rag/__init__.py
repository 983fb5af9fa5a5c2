"""
Activity vectorization and semantic retrieval for Heelix.

Components:
- EmbeddingClient: text -> vector via the OpenAI embeddings API
- IndexHandle: the shared, lock-protected vector index
- VectorizationOrchestrator: decides when records are (re)indexed
- Retriever: similarity queries mapped back to store records
- Reconciler: opt-in catch-up and prune passes
"""

from .embeddings import EmbeddingClient
from .index import ChromaVectorIndex, IndexHandle, IndexHit, InMemoryVectorIndex, VectorIndex
from .reconcile import Reconciler
from .retriever import RetrievedItem, Retriever
from .tags import IndexTag
from .vectorizer import VectorizationOrchestrator, VectorizationResult, VectorizationStatus

__all__ = [
    "EmbeddingClient",
    "VectorIndex",
    "ChromaVectorIndex",
    "InMemoryVectorIndex",
    "IndexHandle",
    "IndexHit",
    "IndexTag",
    "VectorizationOrchestrator",
    "VectorizationResult",
    "VectorizationStatus",
    "Retriever",
    "RetrievedItem",
    "Reconciler",
]
