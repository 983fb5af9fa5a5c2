"""
Unit tests for the retrieval API.
"""

from unittest.mock import patch

import pytest

from heelix.core.models import RecordKind
from heelix.exceptions import (
    EmbeddingTransientError,
    EmbeddingUnavailableError,
    IndexCorruptError,
    RetrievalIndexError,
)
from heelix.rag.index import IndexHandle, InMemoryVectorIndex
from heelix.rag.retriever import Retriever
from heelix.rag.vectorizer import VectorizationOrchestrator


def make_text(length, topic):
    return (f"{topic} " * (length // (len(topic) + 1) + 1))[:length]


@pytest.fixture
def orchestrator(store, index, embedder, config):
    return VectorizationOrchestrator(store, index, embedder, config)


@pytest.fixture
def retriever(store, index, embedder, config):
    return Retriever(store, index, embedder, config)


@pytest.mark.asyncio
class TestRetrieve:

    async def test_empty_index_returns_empty_list(self, retriever, embedder):
        assert await retriever.retrieve("anything", k=5) == []
        assert embedder.calls == []

    async def test_maps_hits_to_current_text(self, retriever, orchestrator, store):
        result = await orchestrator.record_activity(
            "user", make_text(300, "garden"), window_title="Seed catalogue"
        )
        other = await orchestrator.record_activity("user", make_text(300, "taxes"))

        items = await retriever.retrieve("garden garden", k=2)

        assert [(i.record_kind, i.record_id) for i in items] == [
            (RecordKind.ACTIVITY, result.tag.record_id),
            (RecordKind.ACTIVITY, other.tag.record_id),
        ]
        assert items[0].text == make_text(300, "garden")
        assert items[0].title == "Seed catalogue"
        assert items[0].score > items[1].score

    async def test_returns_latest_document_text(self, retriever, orchestrator, store):
        document_id = store.add_blank_document()
        await orchestrator.update_document_text(document_id, make_text(300, "garden"))
        # Already vectorized: the index keeps the old vector, the store has the new text
        await orchestrator.update_document_text(document_id, make_text(300, "garden") + " edited")

        items = await retriever.retrieve("garden", k=1)
        assert items[0].text.endswith(" edited")
        assert items[0].title == "New Document"

    async def test_deleted_record_dropped_and_pruned(self, retriever, orchestrator, store, index):
        kept = await orchestrator.record_activity("user", make_text(300, "garden"))
        gone = await orchestrator.record_activity("user", make_text(300, "garden"))
        store.delete_activity(gone.tag.record_id)

        items = await retriever.retrieve("garden", k=5)

        assert [i.record_id for i in items] == [kept.tag.record_id]
        assert await index.tags() == [kept.tag]

    async def test_k_defaults_to_config(self, retriever, orchestrator, config):
        config.set("retrieval_default_k", 2, section="vectorization")
        for _ in range(4):
            await orchestrator.record_activity("user", make_text(300, "garden"))

        assert len(await retriever.retrieve("garden")) == 2

    async def test_missing_credential(self, retriever, orchestrator, config):
        await orchestrator.record_activity("user", make_text(300, "garden"))
        config.set("openai_api_key", "", section="vectorization")

        with pytest.raises(EmbeddingUnavailableError):
            await retriever.retrieve("garden")

    async def test_embedding_failure(self, retriever, orchestrator, embedder):
        await orchestrator.record_activity("user", make_text(300, "garden"))
        embedder.failures.append(EmbeddingTransientError("timeout"))

        with pytest.raises(EmbeddingUnavailableError) as exc_info:
            await retriever.retrieve("garden")
        assert isinstance(exc_info.value.cause, EmbeddingTransientError)

    async def test_index_not_open_returns_empty(self, store, embedder, config):
        closed = IndexHandle(InMemoryVectorIndex(), dimensions=config.embedding_dimensions)
        retriever = Retriever(store, closed, embedder, config)

        assert await retriever.retrieve("garden") == []

    async def test_index_failure_raises(self, retriever, orchestrator, index):
        await orchestrator.record_activity("user", make_text(300, "garden"))

        with patch.object(index, "search", side_effect=IndexCorruptError("broken graph")):
            with pytest.raises(RetrievalIndexError):
                await retriever.retrieve("garden")

    async def test_unreadable_index_raises_retrieval_error(self, store, embedder, config):
        class Unreadable(InMemoryVectorIndex):
            def count(self):
                raise RuntimeError("hnsw segment unreadable")

        broken = IndexHandle(Unreadable(), dimensions=config.embedding_dimensions)
        await broken.open()
        retriever = Retriever(store, broken, embedder, config)

        with pytest.raises(RetrievalIndexError):
            await retriever.retrieve("garden")
        assert await retriever.build_context("garden") == ""
        assert (await retriever.get_stats())["indexed_entries"] is None

    async def test_both_kinds_returned(self, retriever, orchestrator, store):
        text = make_text(300, "garden")
        await orchestrator.record_activity("user", text)
        document_id = store.add_blank_document()
        await orchestrator.update_document_text(document_id, text)

        items = await retriever.retrieve(text, k=5)
        assert [(i.record_kind, i.record_id) for i in items] == [
            (RecordKind.ACTIVITY, 1),
            (RecordKind.DOCUMENT, document_id),
        ]


@pytest.mark.asyncio
class TestBuildContext:

    async def test_formats_results(self, retriever, orchestrator):
        await orchestrator.record_activity(
            "user", make_text(300, "garden"), window_title="Seed catalogue"
        )

        context = await retriever.build_context("garden")

        assert context.startswith('Found 1 relevant record(s) for: "garden"')
        assert "**Result 1** [activity] | Seed catalogue | (relevance:" in context
        assert make_text(300, "garden") in context

    async def test_empty_when_nothing_found(self, retriever):
        assert await retriever.build_context("garden") == ""

    async def test_degrades_when_embedding_unavailable(self, retriever, orchestrator, config):
        await orchestrator.record_activity("user", make_text(300, "garden"))
        config.set("openai_api_key", "", section="vectorization")

        assert await retriever.build_context("garden") == ""


@pytest.mark.asyncio
async def test_stats(retriever, orchestrator, store):
    await orchestrator.record_activity("user", make_text(300, "garden"))
    await orchestrator.record_activity("user", "short")
    store.add_blank_document()

    stats = await retriever.get_stats()

    assert stats["indexed_entries"] == 1
    assert stats["by_kind"]["activity"] == {"total": 2, "vectorized": 1}
    assert stats["by_kind"]["document"] == {"total": 1, "vectorized": 0}
    assert stats["credential_configured"] is True


@pytest.mark.asyncio
async def test_stats_without_index(store, embedder, config):
    closed = IndexHandle(InMemoryVectorIndex(), dimensions=config.embedding_dimensions)
    stats = await Retriever(store, closed, embedder, config).get_stats()
    assert stats["indexed_entries"] is None
