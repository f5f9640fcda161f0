"""Tests for the embedding provider adapter and the backfill job."""

import pytest

from app.core.config import settings
from app.features.knowledge.embeddings import (
    EmbeddingService,
    ProviderResponse,
    build_coverage_report,
    estimate_cost,
)
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.shared.errors import UpstreamProviderError, ValidationError

from tests.conftest import FakeEmbeddingProvider


def add_pages(store, count, source_name="docs"):
    source = store.get_or_create_source(source_name, "manual")
    return [
        store.upsert_page({
            "url": f"https://docs.example.com/{source_name}/{i}",
            "title": f"Page {i}",
            "content": f"Content for page number {i}.",
            "source_id": source["id"],
        })
        for i in range(count)
    ]


class FlakyUpdateStore(InMemoryKnowledgeStore):
    """Rejects embedding writes for selected row ids."""

    def __init__(self):
        super().__init__()
        self.reject_ids = set()

    def update_embedding(self, target, row_id, *args, **kwargs):
        if row_id in self.reject_ids:
            raise RuntimeError("write rejected")
        return super().update_embedding(target, row_id, *args, **kwargs)


class ShortProvider(FakeEmbeddingProvider):
    """Returns one vector fewer than it was asked for."""

    async def create(self, texts):
        response = await super().create(texts)
        return ProviderResponse(vectors=response.vectors[:-1], total_tokens=response.total_tokens)


class TestTokenAccounting:

    def test_aggregate_is_split_evenly(self):
        response = ProviderResponse(vectors=[[0.1]] * 3, total_tokens=300)
        assert EmbeddingService._split_tokens(response, 3) == [100, 100, 100]

    def test_per_item_counts_win_when_present(self):
        response = ProviderResponse(vectors=[[0.1]] * 2, total_tokens=30, per_item_tokens=[10, 20])
        assert EmbeddingService._split_tokens(response, 2) == [10, 20]

    def test_cost(self):
        assert estimate_cost(1000, 0.00002) == pytest.approx(0.00002)
        assert estimate_cost(0, 0.00002) == 0


class TestPrepareText:

    def test_long_text_is_truncated_with_marker(self, provider):
        service = EmbeddingService(provider, max_tokens=10)
        text, truncated = service.prepare_text("x" * 100)

        assert truncated is True
        assert text == "x" * 40 + "..."

    def test_short_text_is_untouched(self, provider):
        service = EmbeddingService(provider, max_tokens=10)
        assert service.prepare_text("short") == ("short", False)


class TestEmbed:

    async def test_single_text(self, embedding_service):
        result = await embedding_service.embed("react hooks")

        assert len(result.embedding) == 64
        assert result.token_count > 0
        assert result.truncated is False

    async def test_provider_failure_raises(self, failing_provider):
        service = EmbeddingService(failing_provider)
        with pytest.raises(UpstreamProviderError):
            await service.embed("react hooks")

    async def test_batch_preserves_order_and_isolates_failures(self):
        provider = FakeEmbeddingProvider(fail_on_calls=[1])
        service = EmbeddingService(provider, batch_size=2, batch_delay_seconds=0)

        results = await service.embed_batch(["one", "two", "three", "four"])

        assert len(provider.calls) == 2
        assert [r.embedding is None for r in results] == [True, True, False, False]
        assert results[0].error
        assert results[2].embedding is not None

    async def test_short_batch_response_fails_the_whole_batch(self):
        service = EmbeddingService(ShortProvider(), batch_size=3, batch_delay_seconds=0)

        results = await service.embed_batch(["one", "two", "three"])

        assert len(results) == 3
        assert all(r.embedding is None for r in results)
        assert "2 vectors for 3 inputs" in results[0].error

    async def test_single_embed_without_vector_raises(self):
        service = EmbeddingService(ShortProvider())
        with pytest.raises(UpstreamProviderError):
            await service.embed("react hooks")


class TestBackfill:

    async def test_embeds_missing_pages(self, store, embedding_service):
        add_pages(store, 3)

        result = await embedding_service.generate_missing_embeddings()

        assert result.processed == 3
        assert result.failed == 0
        assert result.batches == 1
        assert result.total_tokens > 0
        assert all(page["embedding"] is not None for page in store.pages.values())
        assert all(page["embedding_model"] == "fake-embedding-small" for page in store.pages.values())

    async def test_failed_batch_does_not_stop_the_run(self, store):
        add_pages(store, 10)
        provider = FakeEmbeddingProvider(fail_on_calls=[1])
        service = EmbeddingService(provider, store=store, batch_size=5, batch_delay_seconds=0)

        result = await service.generate_missing_embeddings()

        assert result.batches == 2
        assert result.processed == 5
        assert result.failed == 5
        assert result.embedding_failures == 5
        assert result.update_failures == 0
        assert len(result.errors) == 1

    async def test_update_failures_are_counted_separately(self, provider):
        store = FlakyUpdateStore()
        pages = add_pages(store, 3)
        store.reject_ids.add(pages[1]["id"])
        service = EmbeddingService(provider, store=store, batch_delay_seconds=0)

        result = await service.generate_missing_embeddings()

        assert result.processed == 2
        assert result.failed == 1
        assert result.update_failures == 1
        assert result.embedding_failures == 0

    async def test_timeout_stops_before_the_next_batch(self, store, provider):
        add_pages(store, 3)
        service = EmbeddingService(provider, store=store, batch_delay_seconds=0, run_timeout_seconds=0)

        result = await service.generate_missing_embeddings()

        assert result.timed_out is True
        assert result.batches == 0
        assert result.processed == 0
        assert provider.calls == []

    async def test_limit(self, store, embedding_service):
        add_pages(store, 4)

        result = await embedding_service.generate_missing_embeddings(limit=2)

        assert result.processed == 2
        assert len(store.fetch_missing_embeddings("pages", 10)) == 2

    async def test_unknown_target(self, embedding_service):
        with pytest.raises(ValidationError):
            await embedding_service.generate_missing_embeddings(target="sources")

    async def test_regenerate_clears_first(self, store, embedding_service):
        add_pages(store, 2)
        await embedding_service.generate_missing_embeddings()

        result = await embedding_service.regenerate_all_embeddings()

        assert result.processed == 2

    async def test_regenerate_is_not_capped_by_the_backfill_limit(self, store, embedding_service, monkeypatch):
        add_pages(store, 3)
        await embedding_service.generate_missing_embeddings()
        monkeypatch.setattr(settings, "EMBEDDING_BACKFILL_LIMIT", 2)

        result = await embedding_service.regenerate_all_embeddings()

        assert result.processed == 3
        assert store.fetch_missing_embeddings("pages", 10) == []

    async def test_short_provider_response_marks_rows_failed(self, store):
        add_pages(store, 3)
        service = EmbeddingService(ShortProvider(), store=store, batch_delay_seconds=0)

        result = await service.generate_missing_embeddings()

        assert result.processed == 0
        assert result.failed == 3
        assert result.embedding_failures == 3
        assert result.total_tokens == 0
        assert len(store.fetch_missing_embeddings("pages", 10)) == 3

    async def test_chunks_target(self, store, embedding_service):
        page = add_pages(store, 1)[0]
        store.replace_chunks(page["id"], [
            {"chunk_index": 0, "content": "First chunk of the page."},
            {"chunk_index": 1, "content": "Second chunk of the page."},
        ])

        result = await embedding_service.generate_missing_embeddings(target="chunks")

        assert result.processed == 2
        assert all(chunk["embedding"] is not None for chunk in store.chunks.values())


class TestCoverage:

    def test_report_rolls_up_sources(self):
        report = build_coverage_report([
            {"source_id": "a", "source_name": "react", "total_pages": 4, "embedded_pages": 3},
            {"source_id": "b", "source_name": "vue", "total_pages": 4, "embedded_pages": 1},
        ])

        assert report["total_pages"] == 8
        assert report["embedded_pages"] == 4
        assert report["coverage_percent"] == 50.0
        assert report["by_source"][0]["coverage_percent"] == 75.0

    def test_empty_report(self):
        report = build_coverage_report([])
        assert report["coverage_percent"] == 0.0
        assert report["by_source"] == []

    async def test_stats_from_store(self, store, embedding_service):
        add_pages(store, 2, source_name="react")
        add_pages(store, 2, source_name="vue")
        await embedding_service.generate_missing_embeddings(limit=3)

        stats = await embedding_service.get_embedding_stats()

        assert stats["total_pages"] == 4
        assert stats["embedded_pages"] == 3
        assert stats["coverage_percent"] == 75.0
        assert stats["model"] == "fake-embedding-small"
