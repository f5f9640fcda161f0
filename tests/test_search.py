"""Tests for the end-to-end search pipeline."""

import pytest

from app.features.insights.gaps import ContentGapDetector
from app.features.insights.tracker import QueryCorrelation, QueryTracker
from app.features.knowledge.embeddings import EmbeddingService
from app.features.knowledge.retriever import RetrievalEngine
from app.features.search.service import SearchService
from app.shared.errors import UpstreamProviderError, ValidationError

HOOKS_DOC = "React hooks let function components hold state. The effect hook runs after render."


@pytest.fixture
async def seeded(ingestion_service):
    return await ingestion_service.ingest("React hooks", HOOKS_DOC, source="react-docs")


class TestSearch:

    async def test_hybrid_search_is_tracked(self, store, search_service, seeded):
        result = await search_service.search("react hooks state", search_type="hybrid")

        assert result.outcome.method == "hybrid"
        assert result.outcome.page_ids == [seeded.page["id"]]
        assert result.embedding_error is None
        row = store.queries[result.query_id]
        assert row["query_text"] == "react hooks state"
        assert row["query_embedding"] is not None
        assert row["metadata"]["search_method"] == "hybrid"

    async def test_embedding_failure_falls_back_to_fulltext(self, store, failing_provider, seeded):
        service = SearchService(
            EmbeddingService(failing_provider, batch_delay_seconds=0),
            RetrievalEngine(store),
            QueryTracker(store),
            ContentGapDetector(store),
        )

        result = await service.search("effect hook", search_type="semantic")

        assert result.outcome.method == "fulltext"
        assert result.embedding_error
        assert result.outcome.found_in_docs is True
        assert store.queries[result.query_id]["query_embedding"] is None

    async def test_fulltext_skips_embedding(self, provider, search_service, seeded):
        calls_before = len(provider.calls)

        result = await search_service.search("effect hook", search_type="fulltext")

        assert result.outcome.method == "fulltext"
        assert len(provider.calls) == calls_before

    async def test_untracked_search(self, store, search_service, seeded):
        result = await search_service.search("react hooks", track_query=False)

        assert result.query_id is None
        assert store.queries == {}

    async def test_empty_query(self, search_service):
        with pytest.raises(ValidationError):
            await search_service.search("   ")

    async def test_observation_carries_correlation(self, search_service):
        result = await search_service.search(
            "svelte stores",
            search_type="fulltext",
            correlation=QueryCorrelation(user_id="u-7", session_id="s-1"),
        )

        observation = result.observation
        assert observation.found_in_docs is False
        assert observation.topics == ["svelte"]
        assert observation.query_id == result.query_id
        assert observation.audience_id == "u-7"

    async def test_response_shape(self, search_service, seeded):
        response = (await search_service.search("react hooks", search_type="fulltext")).to_response()

        assert response["success"] is True
        assert response["query"]["analysis"]["intent"] == "reference"
        assert response["search"]["resultCount"] == len(response["results"])
        assert response["search"]["foundInDocs"] is True


class TestGapDetectionHook:

    async def test_repeated_failures_open_a_gap(self, store, search_service):
        for _ in range(3):
            result = await search_service.search("svelte transitions", search_type="fulltext")
            await search_service.detect_gaps(result.observation, correlation_id="test")

        gaps = list(store.gaps.values())
        assert [gap["topic"] for gap in gaps] == ["svelte"]
        assert gaps[0]["query_frequency"] == 3

    async def test_detector_errors_are_swallowed(self, store, search_service, monkeypatch):
        async def broken(observation):
            raise RuntimeError("detector down")

        monkeypatch.setattr(search_service.detector, "observe_query", broken)
        result = await search_service.search("svelte transitions", search_type="fulltext")

        await search_service.detect_gaps(result.observation)


class TestSimilarQueries:

    async def test_finds_repeat_query(self, search_service):
        await search_service.search("react hooks state", search_type="semantic")

        similar = await search_service.similar_queries("react hooks state")

        assert [row["query_text"] for row in similar] == ["react hooks state"]

    async def test_requires_query(self, search_service):
        with pytest.raises(ValidationError):
            await search_service.similar_queries("")

    async def test_provider_failure_surfaces(self, store, failing_provider):
        service = SearchService(
            EmbeddingService(failing_provider),
            RetrievalEngine(store),
            QueryTracker(store),
            ContentGapDetector(store),
        )
        with pytest.raises(UpstreamProviderError):
            await service.similar_queries("react hooks")
