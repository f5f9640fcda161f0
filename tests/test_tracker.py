"""Tests for query tracking and feedback."""

import pytest

from app.features.insights.analyzer import analyze_query
from app.features.insights.tracker import QueryCorrelation, QueryTracker
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.features.knowledge.retriever import RetrievalOutcome, ScoredResult
from app.shared.errors import NotFoundError, ValidationError


class BrokenInsertStore(InMemoryKnowledgeStore):
    def insert_query(self, record):
        raise RuntimeError("database unavailable")


def outcome_with(count, method="semantic"):
    results = [
        ScoredResult(f"page-{i}", f"Page {i}", None, "content", None, "docs", 0.9 - i * 0.01, method)
        for i in range(count)
    ]
    return RetrievalOutcome(method, results)


class TestRecord:

    async def test_persists_analysis_and_outcome(self, store, tracker):
        analysis = analyze_query("How do I use React hooks?")

        query_id = await tracker.record(
            "How do I use React hooks?",
            analysis,
            [0.1, 0.2],
            outcome_with(2),
            response_time_ms=42,
            correlation=QueryCorrelation(session_id="s1", user_id="u1"),
        )

        row = store.queries[query_id]
        assert row["query_intent"] == "how-to"
        assert row["detected_topics"] == ["react"]
        assert row["detected_languages"] is None
        assert row["found_in_docs"] is True
        assert row["top_similarity_score"] == pytest.approx(0.9)
        assert row["relevant_page_ids"] == ["page-0", "page-1"]
        assert row["response_time_ms"] == 42
        assert row["session_id"] == "s1"
        assert row["user_id"] == "u1"
        assert row["metadata"] == {"search_method": "semantic", "result_count": 2}

    async def test_relevant_page_ids_are_capped(self, store, tracker):
        query_id = await tracker.record("hooks", analyze_query("hooks"), None, outcome_with(12), 5)
        assert len(store.queries[query_id]["relevant_page_ids"]) == 10

    async def test_no_results(self, store, tracker):
        query_id = await tracker.record("hooks", analyze_query("hooks"), None, RetrievalOutcome("fulltext", []), 5)

        row = store.queries[query_id]
        assert row["found_in_docs"] is False
        assert row["top_similarity_score"] is None
        assert row["relevant_page_ids"] == []

    async def test_failure_is_swallowed(self):
        tracker = QueryTracker(BrokenInsertStore())

        query_id = await tracker.record("hooks", analyze_query("hooks"), None, outcome_with(1), 5)

        assert query_id is None


class TestFeedback:

    async def test_attaches_feedback(self, store, tracker):
        query_id = await tracker.record("hooks", analyze_query("hooks"), None, outcome_with(1), 5)

        updated = await tracker.attach_feedback(query_id, satisfaction=4, feedback_text="useful", was_helpful=True)

        assert updated["user_satisfaction"] == 4
        assert updated["user_feedback_text"] == "useful"
        assert store.queries[query_id]["was_helpful"] is True

    @pytest.mark.parametrize("satisfaction", [0, 6])
    async def test_satisfaction_out_of_range(self, tracker, satisfaction):
        with pytest.raises(ValidationError):
            await tracker.attach_feedback("any-id", satisfaction=satisfaction)

    async def test_missing_query_id(self, tracker):
        with pytest.raises(ValidationError):
            await tracker.attach_feedback("", satisfaction=3)

    async def test_unknown_query(self, tracker):
        with pytest.raises(NotFoundError):
            await tracker.attach_feedback("does-not-exist", satisfaction=3)


async def test_similar_queries(store, tracker):
    await tracker.record("react hooks", analyze_query("react hooks"), [1.0, 0.0], outcome_with(1), 5)
    await tracker.record("css grid", analyze_query("css grid"), [0.0, 1.0], outcome_with(1), 5)

    similar = await tracker.find_similar_queries([0.99, 0.05], threshold=0.85)

    assert [row["query_text"] for row in similar] == ["react hooks"]
    assert "query_embedding" not in similar[0]
