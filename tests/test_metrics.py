"""Tests for learning metrics."""

from datetime import timedelta

import pytest

from app.features.insights.metrics import (
    MetricsAggregator,
    group_query_volume,
    intent_breakdown,
    resolution_rate,
    resolve_time_range,
)
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.shared.time_utils import utc_now


def add_query(store, found, hours_ago=0.0, intent=None, satisfaction=None):
    created_at = (utc_now() - timedelta(hours=hours_ago)).isoformat()
    return store.insert_query({
        "query_text": "q",
        "query_intent": intent,
        "found_in_docs": found,
        "user_satisfaction": satisfaction,
        "query_embedding": [0.1, 0.2],
        "created_at": created_at,
    })


class TestHelpers:

    def test_resolution_rate(self):
        assert resolution_rate(0, 0) == 0.0
        assert resolution_rate(2, 3) == 66.67
        assert resolution_rate(3, 3) == 100.0

    @pytest.mark.parametrize("token, expected", [
        ("1h", "1h"), ("7d", "7d"), ("90d", "90d"), ("bogus", "24h"), (None, "24h"),
    ])
    def test_resolve_time_range(self, token, expected):
        assert resolve_time_range(token) == expected

    def test_hour_buckets_sorted(self):
        rows = [
            {"created_at": "2026-03-01T14:45:00+00:00", "found_in_docs": True},
            {"created_at": "2026-03-01T09:05:00Z", "found_in_docs": False},
            {"created_at": "2026-03-01T14:01:00+00:00", "found_in_docs": False},
        ]

        buckets = group_query_volume(rows, "hour")

        assert [b["time"] for b in buckets] == ["2026-03-01 09:00", "2026-03-01 14:00"]
        assert buckets[1] == {"time": "2026-03-01 14:00", "total": 2, "resolved": 1, "resolution_rate": 50.0}

    def test_day_buckets_use_utc(self):
        rows = [
            {"created_at": "2026-03-01T23:30:00-02:00", "found_in_docs": True},
            {"created_at": "2026-03-01T10:00:00+00:00", "found_in_docs": True},
        ]

        buckets = group_query_volume(rows, "day")

        assert [b["time"] for b in buckets] == ["2026-03-01", "2026-03-02"]

    def test_intent_breakdown(self):
        rows = [
            {"query_intent": "how-to", "found_in_docs": True, "user_satisfaction": 5},
            {"query_intent": "how-to", "found_in_docs": False, "user_satisfaction": 3},
            {"query_intent": None, "found_in_docs": False},
        ]

        breakdown = intent_breakdown(rows)

        assert breakdown[0] == {
            "intent": "how-to",
            "total": 2,
            "resolved": 1,
            "resolution_rate": 50.0,
            "avg_satisfaction": 4.0,
        }
        assert breakdown[1]["intent"] == "none"
        assert breakdown[1]["avg_satisfaction"] is None


class FixedSummaryStore(InMemoryKnowledgeStore):
    """Window totals come from query_summary, not from the listed rows."""

    def query_summary(self, since):
        return {"total_queries": 5000, "resolved_queries": 4000, "avg_satisfaction": 4.2}


class TestAggregator:

    async def test_empty_store(self, store):
        metrics = await MetricsAggregator(store).compute_metrics("24h")

        assert metrics["total_queries"] == 0
        assert metrics["resolution_rate"] == 0.0
        assert metrics["avg_satisfaction"] is None
        assert metrics["volume_by_time"] == []
        assert metrics["embedding_coverage"]["coverage_percent"] == 0.0
        assert metrics["content_gaps"] == []

    async def test_window_and_rates(self, store):
        add_query(store, True, hours_ago=1, intent="how-to", satisfaction=4)
        add_query(store, True, hours_ago=2, intent="how-to", satisfaction=5)
        add_query(store, False, hours_ago=3, intent="reference")
        add_query(store, True, hours_ago=48)

        metrics = await MetricsAggregator(store).compute_metrics("24h")

        assert metrics["time_range"] == "24h"
        assert metrics["granularity"] == "hour"
        assert metrics["total_queries"] == 3
        assert metrics["resolved_queries"] == 2
        assert metrics["resolution_rate"] == 66.67
        assert metrics["avg_satisfaction"] == 4.5
        assert sum(b["total"] for b in metrics["volume_by_time"]) == 3
        assert len(metrics["recent_queries"]) == 4
        assert all("query_embedding" not in row for row in metrics["recent_queries"])

    async def test_totals_come_from_the_window_summary(self):
        store = FixedSummaryStore()
        add_query(store, True, hours_ago=1)

        metrics = await MetricsAggregator(store).compute_metrics("24h")

        assert metrics["total_queries"] == 5000
        assert metrics["resolved_queries"] == 4000
        assert metrics["resolution_rate"] == 80.0
        assert metrics["avg_satisfaction"] == 4.2
        assert sum(b["total"] for b in metrics["volume_by_time"]) == 1

    def test_in_memory_summary(self, store):
        add_query(store, True, hours_ago=1, satisfaction=4)
        add_query(store, False, hours_ago=2, satisfaction=3)
        add_query(store, True, hours_ago=3)
        add_query(store, True, hours_ago=30, satisfaction=1)

        summary = store.query_summary(utc_now() - timedelta(hours=24))

        assert summary == {"total_queries": 3, "resolved_queries": 2, "avg_satisfaction": 3.5}

    async def test_long_ranges_bucket_by_day(self, store):
        add_query(store, True, hours_ago=48)

        metrics = await MetricsAggregator(store).compute_metrics("7d")

        assert metrics["granularity"] == "day"
        assert metrics["total_queries"] == 1
        assert len(metrics["volume_by_time"][0]["time"]) == len("2026-03-01")

    async def test_unknown_range_means_24h(self, store):
        metrics = await MetricsAggregator(store).compute_metrics("2w")
        assert metrics["time_range"] == "24h"

    async def test_knowledge_stats(self, store, ingestion_service):
        await ingestion_service.ingest("Hooks", "React hooks let components hold state.")
        add_query(store, True)

        stats = await MetricsAggregator(store).knowledge_stats()

        assert stats["total_documents"] == 1
        assert stats["total_chunks"] == 1
        assert stats["total_embeddings"] == 1
        assert stats["total_queries"] == 1
        assert stats["embedding_coverage_percent"] == 100.0
