"""Tests for content-gap detection and lifecycle."""

from datetime import timedelta

import pytest

from app.features.insights.gaps import ContentGapDetector, GapObservation, compute_priority, topic_keys
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.shared.errors import NotFoundError, ValidationError
from app.shared.time_utils import utc_now


def failed_query(store, text="react server components streaming", topics=("react",), **extra):
    """Insert a tracked query that found nothing and return its observation."""
    row = store.insert_query({
        "query_text": text,
        "detected_topics": list(topics) or None,
        "detected_languages": None,
        "found_in_docs": False,
        "top_similarity_score": None,
        **extra,
    })
    return GapObservation.from_query_row(row)


class TopicRecordingStore(InMemoryKnowledgeStore):

    def __init__(self):
        super().__init__()
        self.topic_reads = []

    def list_topic_queries(self, topic, since):
        self.topic_reads.append(topic)
        return super().list_topic_queries(topic, since)


class TestPriority:

    @pytest.mark.parametrize("frequency, similarity, expected", [
        (2, 0.0, "low"),
        (3, 0.8, "medium"),
        (5, 0.8, "high"),
        (10, 0.8, "critical"),
        (3, 0.1, "high"),
        (5, None, "critical"),
        (12, 0.0, "critical"),
    ])
    def test_compute_priority(self, frequency, similarity, expected):
        assert compute_priority(frequency, similarity) == expected

    def test_monotonic_in_frequency(self):
        ranks = ["low", "medium", "high", "critical"]
        previous = 0
        for frequency in range(1, 15):
            rank = ranks.index(compute_priority(frequency, 0.9))
            assert rank >= previous
            previous = rank


class TestTopicKeys:

    def test_topics_and_languages(self):
        observation = GapObservation("q", topics=["React"], languages=["typescript"])
        assert topic_keys(observation) == ["react", "typescript"]

    def test_keywords_when_nothing_detected(self):
        observation = GapObservation("deploying serverless functions deploying")
        assert topic_keys(observation) == ["deploying", "serverless", "functions"]


class TestFailureRule:

    def test_not_found_is_failed(self, detector):
        assert detector.is_failed(GapObservation("q", found_in_docs=False))

    def test_low_confidence_is_failed(self, detector):
        assert detector.is_failed(GapObservation("q", found_in_docs=True, top_score=0.4))

    def test_confident_hit_is_not_failed(self, detector):
        assert not detector.is_failed(GapObservation("q", found_in_docs=True, top_score=0.8))

    def test_fulltext_hit_without_score_is_not_failed(self, detector):
        assert not detector.is_failed(GapObservation("q", found_in_docs=True, top_score=None))


class TestLiveDetection:

    async def test_gap_created_on_third_failure(self, store, detector):
        touched = []
        for i in range(3):
            observation = failed_query(store, user_id=f"user-{i}")
            touched.append(await detector.observe_query(observation))

        assert touched[0] == [] and touched[1] == []
        assert len(store.gaps) == 1
        gap = next(iter(store.gaps.values()))
        assert gap["topic"] == "react"
        assert gap["query_frequency"] == 3
        assert gap["status"] == "identified"
        assert gap["priority"] == "high"
        assert gap["estimated_users_affected"] == 3
        assert len(gap["example_queries"]) == 1

    async def test_fourth_failure_reinforces(self, store, detector):
        for _ in range(3):
            await detector.observe_query(failed_query(store))

        await detector.observe_query(failed_query(store, text="react suspense boundaries"))

        assert len(store.gaps) == 1
        gap = next(iter(store.gaps.values()))
        assert gap["query_frequency"] == 4
        assert "react suspense boundaries" in gap["example_queries"]

    async def test_untracked_observation_counts(self, store, detector):
        failed_query(store)
        failed_query(store)

        touched = await detector.observe_query(
            GapObservation("react compiler output", topics=["react"], found_in_docs=False)
        )

        assert len(touched) == 1
        assert touched[0]["query_frequency"] == 3

    async def test_old_failures_fall_outside_the_window(self, store, detector):
        old = (utc_now() - timedelta(days=30)).isoformat()
        failed_query(store, created_at=old)
        failed_query(store, created_at=old)

        assert await detector.observe_query(failed_query(store)) == []
        assert store.gaps == {}

    async def test_successful_search_is_ignored(self, store, detector):
        observation = GapObservation("react hooks", topics=["react"], found_in_docs=True, top_score=0.95)
        assert await detector.observe_query(observation) == []

    async def test_window_read_is_scoped_to_the_topic(self):
        store = TopicRecordingStore()
        detector = ContentGapDetector(store)
        for i in range(50):
            failed_query(store, text=f"vue router question {i}", topics=("vue",))
        failed_query(store)
        failed_query(store)

        touched = await detector.observe_query(failed_query(store))

        assert [gap["topic"] for gap in touched] == ["react"]
        assert touched[0]["query_frequency"] == 3
        assert store.topic_reads == ["react"]

    async def test_keyword_topics_match_on_query_text(self, store, detector):
        failed_query(store, text="deploying serverless functions", topics=())
        failed_query(store, text="Deploying serverless functions again", topics=())

        touched = await detector.observe_query(
            failed_query(store, text="deploying serverless functions", topics=())
        )

        assert sorted(gap["topic"] for gap in touched) == ["deploying", "functions", "serverless"]


class TestBatchDetection:

    async def test_reprocessing_does_not_duplicate(self, store, detector):
        observations = [failed_query(store) for _ in range(3)]

        await detector.process(observations)
        await detector.process(observations)

        assert len(store.gaps) == 1
        assert next(iter(store.gaps.values()))["query_frequency"] == 6

    async def test_groups_below_minimum_are_skipped(self, store, detector):
        observations = [failed_query(store), failed_query(store, topics=("vue",))]
        assert await detector.process(observations) == []

    async def test_process_window_reads_tracked_queries(self, store, detector):
        for _ in range(3):
            failed_query(store, topics=("docker",))

        gaps = await detector.process_window(days=7)

        assert [gap["topic"] for gap in gaps] == ["docker"]

    async def test_priority_never_drops_on_reinforcement(self, store, detector):
        gap = store.insert_gap({
            "topic": "react",
            "query_frequency": 3,
            "failed_query_count": 3,
            "avg_similarity_score": 0.9,
            "priority": "critical",
            "status": "identified",
            "example_queries": [],
            "estimated_users_affected": 0,
        })

        updated = await detector._reinforce(
            gap, [GapObservation("react hooks", ["react"], found_in_docs=True, top_score=0.45)]
        )

        assert updated["query_frequency"] == 4
        assert updated["priority"] == "critical"
        assert updated["avg_similarity_score"] == pytest.approx(0.7875)

    async def test_example_queries_are_capped(self, store, detector):
        observations = [failed_query(store, text=f"react question number {i}") for i in range(15)]

        gaps = await detector.process(observations)

        assert len(gaps[0]["example_queries"]) == 10
        assert gaps[0]["example_queries"][-1] == "react question number 14"


class TestLifecycle:

    async def test_resolve_stamps_resolved_at(self, store, detector):
        gap = store.insert_gap({"topic": "react", "status": "identified", "query_frequency": 3})

        updated = await detector.update_status(gap["id"], "resolved", resolved_by_page_ids=["page-1"])

        assert updated["status"] == "resolved"
        assert updated["resolved_at"]
        assert updated["resolved_by_page_ids"] == ["page-1"]
        assert store.find_active_gap("react") is None

    async def test_planned_keeps_resolution_plan(self, store, detector):
        gap = store.insert_gap({"topic": "react", "status": "identified", "query_frequency": 3})

        updated = await detector.update_status(gap["id"], "planned", resolution_plan="Write a hooks guide")

        assert updated["resolution_plan"] == "Write a hooks guide"
        assert "resolved_at" not in updated

    async def test_resolved_topic_opens_a_new_gap(self, store, detector):
        observations = [failed_query(store) for _ in range(3)]
        first = (await detector.process(observations))[0]
        await detector.update_status(first["id"], "resolved")

        second = (await detector.process(observations))[0]

        assert second["id"] != first["id"]
        assert len(store.gaps) == 2

    async def test_unknown_gap(self, detector):
        with pytest.raises(NotFoundError):
            await detector.update_status("missing", "planned")

    async def test_unknown_status(self, detector):
        with pytest.raises(ValidationError):
            await detector.update_status("missing", "archived")

    async def test_list_gaps_filters_by_status(self, store, detector):
        store.insert_gap({"topic": "react", "status": "identified", "query_frequency": 5})
        store.insert_gap({"topic": "vue", "status": "planned", "query_frequency": 9})

        planned = await detector.list_gaps(status="planned")
        everything = await detector.list_gaps()

        assert [gap["topic"] for gap in planned] == ["vue"]
        assert [gap["topic"] for gap in everything] == ["vue", "react"]
