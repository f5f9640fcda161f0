"""
Content-gap detector.

Turns failed or low-confidence searches into topic-level content_gaps rows.

Two entry points:
- `process(observations)` groups a batch by topic key and creates or
  reinforces a gap for every group with at least `min_frequency` failures.
- `observe_query(observation)` is the live loop run after each search. An
  active gap for the topic is reinforced; otherwise failed tracked queries
  on that topic inside the detection window are counted and the gap is
  created once the count reaches `min_frequency`.

An active (non-resolved) gap is always reinforced, never duplicated.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.features.insights.analyzer import extract_keywords
from app.shared.constants import GAP_PRIORITIES, GAP_STATUSES
from app.shared.errors import NotFoundError, ValidationError
from app.shared.time_utils import parse_timestamp, utc_now

logger = logging.getLogger("Javari.Insights.Gaps")

MAX_KEYWORD_TOPICS = 3
MAX_SUBTOPICS = 5


@dataclass
class GapObservation:
    """One search outcome as the gap detector sees it."""
    query_text: str
    topics: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    found_in_docs: bool = False
    top_score: Optional[float] = None
    query_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    observed_at: Optional[datetime] = None

    @classmethod
    def from_query_row(cls, row: Dict[str, Any]) -> "GapObservation":
        return cls(
            query_text=row.get("query_text") or "",
            topics=list(row.get("detected_topics") or []),
            languages=list(row.get("detected_languages") or []),
            found_in_docs=bool(row.get("found_in_docs")),
            top_score=row.get("top_similarity_score"),
            query_id=row.get("id"),
            user_id=row.get("user_id"),
            session_id=row.get("session_id"),
            observed_at=parse_timestamp(row.get("created_at")),
        )

    @property
    def audience_id(self) -> Optional[str]:
        return self.user_id or self.session_id


def topic_keys(observation: GapObservation) -> List[str]:
    """
    Normalised topic keys for an observation.

    Detected topics and languages when there are any, otherwise up to three
    extracted keywords.
    """
    keys: List[str] = []
    for term in observation.topics + observation.languages:
        key = term.strip().lower()
        if key and key not in keys:
            keys.append(key)
    if keys:
        return keys
    return extract_keywords(observation.query_text, limit=MAX_KEYWORD_TOPICS)


def compute_priority(
    frequency: int,
    avg_similarity: Optional[float],
    min_frequency: int = settings.GAP_MIN_FREQUENCY,
    high_frequency: int = settings.GAP_HIGH_FREQUENCY,
    critical_frequency: int = settings.GAP_CRITICAL_FREQUENCY,
    low_similarity: float = settings.GAP_LOW_SIMILARITY,
) -> str:
    """
    Priority from frequency, raised one level for very poor matches.

    Non-decreasing in frequency and non-increasing in similarity. A missing
    similarity (nothing found at all) counts as 0.0.
    """
    if frequency >= critical_frequency:
        rank = 3
    elif frequency >= high_frequency:
        rank = 2
    elif frequency >= min_frequency:
        rank = 1
    else:
        rank = 0

    similarity = avg_similarity if avg_similarity is not None else 0.0
    if similarity < low_similarity and frequency >= min_frequency:
        rank = min(rank + 1, len(GAP_PRIORITIES) - 1)

    return GAP_PRIORITIES[rank]


def _priority_rank(priority: Optional[str]) -> int:
    return GAP_PRIORITIES.index(priority) if priority in GAP_PRIORITIES else 0


class ContentGapDetector:
    """Creates and reinforces content_gaps rows through the KnowledgeStore."""

    def __init__(
        self,
        store,
        min_frequency: int = settings.GAP_MIN_FREQUENCY,
        high_frequency: int = settings.GAP_HIGH_FREQUENCY,
        critical_frequency: int = settings.GAP_CRITICAL_FREQUENCY,
        low_similarity: float = settings.GAP_LOW_SIMILARITY,
        low_confidence_score: float = settings.GAP_LOW_CONFIDENCE_SCORE,
        window_days: int = settings.GAP_WINDOW_DAYS,
        max_example_queries: int = settings.GAP_MAX_EXAMPLE_QUERIES,
    ):
        self.store = store
        self.min_frequency = min_frequency
        self.high_frequency = high_frequency
        self.critical_frequency = critical_frequency
        self.low_similarity = low_similarity
        self.low_confidence_score = low_confidence_score
        self.window_days = window_days
        self.max_example_queries = max_example_queries

    def is_failed(self, observation: GapObservation) -> bool:
        """Nothing found, or the best match scored below the confidence floor."""
        if not observation.found_in_docs:
            return True
        return observation.top_score is not None and observation.top_score < self.low_confidence_score

    def priority_for(self, frequency: int, avg_similarity: Optional[float]) -> str:
        return compute_priority(
            frequency,
            avg_similarity,
            min_frequency=self.min_frequency,
            high_frequency=self.high_frequency,
            critical_frequency=self.critical_frequency,
            low_similarity=self.low_similarity,
        )

    def group_failures(self, observations: List[GapObservation]) -> Dict[str, List[GapObservation]]:
        groups: Dict[str, List[GapObservation]] = {}
        for observation in observations:
            if not self.is_failed(observation):
                continue
            for key in topic_keys(observation):
                groups.setdefault(key, []).append(observation)
        return groups

    # =========================================================================
    # DETECTION
    # =========================================================================

    async def process(self, observations: List[GapObservation]) -> List[Dict[str, Any]]:
        """
        Batch detection over a set of observations.

        Returns:
            Gap rows created or reinforced, most frequent topic first
        """
        groups = self.group_failures(observations)
        eligible = sorted(
            ((topic, group) for topic, group in groups.items() if len(group) >= self.min_frequency),
            key=lambda item: len(item[1]),
            reverse=True,
        )

        touched = []
        for topic, group in eligible:
            touched.append(await self._create_or_reinforce(topic, group))

        logger.info(f"Processed {len(observations)} observations into {len(touched)} content gaps")
        return touched

    async def process_window(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        """Batch detection over every tracked query of the last `days` days."""
        since = utc_now() - timedelta(days=days or self.window_days)
        rows = await asyncio.to_thread(self.store.list_queries, since)
        return await self.process([GapObservation.from_query_row(row) for row in rows])

    async def observe_query(self, observation: GapObservation) -> List[Dict[str, Any]]:
        """
        Live detection for one search, run after the response is sent.

        Returns:
            Gap rows created or reinforced by this observation
        """
        if not self.is_failed(observation):
            return []

        touched = []
        for topic in topic_keys(observation):
            existing = await asyncio.to_thread(self.store.find_active_gap, topic)
            if existing is not None:
                touched.append(await self._reinforce(existing, [observation]))
                continue

            failures = await self._failures_in_window(topic, observation)
            if len(failures) >= self.min_frequency:
                touched.append(await self._create(topic, failures))

        return touched

    async def _failures_in_window(self, topic: str, observation: GapObservation) -> List[GapObservation]:
        since = utc_now() - timedelta(days=self.window_days)
        rows = await asyncio.to_thread(self.store.list_topic_queries, topic, since)

        failures = []
        seen_current = False
        for row in rows:
            past = GapObservation.from_query_row(row)
            if not self.is_failed(past) or topic not in topic_keys(past):
                continue
            if observation.query_id and past.query_id == observation.query_id:
                seen_current = True
            failures.append(past)

        # Untracked searches are not in the store yet
        if not seen_current:
            failures.append(observation)
        return failures

    async def _create_or_reinforce(self, topic: str, group: List[GapObservation]) -> Dict[str, Any]:
        existing = await asyncio.to_thread(self.store.find_active_gap, topic)
        if existing is not None:
            return await self._reinforce(existing, group)
        return await self._create(topic, group)

    # =========================================================================
    # WRITES
    # =========================================================================

    def _example_queries(self, current: List[str], group: List[GapObservation]) -> List[str]:
        examples = list(current)
        for observation in group:
            text = observation.query_text.strip()
            if text and text not in examples:
                examples.append(text)
        return examples[-self.max_example_queries:]

    @staticmethod
    def _scores(group: List[GapObservation]) -> List[float]:
        return [o.top_score if o.top_score is not None else 0.0 for o in group]

    @staticmethod
    def _timestamps(group: List[GapObservation]) -> List[datetime]:
        return [o.observed_at or utc_now() for o in group]

    async def _create(self, topic: str, group: List[GapObservation]) -> Dict[str, Any]:
        frequency = len(group)
        scores = self._scores(group)
        avg_similarity = sum(scores) / len(scores)
        timestamps = self._timestamps(group)

        subtopics: List[str] = []
        for observation in group:
            for key in topic_keys(observation):
                if key != topic and key not in subtopics:
                    subtopics.append(key)

        gap = await asyncio.to_thread(self.store.insert_gap, {
            "topic": topic,
            "subtopics": subtopics[:MAX_SUBTOPICS],
            "query_frequency": frequency,
            "failed_query_count": frequency,
            "first_detected_at": min(timestamps).isoformat(),
            "last_detected_at": max(timestamps).isoformat(),
            "example_queries": self._example_queries([], group),
            "avg_similarity_score": round(avg_similarity, 4),
            "priority": self.priority_for(frequency, avg_similarity),
            "estimated_users_affected": len({o.audience_id for o in group if o.audience_id}),
            "status": "identified",
        })
        logger.info(f"New content gap '{topic}' ({gap['priority']}, {frequency} failed queries)")
        return gap

    async def _reinforce(self, gap: Dict[str, Any], group: List[GapObservation]) -> Dict[str, Any]:
        previous_failed = gap.get("failed_query_count") or 0
        previous_avg = gap.get("avg_similarity_score") or 0.0
        scores = self._scores(group)

        failed = previous_failed + len(group)
        avg_similarity = (previous_avg * previous_failed + sum(scores)) / failed
        frequency = (gap.get("query_frequency") or 0) + len(group)

        # Priority only ever moves up while the gap is open
        priority = self.priority_for(frequency, avg_similarity)
        if _priority_rank(gap.get("priority")) > _priority_rank(priority):
            priority = gap["priority"]

        last_seen = max(self._timestamps(group))
        previous_last = parse_timestamp(gap.get("last_detected_at"))
        if previous_last and previous_last > last_seen:
            last_seen = previous_last

        # Additive estimate; the same user failing twice is counted twice
        new_audience = len({o.audience_id for o in group if o.audience_id})

        updated = await asyncio.to_thread(self.store.update_gap, gap["id"], {
            "query_frequency": frequency,
            "failed_query_count": failed,
            "last_detected_at": last_seen.isoformat(),
            "example_queries": self._example_queries(gap.get("example_queries") or [], group),
            "avg_similarity_score": round(avg_similarity, 4),
            "priority": priority,
            "estimated_users_affected": (gap.get("estimated_users_affected") or 0) + new_audience,
        })
        if updated is None:
            raise NotFoundError("ContentGap", gap["id"])

        logger.info(f"Reinforced content gap '{updated['topic']}' to {frequency} ({priority})")
        return updated

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def update_status(
        self,
        gap_id: str,
        status: str,
        resolution_plan: Optional[str] = None,
        resolved_by_page_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Move a gap through identified -> planned -> in_progress -> resolved.

        Raises:
            ValidationError: Unknown status
            NotFoundError: No gap with that id
        """
        if status not in GAP_STATUSES:
            raise ValidationError(
                f"Unknown gap status: {status}",
                details={"field": "status", "allowed": list(GAP_STATUSES)},
            )

        fields: Dict[str, Any] = {"status": status}
        if resolution_plan is not None:
            fields["resolution_plan"] = resolution_plan
        if status == "resolved":
            fields["resolved_at"] = utc_now().isoformat()
            fields["resolved_by_page_ids"] = resolved_by_page_ids or []

        updated = await asyncio.to_thread(self.store.update_gap, gap_id, fields)
        if updated is None:
            raise NotFoundError("ContentGap", gap_id)

        logger.info(f"Content gap {gap_id} moved to {status}")
        return updated

    async def list_gaps(self, status: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        if status is not None and status not in GAP_STATUSES:
            raise ValidationError(
                f"Unknown gap status: {status}",
                details={"field": "status", "allowed": list(GAP_STATUSES)},
            )
        return await asyncio.to_thread(self.store.list_gaps, status, limit)
