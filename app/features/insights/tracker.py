"""
Query tracker - persists every search and its later feedback.

Tracking is a best-effort side channel: a failed insert is logged and
`record` returns None, the search response is never affected. Feedback on
an existing query is a normal operation and surfaces its errors.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.logging_utils import sanitize_for_logging
from app.features.insights.analyzer import QueryAnalysis
from app.features.knowledge.retriever import RetrievalOutcome
from app.shared.constants import MAX_RELEVANT_PAGE_IDS
from app.shared.errors import NotFoundError, TrackingFailure, ValidationError
from app.shared.side_effects import run_best_effort

logger = logging.getLogger("Javari.Insights.Tracker")

MIN_SATISFACTION = 1
MAX_SATISFACTION = 5


@dataclass
class QueryCorrelation:
    """Caller-supplied identifiers linking a query to a session or conversation."""
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None


def build_query_record(
    query_text: str,
    analysis: QueryAnalysis,
    embedding: Optional[List[float]],
    outcome: RetrievalOutcome,
    response_time_ms: int,
    correlation: QueryCorrelation,
) -> Dict[str, Any]:
    """The user_queries row for one search."""
    return {
        "query_text": query_text,
        "query_embedding": embedding,
        "query_intent": analysis.intent,
        "query_complexity": analysis.complexity,
        "detected_topics": analysis.topics or None,
        "detected_languages": analysis.languages or None,
        "found_in_docs": outcome.found_in_docs,
        "relevant_page_ids": outcome.page_ids[:MAX_RELEVANT_PAGE_IDS],
        "top_similarity_score": outcome.top_score,
        "response_generated": True,
        "response_time_ms": response_time_ms,
        "session_id": correlation.session_id,
        "user_id": correlation.user_id,
        "conversation_id": correlation.conversation_id,
        "metadata": {
            "search_method": outcome.method,
            "result_count": outcome.result_count,
        },
    }


class QueryTracker:
    """Writes user_queries rows through the KnowledgeStore."""

    def __init__(self, store):
        self.store = store

    async def _insert(self, record: Dict[str, Any]) -> str:
        try:
            row = await asyncio.to_thread(self.store.insert_query, record)
        except Exception as e:
            raise TrackingFailure(f"Query tracking failed: {e}") from e
        if not row or not row.get("id"):
            raise TrackingFailure("Query tracking returned no row")
        return row["id"]

    async def record(
        self,
        query_text: str,
        analysis: QueryAnalysis,
        embedding: Optional[List[float]],
        outcome: RetrievalOutcome,
        response_time_ms: int,
        correlation: Optional[QueryCorrelation] = None,
    ) -> Optional[str]:
        """
        Persist one query.

        Returns:
            The new query id, or None when tracking failed
        """
        record = build_query_record(
            query_text,
            analysis,
            embedding,
            outcome,
            response_time_ms,
            correlation or QueryCorrelation(),
        )
        query_id = await run_best_effort("query tracking", self._insert, record)
        if query_id:
            logger.info(f"Query tracked with ID: {query_id}")
        else:
            logger.warning(f"Query not tracked: {sanitize_for_logging(query_text)}")
        return query_id

    async def attach_feedback(
        self,
        query_id: str,
        satisfaction: Optional[int] = None,
        feedback_text: Optional[str] = None,
        was_helpful: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Attach user feedback to a tracked query.

        Raises:
            ValidationError: Missing query id or satisfaction outside 1-5
            NotFoundError: No query with that id
        """
        if not query_id:
            raise ValidationError("Query ID is required", details={"field": "queryId"})
        if satisfaction is not None and not MIN_SATISFACTION <= satisfaction <= MAX_SATISFACTION:
            raise ValidationError(
                f"Satisfaction must be between {MIN_SATISFACTION} and {MAX_SATISFACTION}",
                details={"field": "satisfaction", "value": satisfaction},
            )

        updated = await asyncio.to_thread(self.store.update_query, query_id, {
            "user_satisfaction": satisfaction,
            "user_feedback_text": feedback_text,
            "was_helpful": was_helpful,
        })
        if updated is None:
            raise NotFoundError("Query", query_id)

        logger.info(f"Updated query {query_id} with feedback")
        return updated

    async def find_similar_queries(
        self,
        embedding: List[float],
        threshold: float = settings.SIMILAR_QUERY_THRESHOLD,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Past queries whose embedding is within `threshold` cosine similarity."""
        return await asyncio.to_thread(self.store.find_similar_queries, embedding, threshold, limit)
