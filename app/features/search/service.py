"""
Search service - the query-intelligence pipeline behind /analyze-query.

query text -> analyzer -> embedding (optional) -> retrieval -> tracker,
with content-gap detection handed back to the caller to run after the
response has been sent.

A query-time embedding failure never fails the search: the strategy
falls back to full-text. Tracking and gap detection are best-effort.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.logging_utils import sanitize_for_logging
from app.features.insights.analyzer import QueryAnalysis, analyze_query
from app.features.insights.gaps import ContentGapDetector, GapObservation
from app.features.insights.tracker import QueryCorrelation, QueryTracker
from app.features.knowledge.embeddings import EmbeddingService
from app.features.knowledge.retriever import RetrievalEngine, RetrievalOutcome, select_strategy
from app.shared.correlation import CorrelationContext
from app.shared.errors import UpstreamProviderError, ValidationError
from app.shared.side_effects import run_best_effort
from app.shared.time_utils import utc_now

logger = logging.getLogger("Javari.Search")

EMBEDDING_SEARCH_TYPES = ("semantic", "hybrid")


@dataclass
class SearchResult:
    query_text: str
    analysis: QueryAnalysis
    outcome: RetrievalOutcome
    response_time_ms: int
    query_id: Optional[str] = None
    embedding_error: Optional[str] = None
    observation: Optional[GapObservation] = field(default=None, repr=False)

    def to_response(self) -> Dict[str, Any]:
        """The /analyze-query success payload."""
        return {
            "success": True,
            "query": {
                "text": self.query_text,
                "analysis": self.analysis.to_dict(),
                "queryId": self.query_id,
            },
            "search": {
                "method": self.outcome.method,
                "resultCount": self.outcome.result_count,
                "responseTime": self.response_time_ms,
                "foundInDocs": self.outcome.found_in_docs,
                "embeddingError": self.embedding_error,
            },
            "results": [result.to_dict() for result in self.outcome.results],
        }


class SearchService:
    """Wires analyzer, embeddings, retrieval, tracking and gap detection."""

    def __init__(
        self,
        embeddings: EmbeddingService,
        engine: RetrievalEngine,
        tracker: QueryTracker,
        detector: ContentGapDetector,
    ):
        self.embeddings = embeddings
        self.engine = engine
        self.tracker = tracker
        self.detector = detector

    async def search(
        self,
        query: str,
        search_type: str = "hybrid",
        match_threshold: float = settings.SEARCH_MATCH_THRESHOLD,
        match_count: int = settings.SEARCH_MATCH_COUNT,
        source_ids: Optional[List[str]] = None,
        track_query: bool = True,
        correlation: Optional[QueryCorrelation] = None,
    ) -> SearchResult:
        """
        Analyze, retrieve and (optionally) track one query.

        Raises:
            ValidationError: Empty query or unknown search type
        """
        if not query or not query.strip():
            raise ValidationError("Query is required", details={"field": "query"})

        started = time.perf_counter()
        correlation = correlation or QueryCorrelation()
        logger.info(f"Processing query: {sanitize_for_logging(query)} (type: {search_type})")

        analysis = analyze_query(query)

        embedding = None
        embedding_error = None
        if search_type in EMBEDDING_SEARCH_TYPES:
            try:
                embedding = (await self.embeddings.embed(query, operation="query")).embedding
            except UpstreamProviderError as e:
                embedding_error = e.message
                logger.warning(f"Query embedding unavailable, falling back to fulltext: {e.message}")

        strategy = select_strategy(search_type, embedding)
        outcome = await self.engine.search(
            query,
            strategy,
            threshold=match_threshold,
            limit=match_count,
            source_ids=source_ids,
        )
        response_time_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"Found {outcome.result_count} results in {response_time_ms}ms")

        query_id = None
        if track_query:
            query_id = await self.tracker.record(
                query,
                analysis,
                embedding,
                outcome,
                response_time_ms,
                correlation,
            )

        observation = GapObservation(
            query_text=query,
            topics=list(analysis.topics),
            languages=list(analysis.languages),
            found_in_docs=outcome.found_in_docs,
            top_score=outcome.top_score,
            query_id=query_id,
            user_id=correlation.user_id,
            session_id=correlation.session_id,
            observed_at=utc_now(),
        )

        return SearchResult(
            query_text=query,
            analysis=analysis,
            outcome=outcome,
            response_time_ms=response_time_ms,
            query_id=query_id,
            embedding_error=embedding_error,
            observation=observation,
        )

    async def detect_gaps(self, observation: GapObservation, correlation_id: Optional[str] = None) -> None:
        """Background task: feed one search into the gap detector."""
        with CorrelationContext(correlation_id):
            touched = await run_best_effort("gap detection", self.detector.observe_query, observation)
            if touched:
                logger.info(f"Gap detection touched {len(touched)} content gaps")

    async def similar_queries(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Past queries semantically close to `query`.

        Raises:
            ValidationError: Empty query
            UpstreamProviderError: The query could not be embedded
        """
        if not query or not query.strip():
            raise ValidationError("Query parameter is required", details={"field": "query"})

        embedding = (await self.embeddings.embed(query, operation="query")).embedding
        return await self.tracker.find_similar_queries(
            embedding,
            threshold=settings.SIMILAR_QUERY_THRESHOLD,
            limit=limit,
        )
