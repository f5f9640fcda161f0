"""
Retrieval engine - ranked search over documentation pages.

This is the "read" side of the knowledge base. Callers pick a strategy up
front with `select_strategy`; a missing query embedding can only ever yield
`FulltextStrategy`, so the fallback is decided before dispatch instead of
inside the engine. Each strategy's native row shape is normalised into one
`ScoredResult` so tracking and metrics never branch on strategy.

The engine is read-only.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from app.core.tracing import get_tracer
from app.shared.constants import HYBRID_SEMANTIC_WEIGHT, SEARCH_TYPES
from app.shared.errors import ValidationError

logger = logging.getLogger("Javari.Knowledge.Retriever")
tracer = get_tracer(__name__)


@dataclass
class ScoredResult:
    """One ranked page. `score` is None for full-text matches."""
    page_id: str
    title: Optional[str]
    url: Optional[str]
    content: Optional[str]
    section: Optional[str]
    source_name: Optional[str]
    score: Optional[float]
    method: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SemanticStrategy:
    embedding: List[float] = field(repr=False)
    method: ClassVar[str] = "semantic"


@dataclass(frozen=True)
class HybridStrategy:
    embedding: List[float] = field(repr=False)
    method: ClassVar[str] = "hybrid"


@dataclass(frozen=True)
class FulltextStrategy:
    method: ClassVar[str] = "fulltext"


SearchStrategy = Union[SemanticStrategy, HybridStrategy, FulltextStrategy]


def select_strategy(search_type: str, embedding: Optional[List[float]]) -> SearchStrategy:
    """
    Build the strategy variant for a requested search type.

    Semantic and hybrid need an embedding; without one the only variant
    that can be built is full-text.
    """
    if search_type not in SEARCH_TYPES:
        raise ValidationError(
            f"Unknown search type: {search_type}",
            details={"field": "searchType", "allowed": list(SEARCH_TYPES)},
        )

    if embedding is not None:
        if search_type == "semantic":
            return SemanticStrategy(embedding)
        if search_type == "hybrid":
            return HybridStrategy(embedding)
    return FulltextStrategy()


@dataclass
class RetrievalOutcome:
    """Ranked results plus the summary fields the tracker records."""
    method: str
    results: List[ScoredResult]

    @property
    def result_count(self) -> int:
        return len(self.results)

    @property
    def found_in_docs(self) -> bool:
        return len(self.results) > 0

    @property
    def top_score(self) -> Optional[float]:
        return self.results[0].score if self.results else None

    @property
    def page_ids(self) -> List[str]:
        return [result.page_id for result in self.results]


# =========================================================================
# ROW ADAPTERS
# =========================================================================

def _from_semantic_row(row: Dict[str, Any]) -> ScoredResult:
    return ScoredResult(
        page_id=row.get("page_id") or row.get("id"),
        title=row.get("title"),
        url=row.get("url"),
        content=row.get("content"),
        section=row.get("section"),
        source_name=row.get("source_name"),
        score=row.get("similarity"),
        method=SemanticStrategy.method,
    )


def _from_hybrid_row(row: Dict[str, Any]) -> ScoredResult:
    score = row.get("combined_score")
    if score is None:
        score = row.get("similarity")
    return ScoredResult(
        page_id=row.get("page_id") or row.get("id"),
        title=row.get("title"),
        url=row.get("url"),
        content=row.get("content"),
        section=row.get("section"),
        source_name=row.get("source_name"),
        score=score,
        method=HybridStrategy.method,
    )


def _from_fulltext_row(row: Dict[str, Any]) -> ScoredResult:
    source = row.get("knowledge_sources") or {}
    return ScoredResult(
        page_id=row.get("id") or row.get("page_id"),
        title=row.get("title"),
        url=row.get("url"),
        content=row.get("content"),
        section=row.get("section"),
        source_name=source.get("name") if isinstance(source, dict) else None,
        score=None,
        method=FulltextStrategy.method,
    )


class RetrievalEngine:
    """Executes a search strategy against a KnowledgeStore."""

    def __init__(self, store):
        self.store = store

    async def search(
        self,
        query: str,
        strategy: SearchStrategy,
        threshold: float,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> RetrievalOutcome:
        """
        Run one search.

        Args:
            query: Query text (already validated as non-empty by the caller)
            strategy: Variant from `select_strategy`
            threshold: Minimum cosine similarity (semantic only)
            limit: Max results
            source_ids: Restrict to these knowledge sources

        Returns:
            RetrievalOutcome with results ordered best-first
        """
        with tracer.start_as_current_span("retrieval.search") as span:
            span.set_attribute("search.method", strategy.method)
            span.set_attribute("search.limit", limit)

            if isinstance(strategy, SemanticStrategy):
                rows = await asyncio.to_thread(
                    self.store.semantic_search,
                    strategy.embedding,
                    threshold,
                    limit,
                    source_ids,
                )
                results = [_from_semantic_row(row) for row in rows]
                results.sort(key=lambda r: r.score if r.score is not None else 0.0, reverse=True)

            elif isinstance(strategy, HybridStrategy):
                rows = await asyncio.to_thread(
                    self.store.hybrid_search,
                    query,
                    strategy.embedding,
                    limit,
                    HYBRID_SEMANTIC_WEIGHT,
                    source_ids,
                )
                results = [_from_hybrid_row(row) for row in rows]
                results.sort(key=lambda r: r.score if r.score is not None else 0.0, reverse=True)

            else:
                rows = await asyncio.to_thread(self.store.fulltext_search, query, limit, source_ids)
                results = [_from_fulltext_row(row) for row in rows]

            outcome = RetrievalOutcome(method=strategy.method, results=results[:limit])
            span.set_attribute("search.result_count", outcome.result_count)

        logger.info(f"{outcome.method} search returned {outcome.result_count} results")
        return outcome
