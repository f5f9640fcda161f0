"""
FastAPI dependencies.

The store and the embedding provider are process-wide singletons; the
services built on them are cheap and created per request, so overriding
`get_store` or `get_embedding_provider` in tests reaches every route.
"""

from functools import lru_cache

from fastapi import Depends

from app.core.config import settings
from app.features.insights.gaps import ContentGapDetector
from app.features.insights.metrics import MetricsAggregator
from app.features.insights.tracker import QueryTracker
from app.features.knowledge.embeddings import EmbeddingProvider, EmbeddingService, OpenAIEmbeddingProvider
from app.features.knowledge.ingestion import IngestionService
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.features.knowledge.retriever import RetrievalEngine
from app.features.knowledge.store import KnowledgeStore, SupabaseKnowledgeStore
from app.features.search.service import SearchService


@lru_cache(maxsize=1)
def get_store() -> KnowledgeStore:
    """Provide the singleton knowledge store selected by KNOWLEDGE_STORE_BACKEND."""
    if settings.KNOWLEDGE_STORE_BACKEND == "memory":
        return InMemoryKnowledgeStore()
    return SupabaseKnowledgeStore()


@lru_cache(maxsize=1)
def get_embedding_provider() -> EmbeddingProvider:
    """Provide the singleton OpenAI embedding provider."""
    return OpenAIEmbeddingProvider()


def get_embedding_service(
    store: KnowledgeStore = Depends(get_store),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
) -> EmbeddingService:
    return EmbeddingService(provider, store=store)


def get_query_tracker(store: KnowledgeStore = Depends(get_store)) -> QueryTracker:
    return QueryTracker(store)


def get_gap_detector(store: KnowledgeStore = Depends(get_store)) -> ContentGapDetector:
    return ContentGapDetector(store)


def get_metrics_aggregator(store: KnowledgeStore = Depends(get_store)) -> MetricsAggregator:
    return MetricsAggregator(store)


def get_ingestion_service(
    store: KnowledgeStore = Depends(get_store),
    embeddings: EmbeddingService = Depends(get_embedding_service),
) -> IngestionService:
    return IngestionService(store, embeddings)


def get_search_service(
    store: KnowledgeStore = Depends(get_store),
    embeddings: EmbeddingService = Depends(get_embedding_service),
    tracker: QueryTracker = Depends(get_query_tracker),
    detector: ContentGapDetector = Depends(get_gap_detector),
) -> SearchService:
    return SearchService(embeddings, RetrievalEngine(store), tracker, detector)
