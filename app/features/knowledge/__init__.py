"""
Knowledge base - documentation pages, chunks and their embeddings.

This module provides:
1. Chunking: sentence-aligned segments for indexing
2. Embeddings: batched provider calls, backfill and coverage stats
3. Retrieval: semantic / hybrid / full-text search
4. Ingestion: manual text and file uploads
5. Store: the KnowledgeStore boundary (Supabase or in-memory)
"""

from app.features.knowledge.chunker import chunk_text, content_hash, estimate_tokens
from app.features.knowledge.embeddings import (
    EmbeddingProvider,
    EmbeddingResult,
    EmbeddingRunResult,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    ProviderResponse,
    estimate_cost,
)
from app.features.knowledge.retriever import (
    FulltextStrategy,
    HybridStrategy,
    RetrievalEngine,
    RetrievalOutcome,
    ScoredResult,
    SemanticStrategy,
    select_strategy,
)
from app.features.knowledge.ingestion import IngestionResult, IngestionService
from app.features.knowledge.store import KnowledgeStore, SupabaseKnowledgeStore
from app.features.knowledge.memory_store import InMemoryKnowledgeStore

__all__ = [
    # Chunking
    "chunk_text",
    "content_hash",
    "estimate_tokens",
    # Embeddings
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingRunResult",
    "EmbeddingService",
    "OpenAIEmbeddingProvider",
    "ProviderResponse",
    "estimate_cost",
    # Retrieval
    "FulltextStrategy",
    "HybridStrategy",
    "RetrievalEngine",
    "RetrievalOutcome",
    "ScoredResult",
    "SemanticStrategy",
    "select_strategy",
    # Ingestion
    "IngestionResult",
    "IngestionService",
    # Store
    "KnowledgeStore",
    "SupabaseKnowledgeStore",
    "InMemoryKnowledgeStore",
]
