"""
Shared fixtures for the knowledge service test suite.

Everything runs against InMemoryKnowledgeStore and a deterministic fake
embedding provider, so no Supabase or OpenAI credentials are needed.
"""

import re
import zlib
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_embedding_provider, get_store
from app.features.insights.gaps import ContentGapDetector
from app.features.insights.tracker import QueryTracker
from app.features.knowledge.chunker import estimate_tokens
from app.features.knowledge.embeddings import EmbeddingService, ProviderResponse
from app.features.knowledge.ingestion import IngestionService
from app.features.knowledge.memory_store import InMemoryKnowledgeStore
from app.features.knowledge.retriever import RetrievalEngine
from app.features.search.service import SearchService
from app.shared.errors import UpstreamProviderError

_WORD = re.compile(r"\w+")


def bag_of_words(text: str, dimensions: int = 64) -> List[float]:
    """Hash each word into a fixed-size count vector."""
    vector = [0.0] * dimensions
    for word in _WORD.findall(text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % dimensions] += 1.0
    return vector


class FakeEmbeddingProvider:
    """
    Deterministic EmbeddingProvider.

    Args:
        fail_on_calls: 1-based call numbers that raise UpstreamProviderError
        fail_always: Every call raises
    """

    model = "fake-embedding-small"

    def __init__(self, fail_on_calls: Optional[List[int]] = None, fail_always: bool = False):
        self.calls: List[List[str]] = []
        self.fail_on_calls = set(fail_on_calls or [])
        self.fail_always = fail_always

    async def create(self, texts: List[str]) -> ProviderResponse:
        self.calls.append(list(texts))
        if self.fail_always or len(self.calls) in self.fail_on_calls:
            raise UpstreamProviderError("fake", "embedding provider unavailable")
        return ProviderResponse(
            vectors=[bag_of_words(text) for text in texts],
            total_tokens=sum(max(1, estimate_tokens(text)) for text in texts),
        )


@pytest.fixture
def store():
    return InMemoryKnowledgeStore()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def failing_provider():
    return FakeEmbeddingProvider(fail_always=True)


@pytest.fixture
def embedding_service(provider, store):
    return EmbeddingService(provider, store=store, batch_delay_seconds=0)


@pytest.fixture
def ingestion_service(store, embedding_service):
    return IngestionService(store, embedding_service)


@pytest.fixture
def tracker(store):
    return QueryTracker(store)


@pytest.fixture
def detector(store):
    return ContentGapDetector(store)


@pytest.fixture
def search_service(store, embedding_service, tracker, detector):
    return SearchService(embedding_service, RetrievalEngine(store), tracker, detector)


@pytest.fixture
def client(store, provider):
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_embedding_provider] = lambda: provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
