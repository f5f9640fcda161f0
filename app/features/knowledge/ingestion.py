"""
Ingestion service - the "write" side of the knowledge base.

Manual text and uploaded files become a documentation page plus its
sentence-aligned chunks, each embedded when the provider is reachable.
Pages are keyed by URL; manual entries get `manual://<content hash prefix>`
so re-submitting identical content is a no-op. When the caller supplies a
URL whose stored content hash differs, the page is updated and its chunks
are regenerated wholesale.

Embedding failures never abort ingestion: rows are stored without a vector
and the backfill job picks them up later.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.config import settings
from app.features.knowledge.chunker import chunk_text, content_hash
from app.features.knowledge.embeddings import EmbeddingService
from app.shared.constants import (
    DEFAULT_MANUAL_CATEGORY,
    DEFAULT_MANUAL_SOURCE,
    MANUAL_URL_SCHEME,
)
from app.shared.errors import UpstreamProviderError, ValidationError
from app.shared.time_utils import utc_now_iso

logger = logging.getLogger("Javari.Knowledge.Ingestion")


@dataclass
class IngestionResult:
    page: Dict[str, Any]
    chunks_created: int
    total_chunks: int
    embedding_generated: bool
    embedding_error: Optional[str] = None
    chunk_embedding_failures: int = 0
    deduplicated: bool = False


def manual_url(digest: str) -> str:
    return f"{MANUAL_URL_SCHEME}{digest[:16]}"


class IngestionService:
    """Chunk, embed and store documents."""

    def __init__(
        self,
        store,
        embeddings: EmbeddingService,
        chunk_size: int = settings.CHUNK_TARGET_SIZE,
    ):
        self.store = store
        self.embeddings = embeddings
        self.chunk_size = chunk_size

    async def ingest(
        self,
        title: str,
        content: str,
        source: str = DEFAULT_MANUAL_SOURCE,
        category: str = DEFAULT_MANUAL_CATEGORY,
        url: Optional[str] = None,
        section: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestionResult:
        """
        Store one document and its chunks.

        Args:
            title: Page title
            content: Page body
            source: Knowledge source name (created on first use)
            category: Free-form category label
            url: Natural key; defaults to a content-derived manual:// URL
            section: Optional section label
            metadata: Extra page metadata

        Raises:
            ValidationError: If title or content is empty
        """
        if not title or not title.strip() or not content or not content.strip():
            raise ValidationError(
                "Title and content are required",
                details={"fields": ["title", "content"]},
            )

        digest = content_hash(content)
        url = url or manual_url(digest)

        existing = await asyncio.to_thread(self.store.get_page_by_url, url)
        if existing and existing.get("content_hash") == digest:
            logger.info(f"Skipping unchanged document '{title}' ({url})")
            return IngestionResult(
                page=existing,
                chunks_created=0,
                total_chunks=0,
                embedding_generated=existing.get("embedding_generated_at") is not None,
                deduplicated=True,
            )

        knowledge_source = await asyncio.to_thread(self.store.get_or_create_source, source, "manual")
        page = await asyncio.to_thread(self.store.upsert_page, {
            "url": url,
            "title": title,
            "content": content,
            "content_hash": digest,
            "source_id": knowledge_source["id"],
            "category": category,
            "section": section,
            "metadata": metadata or {},
            "last_scraped_at": utc_now_iso(),
            # A changed page must be re-embedded
            "embedding": None,
            "embedding_generated_at": None,
            "embedding_token_count": None,
        })
        action = "Updated" if existing else "Created"
        logger.info(f"{action} page {page['id']} '{title}' from source '{source}'")

        embedding_generated, embedding_error = await self._embed_page(page, title, content)

        chunks = chunk_text(content, self.chunk_size)
        chunk_results = await self.embeddings.embed_batch(chunks, operation="ingestion") if chunks else []
        rows = [
            {
                "chunk_index": index,
                "content": chunk,
                "embedding": result.embedding,
                "embedding_model": self.embeddings.model if result.embedding is not None else None,
            }
            for index, (chunk, result) in enumerate(zip(chunks, chunk_results))
        ]
        stored = await asyncio.to_thread(self.store.replace_chunks, page["id"], rows)
        chunk_failures = sum(1 for result in chunk_results if result.embedding is None)

        if chunk_failures:
            logger.warning(f"{chunk_failures}/{len(chunks)} chunks of page {page['id']} stored without embeddings")
        logger.info(f"Stored {len(stored)} chunks for page {page['id']}")

        return IngestionResult(
            page=page,
            chunks_created=len(stored),
            total_chunks=len(chunks),
            embedding_generated=embedding_generated,
            embedding_error=embedding_error,
            chunk_embedding_failures=chunk_failures,
        )

    async def _embed_page(self, page: Dict[str, Any], title: str, content: str) -> tuple[bool, Optional[str]]:
        try:
            result = await self.embeddings.embed(f"{title}\n\n{content}".strip(), operation="ingestion")
        except UpstreamProviderError as e:
            logger.warning(f"Page {page['id']} stored without embedding: {e.message}")
            return False, e.message

        await asyncio.to_thread(
            self.store.update_embedding,
            "pages",
            page["id"],
            result.embedding,
            self.embeddings.model,
            result.token_count,
            utc_now_iso(),
        )
        return True, None
