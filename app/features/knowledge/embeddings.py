"""
Embedding provider adapter.

Wraps a text -> vector provider with truncation, batching, inter-batch
rate limiting and token/cost accounting, and runs the backfill job that
embeds pages and chunks still missing a vector.

Token accounting note: OpenAI reports one aggregate `total_tokens` per
request. When no per-item counts are available each item is credited
`total / len(batch)`. That split is an approximation and must not be used
for billing; `EmbeddingRunResult.total_tokens` is the exact aggregate.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import openai

from app.core.config import settings
from app.core.logging_utils import log_embedding_cost
from app.core.tracing import get_tracer
from app.features.knowledge.chunker import CHARS_PER_TOKEN
from app.shared.errors import UpstreamProviderError, ValidationError

logger = logging.getLogger("Javari.Knowledge.Embeddings")
tracer = get_tracer(__name__)

TRUNCATION_MARKER = "..."
EMBEDDING_TARGETS = ("pages", "chunks")


@dataclass
class ProviderResponse:
    """What a provider returns for one call, vectors in input order."""
    vectors: List[List[float]]
    total_tokens: int
    per_item_tokens: Optional[List[int]] = None


class EmbeddingProvider(Protocol):
    """Contract every embedding backend satisfies."""

    model: str

    async def create(self, texts: List[str]) -> ProviderResponse:
        ...


class OpenAIEmbeddingProvider:
    """Embeddings through the OpenAI API."""

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.EMBEDDING_MODEL

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            from app.services.openai_client import get_openai_client
            self._client = get_openai_client()
        return self._client

    async def create(self, texts: List[str]) -> ProviderResponse:
        try:
            response = await self.client.embeddings.create(model=self.model, input=texts)
        except openai.OpenAIError as e:
            raise UpstreamProviderError("openai", f"Embedding request failed: {e}") from e

        # The API returns an index per item; never rely on list order alone
        data = sorted(response.data, key=lambda item: item.index)
        return ProviderResponse(
            vectors=[item.embedding for item in data],
            total_tokens=response.usage.total_tokens,
        )


@dataclass
class EmbeddingResult:
    """One embedded text. `embedding` is None when its batch failed."""
    embedding: Optional[List[float]]
    token_count: int
    truncated: bool = False
    error: Optional[str] = None


@dataclass
class EmbeddingRunResult:
    """Outcome of a backfill run. Partial failures are counted, not raised."""
    target: str = "pages"
    processed: int = 0
    failed: int = 0
    embedding_failures: int = 0
    update_failures: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    batches: int = 0
    timed_out: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "processed": self.processed,
            "failed": self.failed,
            "embedding_failures": self.embedding_failures,
            "update_failures": self.update_failures,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "batches": self.batches,
            "timed_out": self.timed_out,
            "errors": self.errors,
        }


def estimate_cost(total_tokens: int, rate_per_1k: float = settings.EMBEDDING_COST_PER_1K_TOKENS) -> float:
    """Advisory cost in USD for `total_tokens`."""
    return (total_tokens / 1000) * rate_per_1k


def coverage_percent(embedded: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(embedded / total * 100, 2)


def build_coverage_report(per_source: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Per-source embedding coverage plus a global rollup.

    Args:
        per_source: Rows with source_id, source_name, total_pages, embedded_pages
                    and optionally avg_token_count
    """
    sources = []
    total_pages = 0
    embedded_pages = 0

    for row in per_source:
        total = int(row.get("total_pages") or 0)
        embedded = int(row.get("embedded_pages") or 0)
        sources.append({
            "source_id": row.get("source_id"),
            "source_name": row.get("source_name"),
            "total_pages": total,
            "embedded_pages": embedded,
            "avg_token_count": row.get("avg_token_count"),
            "coverage_percent": coverage_percent(embedded, total),
        })
        total_pages += total
        embedded_pages += embedded

    return {
        "total_pages": total_pages,
        "embedded_pages": embedded_pages,
        "coverage_percent": coverage_percent(embedded_pages, total_pages),
        "by_source": sources,
    }


def _row_text(target: str, row: Dict[str, Any]) -> str:
    if target == "pages":
        return f"{row.get('title') or ''}\n\n{row.get('content') or ''}".strip()
    return (row.get("content") or "").strip()


class EmbeddingService:
    """
    Batching front-end over an EmbeddingProvider.

    The store is only needed for the backfill and stats operations;
    query-time and ingestion-time callers can construct it without one.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store=None,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
        batch_delay_seconds: float = settings.EMBEDDING_BATCH_DELAY_SECONDS,
        max_tokens: int = settings.EMBEDDING_MAX_TOKENS,
        cost_per_1k_tokens: float = settings.EMBEDDING_COST_PER_1K_TOKENS,
        run_timeout_seconds: float = settings.EMBEDDING_RUN_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.store = store
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.max_tokens = max_tokens
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.run_timeout_seconds = run_timeout_seconds

    @property
    def model(self) -> str:
        return self.provider.model

    def prepare_text(self, text: str) -> tuple[str, bool]:
        """Cut text to the token budget; returns (text, truncated)."""
        max_chars = self.max_tokens * CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text, False
        return text[:max_chars] + TRUNCATION_MARKER, True

    @staticmethod
    def _split_tokens(response: ProviderResponse, count: int) -> List[int]:
        if response.per_item_tokens and len(response.per_item_tokens) == count:
            return list(response.per_item_tokens)
        # Even split of the aggregate; approximate by construction
        share = round(response.total_tokens / count) if count else 0
        return [share] * count

    def _check_vector_count(self, response: ProviderResponse, expected: int) -> None:
        if len(response.vectors) != expected:
            raise UpstreamProviderError(
                self.model, f"Provider returned {len(response.vectors)} vectors for {expected} inputs"
            )

    async def embed(self, text: str, operation: str = "query") -> EmbeddingResult:
        """
        Embed a single text.

        Raises:
            UpstreamProviderError: If the provider call fails
        """
        prepared, truncated = self.prepare_text(text)
        started = time.perf_counter()
        try:
            response = await self.provider.create([prepared])
        except UpstreamProviderError:
            raise
        except Exception as e:
            raise UpstreamProviderError(self.model, f"Embedding request failed: {e}") from e
        self._check_vector_count(response, 1)

        log_embedding_cost(
            model=self.model,
            total_tokens=response.total_tokens,
            cost_usd=estimate_cost(response.total_tokens, self.cost_per_1k_tokens),
            item_count=1,
            duration_ms=int((time.perf_counter() - started) * 1000),
            operation=operation,
        )
        return EmbeddingResult(
            embedding=response.vectors[0],
            token_count=response.total_tokens,
            truncated=truncated,
        )

    async def embed_batch(self, texts: List[str], operation: str = "ingestion") -> List[EmbeddingResult]:
        """
        Embed many texts, one provider call per `batch_size` group.

        Output order matches input order. A failed provider call marks every
        item of that group failed (embedding None, error set); other groups
        are unaffected.
        """
        results: List[EmbeddingResult] = []
        total_tokens = 0
        started = time.perf_counter()

        for batch_number, start in enumerate(range(0, len(texts), self.batch_size)):
            if batch_number > 0 and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

            prepared = [self.prepare_text(text) for text in texts[start:start + self.batch_size]]
            try:
                response = await self.provider.create([text for text, _ in prepared])
                self._check_vector_count(response, len(prepared))
            except Exception as e:
                logger.warning(f"Embedding batch {batch_number + 1} failed ({len(prepared)} items): {e}")
                results.extend(
                    EmbeddingResult(embedding=None, token_count=0, truncated=truncated, error=str(e))
                    for _, truncated in prepared
                )
                continue

            tokens = self._split_tokens(response, len(prepared))
            total_tokens += response.total_tokens
            results.extend(
                EmbeddingResult(embedding=vector, token_count=token_count, truncated=truncated)
                for vector, token_count, (_, truncated) in zip(response.vectors, tokens, prepared)
            )

        if total_tokens:
            log_embedding_cost(
                model=self.model,
                total_tokens=total_tokens,
                cost_usd=estimate_cost(total_tokens, self.cost_per_1k_tokens),
                item_count=len(texts),
                duration_ms=int((time.perf_counter() - started) * 1000),
                operation=operation,
            )
        return results

    def _require_store(self):
        if self.store is None:
            raise RuntimeError("EmbeddingService was created without a knowledge store")
        return self.store

    async def generate_missing_embeddings(
        self,
        limit: Optional[int] = None,
        target: str = "pages",
    ) -> EmbeddingRunResult:
        """
        Backfill embeddings for rows that have none.

        Each batch makes one provider call, then writes every row's vector
        concurrently and waits for all writes before the next batch. The run
        stops before starting a batch once `run_timeout_seconds` has elapsed;
        rows left over are picked up by the next run.

        Args:
            limit: Max rows to fetch (defaults to EMBEDDING_BACKFILL_LIMIT)
            target: 'pages' or 'chunks'
        """
        if target not in EMBEDDING_TARGETS:
            raise ValidationError(
                f"Unknown embedding target: {target}",
                details={"field": "target", "allowed": list(EMBEDDING_TARGETS)},
            )

        store = self._require_store()
        limit = limit or settings.EMBEDDING_BACKFILL_LIMIT
        result = EmbeddingRunResult(target=target)
        started = time.monotonic()

        with tracer.start_as_current_span("embeddings.backfill") as span:
            span.set_attribute("embeddings.target", target)

            rows = await asyncio.to_thread(store.fetch_missing_embeddings, target, limit)
            logger.info(f"Found {len(rows)} {target} without embeddings")

            for batch_number, start in enumerate(range(0, len(rows), self.batch_size)):
                if time.monotonic() - started >= self.run_timeout_seconds:
                    result.timed_out = True
                    logger.warning(
                        f"Embedding run hit its {self.run_timeout_seconds}s ceiling; "
                        f"{len(rows) - start} {target} left for the next run"
                    )
                    break

                if batch_number > 0 and self.batch_delay_seconds > 0:
                    await asyncio.sleep(self.batch_delay_seconds)

                batch = rows[start:start + self.batch_size]
                result.batches += 1
                await self._process_backfill_batch(store, target, batch, result)

            result.total_cost = estimate_cost(result.total_tokens, self.cost_per_1k_tokens)
            span.set_attribute("embeddings.processed", result.processed)
            span.set_attribute("embeddings.failed", result.failed)

        if result.total_tokens:
            log_embedding_cost(
                model=self.model,
                total_tokens=result.total_tokens,
                cost_usd=result.total_cost,
                item_count=result.processed,
                duration_ms=int((time.monotonic() - started) * 1000),
                operation="backfill",
            )

        logger.info(
            f"Embedding run complete: {result.processed} processed, {result.failed} failed "
            f"in {result.batches} batches"
        )
        return result

    async def _process_backfill_batch(
        self,
        store,
        target: str,
        batch: List[Dict[str, Any]],
        result: EmbeddingRunResult,
    ) -> None:
        prepared = [self.prepare_text(_row_text(target, row))[0] for row in batch]

        try:
            response = await self.provider.create(prepared)
            self._check_vector_count(response, len(batch))
        except Exception as e:
            logger.error(f"Embedding batch {result.batches} failed for {len(batch)} {target}: {e}")
            result.failed += len(batch)
            result.embedding_failures += len(batch)
            result.errors.append(f"batch {result.batches}: {e}")
            return

        result.total_tokens += response.total_tokens
        tokens = self._split_tokens(response, len(batch))
        generated_at = datetime.now(timezone.utc).isoformat()

        updates = [
            asyncio.to_thread(
                store.update_embedding,
                target,
                row["id"],
                vector,
                self.model,
                token_count,
                generated_at,
            )
            for row, vector, token_count in zip(batch, response.vectors, tokens)
        ]
        outcomes = await asyncio.gather(*updates, return_exceptions=True)

        for row, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Failed to store embedding for {target} row {row['id']}: {outcome}")
                result.failed += 1
                result.update_failures += 1
            else:
                result.processed += 1

    async def regenerate_all_embeddings(self, limit: Optional[int] = None) -> EmbeddingRunResult:
        """
        Clear every page embedding, then backfill from scratch.

        The rebuild reads up to EMBEDDING_REGENERATE_LIMIT rows unless `limit` is given.
        """
        store = self._require_store()
        cleared = await asyncio.to_thread(store.clear_embeddings, "pages")
        logger.info(f"Cleared embeddings on {cleared} pages")
        return await self.generate_missing_embeddings(
            limit=limit or settings.EMBEDDING_REGENERATE_LIMIT, target="pages"
        )

    async def get_embedding_stats(self) -> Dict[str, Any]:
        """Coverage per knowledge source plus the global rollup."""
        store = self._require_store()
        per_source = await asyncio.to_thread(store.embedding_coverage)
        report = build_coverage_report(per_source)
        report["model"] = self.model
        return report
