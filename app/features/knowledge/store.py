"""
Knowledge store boundary.

`KnowledgeStore` is the query interface the retrieval engine, tracker, gap
detector, metrics aggregator and ingestion pipeline are written against.
`SupabaseKnowledgeStore` is the deployed implementation (tables plus the
pgvector RPCs below); `InMemoryKnowledgeStore` in memory_store.py backs
local development and the test suite.

All methods are synchronous, matching the supabase-py client. Async callers
push them onto a worker thread with `asyncio.to_thread`.

RPCs expected in the database:
    search_documentation_semantic(query_embedding, match_threshold, match_count, filter_source_ids)
    search_documentation_hybrid(query_text, query_embedding, match_count, semantic_weight)
    find_similar_queries(query_embedding, similarity_threshold, max_results)
    get_embedding_stats()
    calculate_avg_satisfaction(time_period)

Multi-row reads are paged with `.range()` in SUPABASE_PAGE_SIZE steps so the
server-side max-rows cap never truncates a result silently.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from postgrest.exceptions import APIError

from app.core.config import settings
from app.shared.constants import (
    CHUNKS_TABLE,
    GAPS_TABLE,
    PAGES_TABLE,
    QUERIES_TABLE,
    SOURCES_TABLE,
)
from app.shared.errors import UpstreamProviderError
from app.shared.time_utils import utc_now, utc_now_iso

logger = logging.getLogger("Javari.Knowledge.Store")

_EMBEDDING_TABLES = {"pages": PAGES_TABLE, "chunks": CHUNKS_TABLE}
_QUERY_LISTING_COLUMNS = (
    "id, query_text, query_intent, detected_topics, detected_languages, found_in_docs, "
    "top_similarity_score, user_satisfaction, session_id, user_id, created_at"
)


class KnowledgeStore(Protocol):
    """Relational + vector store reached through single-row operations."""

    # Sources and pages
    def get_or_create_source(self, name: str, source_type: str) -> Dict[str, Any]: ...
    def get_page_by_url(self, url: str) -> Optional[Dict[str, Any]]: ...
    def upsert_page(self, page: Dict[str, Any]) -> Dict[str, Any]: ...
    def replace_chunks(self, page_id: str, chunks: List[Dict[str, Any]]) -> List[Dict[str, Any]]: ...

    # Embeddings
    def fetch_missing_embeddings(self, target: str, limit: int) -> List[Dict[str, Any]]: ...
    def update_embedding(
        self,
        target: str,
        row_id: str,
        embedding: List[float],
        model: str,
        token_count: int,
        generated_at: str,
    ) -> None: ...
    def clear_embeddings(self, target: str) -> int: ...
    def embedding_coverage(self) -> List[Dict[str, Any]]: ...

    # Search
    def semantic_search(
        self,
        embedding: List[float],
        threshold: float,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]: ...
    def hybrid_search(
        self,
        query_text: str,
        embedding: List[float],
        limit: int,
        semantic_weight: float,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]: ...
    def fulltext_search(
        self,
        query_text: str,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]: ...

    # Queries
    def insert_query(self, record: Dict[str, Any]) -> Dict[str, Any]: ...
    def update_query(self, query_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...
    def find_similar_queries(self, embedding: List[float], threshold: float, limit: int) -> List[Dict[str, Any]]: ...
    def list_queries(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]: ...
    def list_topic_queries(self, topic: str, since: datetime) -> List[Dict[str, Any]]: ...
    def query_summary(self, since: datetime) -> Dict[str, Any]: ...
    def recent_queries(self, limit: int) -> List[Dict[str, Any]]: ...

    # Content gaps
    def find_active_gap(self, topic: str) -> Optional[Dict[str, Any]]: ...
    def insert_gap(self, record: Dict[str, Any]) -> Dict[str, Any]: ...
    def update_gap(self, gap_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...
    def list_gaps(self, status: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]: ...

    # Stats
    def knowledge_counts(self) -> Dict[str, int]: ...


def _first(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


def _sanitize_search_term(query_text: str) -> str:
    # Characters that would break a PostgREST or() filter expression
    return "".join(ch for ch in query_text if ch not in '",()\\').strip()


def _interval_since(since: datetime) -> str:
    """Postgres interval literal covering `since` up to now."""
    seconds = max(0, int((utc_now() - since).total_seconds()))
    return f"{seconds} seconds"


def _rounded_scalar(data: Any) -> Optional[float]:
    # Scalar RPCs come back bare, as a one-row list, or as a one-key dict
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = next(iter(data.values()), None)
    if data is None:
        return None
    return round(float(data), 2)


class SupabaseKnowledgeStore:
    """KnowledgeStore backed by Supabase (PostgREST + pgvector RPCs)."""

    def __init__(self, client=None, page_size: int = settings.SUPABASE_PAGE_SIZE):
        if client is None:
            from app.core.database import get_supabase_client
            client = get_supabase_client()
        self.client = client
        self.page_size = max(1, page_size)
        logger.info("Supabase knowledge store initialized")

    def _execute(self, query, operation: str):
        try:
            return query.execute()
        except APIError as e:
            logger.error(f"Supabase {operation} failed: {e.message}")
            raise UpstreamProviderError("supabase", f"{operation} failed: {e.message}") from e

    def _fetch_all(
        self,
        build_query: Callable[[], Any],
        operation: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read every row of a query page by page.

        `build_query` must return a fresh, ordered builder on each call;
        postgrest builders accumulate parameters and cannot be reused.
        """
        rows: List[Dict[str, Any]] = []
        start = 0
        while limit is None or len(rows) < limit:
            size = self.page_size if limit is None else min(self.page_size, limit - len(rows))
            result = self._execute(build_query().range(start, start + size - 1), operation)
            page = result.data or []
            rows.extend(page)
            if len(page) < size:
                break
            start += size
        return rows

    # =========================================================================
    # SOURCES AND PAGES
    # =========================================================================

    def get_or_create_source(self, name: str, source_type: str) -> Dict[str, Any]:
        result = self._execute(
            self.client.table(SOURCES_TABLE).upsert(
                {"name": name, "source_type": source_type},
                on_conflict="name",
            ),
            "source upsert",
        )
        return _first(result.data)

    def get_page_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self.client.table(PAGES_TABLE).select(
                "id, url, title, content_hash, embedding_generated_at, created_at, updated_at"
            ).eq("url", url).limit(1),
            "page lookup",
        )
        return _first(result.data)

    def upsert_page(self, page: Dict[str, Any]) -> Dict[str, Any]:
        payload = {**page, "updated_at": utc_now_iso()}
        result = self._execute(
            self.client.table(PAGES_TABLE).upsert(payload, on_conflict="url"),
            "page upsert",
        )
        return _first(result.data)

    def replace_chunks(self, page_id: str, chunks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Upsert chunks by (page_id, chunk_index), then drop indexes past the new end."""
        rows = [{**chunk, "page_id": page_id} for chunk in chunks]
        stored: List[Dict[str, Any]] = []
        if rows:
            result = self._execute(
                self.client.table(CHUNKS_TABLE).upsert(rows, on_conflict="page_id,chunk_index"),
                "chunk upsert",
            )
            stored = result.data or []

        self._execute(
            self.client.table(CHUNKS_TABLE).delete().eq("page_id", page_id).gte("chunk_index", len(rows)),
            "stale chunk cleanup",
        )
        return stored

    # =========================================================================
    # EMBEDDINGS
    # =========================================================================

    def fetch_missing_embeddings(self, target: str, limit: int) -> List[Dict[str, Any]]:
        columns = "id, title, content" if target == "pages" else "id, page_id, chunk_index, content"
        table = _EMBEDDING_TABLES[target]
        return self._fetch_all(
            lambda: self.client.table(table).select(columns).is_("embedding", "null").order("id"),
            f"{target} missing-embedding scan",
            limit=limit,
        )

    def update_embedding(
        self,
        target: str,
        row_id: str,
        embedding: List[float],
        model: str,
        token_count: int,
        generated_at: str,
    ) -> None:
        fields: Dict[str, Any] = {"embedding": embedding, "embedding_model": model}
        if target == "pages":
            fields["embedding_generated_at"] = generated_at
            fields["embedding_token_count"] = token_count
        self._execute(
            self.client.table(_EMBEDDING_TABLES[target]).update(fields).eq("id", row_id),
            f"{target} embedding update",
        )

    def clear_embeddings(self, target: str) -> int:
        fields: Dict[str, Any] = {"embedding": None}
        if target == "pages":
            fields["embedding_generated_at"] = None
            fields["embedding_token_count"] = None
        result = self._execute(
            self.client.table(_EMBEDDING_TABLES[target]).update(fields).not_.is_("embedding", "null"),
            f"{target} embedding reset",
        )
        return len(result.data or [])

    def embedding_coverage(self) -> List[Dict[str, Any]]:
        result = self._execute(self.client.rpc("get_embedding_stats", {}), "embedding stats")
        return [
            {
                "source_id": row.get("source_id"),
                "source_name": row.get("source_name") or row.get("name"),
                "total_pages": row.get("total_pages") or 0,
                "embedded_pages": row.get("embedded_pages") or 0,
                "avg_token_count": row.get("avg_token_count"),
            }
            for row in (result.data or [])
        ]

    # =========================================================================
    # SEARCH
    # =========================================================================

    def semantic_search(
        self,
        embedding: List[float],
        threshold: float,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        result = self._execute(
            self.client.rpc("search_documentation_semantic", {
                "query_embedding": embedding,
                "match_threshold": threshold,
                "match_count": limit,
                "filter_source_ids": source_ids or None,
            }),
            "semantic search",
        )
        return result.data or []

    def hybrid_search(
        self,
        query_text: str,
        embedding: List[float],
        limit: int,
        semantic_weight: float,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        result = self._execute(
            self.client.rpc("search_documentation_hybrid", {
                "query_text": query_text,
                "query_embedding": embedding,
                "match_count": limit,
                "semantic_weight": semantic_weight,
            }),
            "hybrid search",
        )
        rows = result.data or []
        # The RPC has no source filter parameter
        if source_ids:
            allowed = set(source_ids)
            rows = [row for row in rows if row.get("source_id") in allowed]
        return rows

    def fulltext_search(
        self,
        query_text: str,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        term = _sanitize_search_term(query_text)
        if not term:
            return []

        query = self.client.table(PAGES_TABLE).select(
            "id, title, url, content, section, source_id, knowledge_sources!inner(name)"
        ).or_(
            f'title.wfts(english)."{term}",content.wfts(english)."{term}"'
        )
        if source_ids:
            query = query.in_("source_id", source_ids)

        result = self._execute(query.limit(limit), "fulltext search")
        return result.data or []

    # =========================================================================
    # QUERIES
    # =========================================================================

    def insert_query(self, record: Dict[str, Any]) -> Dict[str, Any]:
        result = self._execute(self.client.table(QUERIES_TABLE).insert(record), "query insert")
        return _first(result.data)

    def update_query(self, query_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self.client.table(QUERIES_TABLE).update(fields).eq("id", query_id),
            "query update",
        )
        return _first(result.data)

    def find_similar_queries(self, embedding: List[float], threshold: float, limit: int) -> List[Dict[str, Any]]:
        result = self._execute(
            self.client.rpc("find_similar_queries", {
                "query_embedding": embedding,
                "similarity_threshold": threshold,
                "max_results": limit,
            }),
            "similar query search",
        )
        return result.data or []

    def list_queries(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        def build():
            query = self.client.table(QUERIES_TABLE).select(_QUERY_LISTING_COLUMNS)
            if since is not None:
                query = query.gte("created_at", since.isoformat())
            return query.order("created_at").order("id")

        return self._fetch_all(build, "query listing")

    def list_topic_queries(self, topic: str, since: datetime) -> List[Dict[str, Any]]:
        """
        Queries in the window that could carry `topic` as a gap key.

        Matches detected topics, detected languages, or the raw text (for
        keyword-derived keys). Callers re-apply the exact key and failure rules.
        """
        term = _sanitize_search_term(topic)
        if not term:
            return []
        topic_filter = (
            f'detected_topics.cs.{{"{term}"}},'
            f'detected_languages.cs.{{"{term}"}},'
            f'query_text.ilike."*{term}*"'
        )
        return self._fetch_all(
            lambda: self.client.table(QUERIES_TABLE).select(_QUERY_LISTING_COLUMNS).gte(
                "created_at", since.isoformat()
            ).or_(topic_filter).order("created_at").order("id"),
            "topic query listing",
        )

    def _count_queries(self, since: datetime, resolved_only: bool = False) -> int:
        query = self.client.table(QUERIES_TABLE).select("id", count="exact", head=True).gte(
            "created_at", since.isoformat()
        )
        if resolved_only:
            query = query.eq("found_in_docs", True)
        result = self._execute(query, "query count")
        return result.count or 0

    def query_summary(self, since: datetime) -> Dict[str, Any]:
        """Totals and average satisfaction for the window, computed in the database."""
        satisfaction = self._execute(
            self.client.rpc("calculate_avg_satisfaction", {"time_period": _interval_since(since)}),
            "satisfaction average",
        )
        return {
            "total_queries": self._count_queries(since),
            "resolved_queries": self._count_queries(since, resolved_only=True),
            "avg_satisfaction": _rounded_scalar(satisfaction.data),
        }

    def recent_queries(self, limit: int) -> List[Dict[str, Any]]:
        result = self._execute(
            self.client.table(QUERIES_TABLE).select(
                "id, query_text, query_intent, query_complexity, found_in_docs, "
                "top_similarity_score, response_time_ms, user_satisfaction, metadata, created_at"
            ).order("created_at", desc=True).limit(limit),
            "recent queries",
        )
        return result.data or []

    # =========================================================================
    # CONTENT GAPS
    # =========================================================================

    def find_active_gap(self, topic: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self.client.table(GAPS_TABLE).select("*").eq("topic", topic).neq(
                "status", "resolved"
            ).order("created_at", desc=True).limit(1),
            "gap lookup",
        )
        return _first(result.data)

    def insert_gap(self, record: Dict[str, Any]) -> Dict[str, Any]:
        result = self._execute(self.client.table(GAPS_TABLE).insert(record), "gap insert")
        return _first(result.data)

    def update_gap(self, gap_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = {**fields, "updated_at": utc_now_iso()}
        result = self._execute(
            self.client.table(GAPS_TABLE).update(payload).eq("id", gap_id),
            "gap update",
        )
        return _first(result.data)

    def list_gaps(self, status: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        query = self.client.table(GAPS_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        result = self._execute(
            query.order("query_frequency", desc=True).order("last_detected_at", desc=True).limit(limit),
            "gap listing",
        )
        return result.data or []

    # =========================================================================
    # STATS
    # =========================================================================

    def _count(self, table: str, embedded_only: bool = False) -> int:
        query = self.client.table(table).select("id", count="exact", head=True)
        if embedded_only:
            query = query.not_.is_("embedding", "null")
        result = self._execute(query, f"{table} count")
        return result.count or 0

    def knowledge_counts(self) -> Dict[str, int]:
        return {
            "total_documents": self._count(PAGES_TABLE),
            "total_chunks": self._count(CHUNKS_TABLE),
            "total_embeddings": self._count(PAGES_TABLE, embedded_only=True),
            "total_queries": self._count(QUERIES_TABLE),
        }

