"""
In-process KnowledgeStore for local development and tests.

Mirrors the row shapes SupabaseKnowledgeStore gets back from PostgREST and
the search RPCs, so the retrieval adapters cannot tell the two apart.
Vector search is brute-force cosine similarity with numpy; lexical match is
a term-overlap score over title and content.
"""

import logging
import re
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from app.shared.constants import STOP_WORDS
from app.shared.time_utils import parse_timestamp, utc_now_iso

logger = logging.getLogger("Javari.Knowledge.MemoryStore")

_TERM_PATTERN = re.compile(r"[a-z0-9][a-z0-9.+#-]*")


def _cosine_similarity(a: List[float], b: List[float]) -> Optional[float]:
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    norm = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if norm == 0:
        return None
    return float(np.dot(vec_a, vec_b) / norm)


def _search_terms(text: str) -> List[str]:
    terms = []
    for term in _TERM_PATTERN.findall(text.lower()):
        term = term.rstrip(".")
        if term and term not in STOP_WORDS and term not in terms:
            terms.append(term)
    return terms


def _lexical_score(terms: List[str], page: Dict[str, Any]) -> float:
    """Fraction of query terms present in title + content."""
    if not terms:
        return 0.0
    haystack = f"{page.get('title') or ''} {page.get('content') or ''}".lower()
    matched = sum(1 for term in terms if term in haystack)
    return matched / len(terms)


class InMemoryKnowledgeStore:
    """KnowledgeStore kept in dictionaries; safe to call from worker threads."""

    def __init__(self):
        self.sources: Dict[str, Dict[str, Any]] = {}
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.chunks: Dict[str, Dict[str, Any]] = {}
        self.queries: Dict[str, Dict[str, Any]] = {}
        self.gaps: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _table(self, target: str) -> Dict[str, Dict[str, Any]]:
        return self.pages if target == "pages" else self.chunks

    def _source_name(self, source_id: Optional[str]) -> Optional[str]:
        source = self.sources.get(source_id) if source_id else None
        return source["name"] if source else None

    # =========================================================================
    # SOURCES AND PAGES
    # =========================================================================

    def get_or_create_source(self, name: str, source_type: str) -> Dict[str, Any]:
        with self._lock:
            for source in self.sources.values():
                if source["name"] == name:
                    return dict(source)
            source = {
                "id": self._new_id(),
                "name": name,
                "source_type": source_type,
                "created_at": utc_now_iso(),
            }
            self.sources[source["id"]] = source
            return dict(source)

    def get_page_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for page in self.pages.values():
                if page.get("url") == url:
                    return dict(page)
        return None

    def upsert_page(self, page: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now_iso()
        with self._lock:
            existing = next((p for p in self.pages.values() if p.get("url") == page.get("url")), None)
            if existing is not None:
                existing.update(page)
                existing["updated_at"] = now
                return dict(existing)

            stored = {
                "embedding": None,
                "embedding_model": None,
                "embedding_generated_at": None,
                "embedding_token_count": None,
                "section": None,
                "metadata": {},
                **page,
                "id": page.get("id") or self._new_id(),
                "created_at": page.get("created_at") or now,
                "updated_at": now,
            }
            self.pages[stored["id"]] = stored
            return dict(stored)

    def replace_chunks(self, page_id: str, chunks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        with self._lock:
            existing = {
                chunk["chunk_index"]: chunk
                for chunk in self.chunks.values()
                if chunk["page_id"] == page_id
            }
            for index, chunk in existing.items():
                if index >= len(chunks):
                    del self.chunks[chunk["id"]]

            stored = []
            for chunk in chunks:
                current = existing.get(chunk["chunk_index"])
                row = {
                    "embedding": None,
                    "embedding_model": None,
                    **chunk,
                    "page_id": page_id,
                    "id": current["id"] if current else self._new_id(),
                    "created_at": current["created_at"] if current else utc_now_iso(),
                }
                self.chunks[row["id"]] = row
                stored.append(dict(row))
            return stored

    # =========================================================================
    # EMBEDDINGS
    # =========================================================================

    def fetch_missing_embeddings(self, target: str, limit: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [dict(row) for row in self._table(target).values() if row.get("embedding") is None]
        return rows[:limit]

    def update_embedding(
        self,
        target: str,
        row_id: str,
        embedding: List[float],
        model: str,
        token_count: int,
        generated_at: str,
    ) -> None:
        with self._lock:
            row = self._table(target).get(row_id)
            if row is None:
                raise KeyError(f"{target} row not found: {row_id}")
            row["embedding"] = list(embedding)
            row["embedding_model"] = model
            if target == "pages":
                row["embedding_generated_at"] = generated_at
                row["embedding_token_count"] = token_count

    def clear_embeddings(self, target: str) -> int:
        cleared = 0
        with self._lock:
            for row in self._table(target).values():
                if row.get("embedding") is not None:
                    row["embedding"] = None
                    if target == "pages":
                        row["embedding_generated_at"] = None
                        row["embedding_token_count"] = None
                    cleared += 1
        return cleared

    def embedding_coverage(self) -> List[Dict[str, Any]]:
        grouped: Dict[Optional[str], List[Dict[str, Any]]] = {}
        with self._lock:
            for page in self.pages.values():
                grouped.setdefault(page.get("source_id"), []).append(page)

            coverage = []
            for source_id, pages in grouped.items():
                embedded = [p for p in pages if p.get("embedding") is not None]
                token_counts = [p["embedding_token_count"] for p in embedded if p.get("embedding_token_count")]
                coverage.append({
                    "source_id": source_id,
                    "source_name": self._source_name(source_id),
                    "total_pages": len(pages),
                    "embedded_pages": len(embedded),
                    "avg_token_count": float(np.mean(token_counts)) if token_counts else None,
                })
        return coverage

    # =========================================================================
    # SEARCH
    # =========================================================================

    def _candidate_pages(self, source_ids: Optional[List[str]]) -> List[Dict[str, Any]]:
        with self._lock:
            pages = [dict(page) for page in self.pages.values()]
        if source_ids:
            allowed = set(source_ids)
            pages = [page for page in pages if page.get("source_id") in allowed]
        return pages

    def _result_row(self, page: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "page_id": page["id"],
            "title": page.get("title"),
            "url": page.get("url"),
            "content": page.get("content"),
            "section": page.get("section"),
            "source_id": page.get("source_id"),
            "source_name": self._source_name(page.get("source_id")),
        }

    def semantic_search(
        self,
        embedding: List[float],
        threshold: float,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        rows = []
        for page in self._candidate_pages(source_ids):
            if page.get("embedding") is None:
                continue
            similarity = _cosine_similarity(embedding, page["embedding"])
            if similarity is not None and similarity >= threshold:
                rows.append({**self._result_row(page), "similarity": similarity})

        rows.sort(key=lambda row: row["similarity"], reverse=True)
        return rows[:limit]

    def hybrid_search(
        self,
        query_text: str,
        embedding: List[float],
        limit: int,
        semantic_weight: float,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        terms = _search_terms(query_text)
        rows = []
        for page in self._candidate_pages(source_ids):
            semantic = 0.0
            if page.get("embedding") is not None:
                semantic = _cosine_similarity(embedding, page["embedding"]) or 0.0
            lexical = _lexical_score(terms, page)
            combined = semantic_weight * semantic + (1 - semantic_weight) * lexical
            if combined > 0:
                rows.append({
                    **self._result_row(page),
                    "semantic_score": semantic,
                    "text_score": lexical,
                    "combined_score": combined,
                })

        rows.sort(key=lambda row: row["combined_score"], reverse=True)
        return rows[:limit]

    def fulltext_search(
        self,
        query_text: str,
        limit: int,
        source_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        terms = _search_terms(query_text)
        scored = []
        for page in self._candidate_pages(source_ids):
            score = _lexical_score(terms, page)
            if score > 0:
                scored.append((score, page))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            {
                "id": page["id"],
                "title": page.get("title"),
                "url": page.get("url"),
                "content": page.get("content"),
                "section": page.get("section"),
                "source_id": page.get("source_id"),
                "knowledge_sources": {"name": self._source_name(page.get("source_id"))},
            }
            for _, page in scored[:limit]
        ]

    # =========================================================================
    # QUERIES
    # =========================================================================

    def insert_query(self, record: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            row = {
                "user_satisfaction": None,
                "user_feedback_text": None,
                "was_helpful": None,
                **record,
                "id": record.get("id") or self._new_id(),
                "created_at": record.get("created_at") or utc_now_iso(),
            }
            self.queries[row["id"]] = row
            return dict(row)

    def update_query(self, query_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.queries.get(query_id)
            if row is None:
                return None
            row.update(fields)
            return dict(row)

    def find_similar_queries(self, embedding: List[float], threshold: float, limit: int) -> List[Dict[str, Any]]:
        with self._lock:
            candidates = [dict(row) for row in self.queries.values() if row.get("query_embedding")]

        rows = []
        for row in candidates:
            similarity = _cosine_similarity(embedding, row["query_embedding"])
            if similarity is not None and similarity >= threshold:
                rows.append({
                    "id": row["id"],
                    "query_text": row.get("query_text"),
                    "found_in_docs": row.get("found_in_docs"),
                    "created_at": row.get("created_at"),
                    "similarity": similarity,
                })

        rows.sort(key=lambda row: row["similarity"], reverse=True)
        return rows[:limit]

    def list_queries(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [dict(row) for row in self.queries.values()]
        if since is not None:
            rows = [row for row in rows if parse_timestamp(row["created_at"]) >= since]
        rows.sort(key=lambda row: parse_timestamp(row["created_at"]))
        return rows

    def list_topic_queries(self, topic: str, since: datetime) -> List[Dict[str, Any]]:
        term = topic.lower()
        return [
            row for row in self.list_queries(since)
            if term in [t.lower() for t in (row.get("detected_topics") or [])]
            or term in [t.lower() for t in (row.get("detected_languages") or [])]
            or term in (row.get("query_text") or "").lower()
        ]

    def query_summary(self, since: datetime) -> Dict[str, Any]:
        rows = self.list_queries(since)
        ratings = [row["user_satisfaction"] for row in rows if row.get("user_satisfaction") is not None]
        return {
            "total_queries": len(rows),
            "resolved_queries": sum(1 for row in rows if row.get("found_in_docs")),
            "avg_satisfaction": round(sum(ratings) / len(ratings), 2) if ratings else None,
        }

    def recent_queries(self, limit: int) -> List[Dict[str, Any]]:
        rows = self.list_queries()
        rows.reverse()
        return [
            {key: value for key, value in row.items() if key != "query_embedding"}
            for row in rows[:limit]
        ]

    # =========================================================================
    # CONTENT GAPS
    # =========================================================================

    def find_active_gap(self, topic: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for gap in self.gaps.values():
                if gap["topic"] == topic and gap.get("status") != "resolved":
                    return dict(gap)
        return None

    def insert_gap(self, record: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now_iso()
        with self._lock:
            row = {
                **record,
                "id": record.get("id") or self._new_id(),
                "created_at": now,
                "updated_at": now,
            }
            self.gaps[row["id"]] = row
            return dict(row)

    def update_gap(self, gap_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.gaps.get(gap_id)
            if row is None:
                return None
            row.update(fields)
            row["updated_at"] = utc_now_iso()
            return dict(row)

    def list_gaps(self, status: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [dict(row) for row in self.gaps.values()]
        if status:
            rows = [row for row in rows if row.get("status") == status]
        rows.sort(
            key=lambda row: (row.get("query_frequency") or 0, row.get("last_detected_at") or ""),
            reverse=True,
        )
        return rows[:limit]

    # =========================================================================
    # STATS
    # =========================================================================

    def knowledge_counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_documents": len(self.pages),
                "total_chunks": len(self.chunks),
                "total_embeddings": sum(1 for p in self.pages.values() if p.get("embedding") is not None),
                "total_queries": len(self.queries),
            }
