"""
Learning metrics over tracked queries.

Resolution rate, satisfaction, time-bucketed volume, embedding coverage,
intent breakdown, top content gaps and recent queries for one time window.
"""

import asyncio
import logging
from datetime import timedelta
from statistics import mean
from typing import Any, Dict, List, Optional

from app.features.knowledge.embeddings import build_coverage_report, coverage_percent
from app.shared.constants import DEFAULT_TIME_RANGE, TIME_RANGE_HOURS
from app.shared.time_utils import parse_timestamp, utc_now, utc_now_iso

logger = logging.getLogger("Javari.Insights.Metrics")

TOP_GAPS_LIMIT = 10
RECENT_QUERIES_LIMIT = 20


def resolve_time_range(time_range: Optional[str]) -> str:
    """Known range token, or the 24h default."""
    return time_range if time_range in TIME_RANGE_HOURS else DEFAULT_TIME_RANGE


def resolution_rate(resolved: int, total: int) -> float:
    """Percentage of resolved queries; 0.0 when there are none."""
    if total <= 0:
        return 0.0
    return round(resolved / total * 100, 2)


def group_query_volume(rows: List[Dict[str, Any]], granularity: str) -> List[Dict[str, Any]]:
    """
    Bucket queries by UTC hour ("YYYY-MM-DD HH:00") or day ("YYYY-MM-DD").

    Returns:
        Buckets sorted by key, each with total, resolved and resolution_rate
    """
    key_format = "%Y-%m-%d %H:00" if granularity == "hour" else "%Y-%m-%d"
    groups: Dict[str, Dict[str, int]] = {}

    for row in rows:
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is None:
            continue
        bucket = groups.setdefault(created_at.strftime(key_format), {"total": 0, "resolved": 0})
        bucket["total"] += 1
        if row.get("found_in_docs"):
            bucket["resolved"] += 1

    return [
        {
            "time": key,
            "total": counts["total"],
            "resolved": counts["resolved"],
            "resolution_rate": resolution_rate(counts["resolved"], counts["total"]),
        }
        for key, counts in sorted(groups.items())
    ]


def average_satisfaction(rows: List[Dict[str, Any]]) -> Optional[float]:
    ratings = [row["user_satisfaction"] for row in rows if row.get("user_satisfaction") is not None]
    if not ratings:
        return None
    return round(mean(ratings), 2)


def intent_breakdown(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(row.get("query_intent") or "none", []).append(row)

    breakdown = []
    for intent, intent_rows in grouped.items():
        resolved = sum(1 for row in intent_rows if row.get("found_in_docs"))
        breakdown.append({
            "intent": intent,
            "total": len(intent_rows),
            "resolved": resolved,
            "resolution_rate": resolution_rate(resolved, len(intent_rows)),
            "avg_satisfaction": average_satisfaction(intent_rows),
        })

    breakdown.sort(key=lambda item: item["total"], reverse=True)
    return breakdown


class MetricsAggregator:
    """Reads tracked history from the KnowledgeStore and summarises it."""

    def __init__(self, store):
        self.store = store

    async def compute_metrics(self, time_range: Optional[str] = DEFAULT_TIME_RANGE) -> Dict[str, Any]:
        """
        Metrics for one window.

        Args:
            time_range: 1h, 24h, 7d, 30d or 90d; anything else means 24h
        """
        range_token = resolve_time_range(time_range)
        hours = TIME_RANGE_HOURS[range_token]
        granularity = "hour" if hours <= 24 else "day"
        since = utc_now() - timedelta(hours=hours)

        summary, rows, coverage_rows, gaps, recent = await asyncio.gather(
            asyncio.to_thread(self.store.query_summary, since),
            asyncio.to_thread(self.store.list_queries, since),
            asyncio.to_thread(self.store.embedding_coverage),
            asyncio.to_thread(self.store.list_gaps, None, TOP_GAPS_LIMIT),
            asyncio.to_thread(self.store.recent_queries, RECENT_QUERIES_LIMIT),
        )

        total = summary["total_queries"]
        resolved = summary["resolved_queries"]
        logger.info(f"Computed metrics for {range_token}: {total} queries, {resolved} resolved")

        return {
            "time_range": range_token,
            "granularity": granularity,
            "total_queries": total,
            "resolved_queries": resolved,
            "resolution_rate": resolution_rate(resolved, total),
            "avg_satisfaction": summary["avg_satisfaction"],
            "volume_by_time": group_query_volume(rows, granularity),
            "embedding_coverage": build_coverage_report(coverage_rows),
            "intent_breakdown": intent_breakdown(rows),
            "content_gaps": gaps,
            "recent_queries": recent,
            "generated_at": utc_now_iso(),
        }

    async def knowledge_stats(self) -> Dict[str, Any]:
        """Document, chunk, embedding and query totals."""
        counts = await asyncio.to_thread(self.store.knowledge_counts)
        return {
            **counts,
            "embedding_coverage_percent": coverage_percent(
                counts.get("total_embeddings", 0),
                counts.get("total_documents", 0),
            ),
        }
