"""
Query intelligence - analysis, tracking, content gaps and metrics.
"""

from app.features.insights.analyzer import QueryAnalysis, analyze_query, extract_keywords
from app.features.insights.tracker import QueryCorrelation, QueryTracker
from app.features.insights.gaps import ContentGapDetector, GapObservation, compute_priority, topic_keys
from app.features.insights.metrics import MetricsAggregator

__all__ = [
    "QueryAnalysis",
    "analyze_query",
    "extract_keywords",
    "QueryCorrelation",
    "QueryTracker",
    "ContentGapDetector",
    "GapObservation",
    "compute_priority",
    "topic_keys",
    "MetricsAggregator",
]
