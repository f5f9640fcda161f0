"""
Learning metrics and query feedback endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import get_metrics_aggregator, get_query_tracker
from app.features.insights.metrics import MetricsAggregator
from app.features.insights.tracker import QueryTracker
from app.shared.constants import DEFAULT_TIME_RANGE

logger = logging.getLogger("Javari.API.Metrics")
router = APIRouter(prefix="/metrics", tags=["metrics"])


class FeedbackRequest(BaseModel):
    """Post-hoc feedback on a tracked query."""
    model_config = ConfigDict(populate_by_name=True)

    query_id: Optional[str] = Field(None, alias="queryId")
    satisfaction: Optional[int] = Field(None, description="1-5 rating")
    feedback: Optional[str] = None
    was_helpful: Optional[bool] = Field(None, alias="wasHelpful")


@router.get("")
async def get_metrics(
    time_range: str = Query(DEFAULT_TIME_RANGE, alias="range", description="1h, 24h, 7d, 30d or 90d"),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
):
    """Resolution rate, satisfaction, volume, coverage, intents, gaps and recent queries."""
    metrics = await aggregator.compute_metrics(time_range)
    return {
        "success": True,
        "timeRange": metrics["time_range"],
        "metrics": metrics,
        "generatedAt": metrics["generated_at"],
    }


@router.post("/feedback")
async def submit_feedback(
    body: FeedbackRequest,
    tracker: QueryTracker = Depends(get_query_tracker),
):
    """Attach satisfaction / helpfulness feedback to a tracked query."""
    updated = await tracker.attach_feedback(
        query_id=body.query_id,
        satisfaction=body.satisfaction,
        feedback_text=body.feedback,
        was_helpful=body.was_helpful,
    )
    return {"success": True, "query": updated}
