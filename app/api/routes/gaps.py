"""
Content-gap endpoints.
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import get_gap_detector
from app.features.insights.gaps import ContentGapDetector

logger = logging.getLogger("Javari.API.Gaps")
router = APIRouter(prefix="/gaps", tags=["gaps"])


class GapStatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["identified", "planned", "in_progress", "resolved"]
    resolution_plan: Optional[str] = Field(None, alias="resolutionPlan")
    resolved_by_page_ids: Optional[List[str]] = Field(None, alias="resolvedByPageIds")


class DetectGapsRequest(BaseModel):
    days: Optional[int] = Field(None, ge=1, le=90, description="Look-back window; defaults to GAP_WINDOW_DAYS")


@router.get("")
async def list_gaps(
    status: Optional[str] = Query(None, description="identified, planned, in_progress or resolved"),
    limit: int = Query(10, ge=1, le=100),
    detector: ContentGapDetector = Depends(get_gap_detector),
):
    """Content gaps, most frequent first."""
    gaps = await detector.list_gaps(status=status, limit=limit)
    return {"success": True, "gaps": gaps}


@router.patch("/{gap_id}")
async def update_gap_status(
    gap_id: str,
    body: GapStatusUpdate,
    detector: ContentGapDetector = Depends(get_gap_detector),
):
    """Move a gap to a new status; `resolved` stamps resolved_at."""
    gap = await detector.update_status(
        gap_id,
        body.status,
        resolution_plan=body.resolution_plan,
        resolved_by_page_ids=body.resolved_by_page_ids,
    )
    return {"success": True, "gap": gap}


@router.post("/detect")
async def detect_gaps(
    body: Optional[DetectGapsRequest] = None,
    detector: ContentGapDetector = Depends(get_gap_detector),
):
    """Re-run batch detection over recent tracked queries."""
    body = body or DetectGapsRequest()
    gaps = await detector.process_window(body.days)
    return {"success": True, "gaps": gaps, "count": len(gaps)}
