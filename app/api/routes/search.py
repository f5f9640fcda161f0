"""
Query analysis and search endpoints.

POST /analyze-query  analyze, search and track one query
GET  /analyze-query  similar past queries
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import get_search_service
from app.core.config import settings
from app.features.insights.tracker import QueryCorrelation
from app.features.search.service import SearchService

logger = logging.getLogger("Javari.API.Search")
router = APIRouter(tags=["search"])


class AnalyzeQueryRequest(BaseModel):
    """Search request; field names follow the public camelCase contract."""
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field("", description="Free-text query")
    search_type: Literal["semantic", "hybrid", "fulltext"] = Field("hybrid", alias="searchType")
    match_threshold: float = Field(settings.SEARCH_MATCH_THRESHOLD, ge=0.0, le=1.0, alias="matchThreshold")
    match_count: int = Field(settings.SEARCH_MATCH_COUNT, ge=1, le=100, alias="matchCount")
    source_ids: Optional[List[str]] = Field(None, alias="sourceIds")
    track_query: bool = Field(True, alias="trackQuery")
    session_id: Optional[str] = Field(None, alias="sessionId")
    user_id: Optional[str] = Field(None, alias="userId")
    conversation_id: Optional[str] = Field(None, alias="conversationId")


@router.post("/analyze-query")
async def analyze_query_endpoint(
    body: AnalyzeQueryRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: SearchService = Depends(get_search_service),
):
    """
    Analyze a query, search the knowledge base and track the outcome.

    Content-gap detection runs after the response has been sent.
    """
    result = await service.search(
        query=body.query,
        search_type=body.search_type,
        match_threshold=body.match_threshold,
        match_count=body.match_count,
        source_ids=body.source_ids,
        track_query=body.track_query,
        correlation=QueryCorrelation(
            session_id=body.session_id,
            user_id=body.user_id,
            conversation_id=body.conversation_id,
        ),
    )

    if result.observation is not None:
        background_tasks.add_task(
            service.detect_gaps,
            result.observation,
            getattr(request.state, "correlation_id", None),
        )

    return result.to_response()


@router.get("/analyze-query")
async def similar_queries_endpoint(
    query: str = Query("", description="Query to find similar past queries for"),
    limit: int = Query(10, ge=1, le=100),
    service: SearchService = Depends(get_search_service),
):
    """Past queries within the similar-query threshold of `query`."""
    similar = await service.similar_queries(query, limit=limit)
    return {"success": True, "similarQueries": similar}
