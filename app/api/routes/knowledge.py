"""
Knowledge base endpoints.

POST /knowledge/upload  feed a document (multipart file or JSON text)
GET  /knowledge/stats   document, chunk, embedding and query totals
"""

import logging
from typing import Any, Dict, Optional

import pydantic
from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile
from pydantic import BaseModel, Field

from app.api.dependencies import get_ingestion_service, get_metrics_aggregator
from app.features.insights.metrics import MetricsAggregator
from app.features.knowledge.ingestion import IngestionResult, IngestionService
from app.shared.constants import (
    DEFAULT_MANUAL_CATEGORY,
    DEFAULT_MANUAL_SOURCE,
    DEFAULT_UPLOAD_SOURCE,
)
from app.shared.errors import ValidationError

logger = logging.getLogger("Javari.API.Knowledge")
router = APIRouter(prefix="/knowledge", tags=["knowledge"])


class UploadTextRequest(BaseModel):
    """JSON body for manual knowledge input."""
    title: str = ""
    content: str = ""
    source: str = DEFAULT_MANUAL_SOURCE
    category: str = DEFAULT_MANUAL_CATEGORY
    url: Optional[str] = Field(None, description="Natural key; defaults to a content-derived manual:// URL")


def _upload_response(result: IngestionResult) -> Dict[str, Any]:
    page = result.page
    if result.deduplicated:
        message = f"'{page.get('title')}' is already in the knowledge base"
    else:
        message = f"Added '{page.get('title')}' with {result.chunks_created} searchable chunks"
    return {
        "success": True,
        "document": {
            "id": page.get("id"),
            "title": page.get("title"),
            "createdAt": page.get("created_at"),
        },
        "chunksCreated": result.chunks_created,
        "totalChunks": result.total_chunks,
        "embeddingGenerated": result.embedding_generated,
        "embeddingError": result.embedding_error,
        "chunkEmbeddingFailures": result.chunk_embedding_failures,
        "deduplicated": result.deduplicated,
        "message": message,
    }


async def _read_upload(request: Request) -> UploadTextRequest:
    form = await request.form()
    file = form.get("file")
    if not isinstance(file, UploadFile):
        raise ValidationError("No file provided", details={"field": "file"})

    raw = await file.read()
    return UploadTextRequest(
        title=file.filename or "untitled",
        content=raw.decode("utf-8", errors="replace"),
        source=DEFAULT_UPLOAD_SOURCE,
        category=form.get("category") or DEFAULT_MANUAL_CATEGORY,
    )


async def _read_json(request: Request) -> UploadTextRequest:
    try:
        payload = await request.json()
        return UploadTextRequest.model_validate(payload)
    except ValueError as e:
        # Malformed JSON and schema violations are both ValueErrors
        details = {"errors": e.errors(include_url=False)} if isinstance(e, pydantic.ValidationError) else None
        raise ValidationError("Invalid upload body", details=details) from e


@router.post("/upload")
async def upload_knowledge(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Add a document to the knowledge base.

    Accepts either multipart/form-data with a `file` field (title is the
    filename) or JSON `{title, content, source, category}`. The document is
    chunked and embedded; embedding failures are reported, not raised.
    """
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" in content_type:
        upload = await _read_upload(request)
    else:
        upload = await _read_json(request)

    result = await service.ingest(
        title=upload.title,
        content=upload.content,
        source=upload.source,
        category=upload.category,
        url=upload.url,
    )
    return _upload_response(result)


@router.get("/stats")
async def get_knowledge_stats(aggregator: MetricsAggregator = Depends(get_metrics_aggregator)):
    """Totals across the knowledge base."""
    stats = await aggregator.knowledge_stats()
    return {"success": True, "stats": stats}
