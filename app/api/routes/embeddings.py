"""
Embedding backfill endpoints, usually triggered by a scheduler.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import get_embedding_service
from app.features.knowledge.embeddings import EmbeddingService

logger = logging.getLogger("Javari.API.Embeddings")
router = APIRouter(prefix="/embeddings", tags=["embeddings"])


class GenerateEmbeddingsRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=100000)
    target: Literal["pages", "chunks"] = "pages"
    regenerate: bool = Field(False, description="Clear every page embedding first")


@router.post("/generate")
async def generate_embeddings(
    body: Optional[GenerateEmbeddingsRequest] = None,
    service: EmbeddingService = Depends(get_embedding_service),
):
    """
    Embed pages or chunks that have no vector yet.

    Partial failures are counted in the result; a run that hits its time
    ceiling reports `timed_out` and the rest is picked up next time.
    """
    body = body or GenerateEmbeddingsRequest()
    logger.info(f"Starting embedding generation (limit: {body.limit}, target: {body.target}, regenerate: {body.regenerate})")

    if body.regenerate:
        result = await service.regenerate_all_embeddings(limit=body.limit)
    else:
        result = await service.generate_missing_embeddings(limit=body.limit, target=body.target)

    return {
        "success": True,
        **result.to_dict(),
        "message": f"Generated embeddings for {result.processed} {result.target}",
    }


@router.get("/stats")
async def embedding_stats(service: EmbeddingService = Depends(get_embedding_service)):
    """Embedding coverage per knowledge source and overall."""
    stats = await service.get_embedding_stats()
    return {"success": True, "stats": stats}
