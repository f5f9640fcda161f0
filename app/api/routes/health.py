from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Simple health endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "store_backend": settings.KNOWLEDGE_STORE_BACKEND,
        "openai_configured": bool(settings.OPENAI_API_KEY),
    }
