from fastapi import APIRouter

from app.api.routes import embeddings, gaps, health, knowledge, metrics, search


router = APIRouter()

router.include_router(search.router)
router.include_router(metrics.router)
router.include_router(knowledge.router)
router.include_router(embeddings.router)
router.include_router(gaps.router)
router.include_router(health.router)
