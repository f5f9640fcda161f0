"""
Shared OpenAI client for the knowledge service.

Only the embeddings endpoint is used; every call goes through one
AsyncOpenAI instance so the underlying httpx connection pool is reused.
"""

import logging
from functools import lru_cache

from openai import AsyncOpenAI

from app.core.config import settings

logger = logging.getLogger("Javari.OpenAI")


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """
    Get the singleton OpenAI async client.

    Raises:
        ValueError: If OPENAI_API_KEY is not set
    """
    if not settings.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY environment variable not set")

    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    logger.info("OpenAI client initialized")
    return client
