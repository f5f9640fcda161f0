"""
Supabase client factory.

One service-role client per process. Server-side only: the service key
bypasses row level security.
"""

import logging
from functools import lru_cache

from supabase import Client, create_client

from app.core.config import settings

logger = logging.getLogger("Javari.Database")


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the singleton Supabase client.

    Raises:
        ValueError: If SUPABASE_URL or SUPABASE_KEY is not set
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise ValueError("Missing Supabase environment variables (SUPABASE_URL, SUPABASE_KEY)")

    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    logger.info("Supabase client initialized")
    return client
