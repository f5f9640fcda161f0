import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


_SUPABASE_URL = os.getenv('SUPABASE_URL') or os.getenv('NEXT_PUBLIC_SUPABASE_URL')
_SUPABASE_KEY = os.getenv('SUPABASE_KEY') or os.getenv('SUPABASE_SERVICE_ROLE_KEY')

_OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')

# 'supabase' in deployments, 'memory' for local development without a database
_KNOWLEDGE_STORE_BACKEND = os.getenv('KNOWLEDGE_STORE_BACKEND', 'supabase').lower()


class Config:
    """Central configuration for the knowledge service."""

    SERVICE_NAME = os.getenv('SERVICE_NAME', 'javari-knowledge-service')

    SUPABASE_URL = _SUPABASE_URL
    SUPABASE_KEY = _SUPABASE_KEY
    KNOWLEDGE_STORE_BACKEND = _KNOWLEDGE_STORE_BACKEND
    # Rows per PostgREST request; must not exceed the project's max-rows setting
    SUPABASE_PAGE_SIZE = _env_int('SUPABASE_PAGE_SIZE', 1000)

    OPENAI_API_KEY = _OPENAI_API_KEY

    # Embeddings
    EMBEDDING_MODEL = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
    EMBEDDING_BATCH_SIZE = _env_int('EMBEDDING_BATCH_SIZE', 100)
    EMBEDDING_BATCH_DELAY_SECONDS = _env_float('EMBEDDING_BATCH_DELAY_SECONDS', 1.0)
    EMBEDDING_MAX_TOKENS = _env_int('EMBEDDING_MAX_TOKENS', 8000)
    # text-embedding-3-small list price, advisory only
    EMBEDDING_COST_PER_1K_TOKENS = _env_float('EMBEDDING_COST_PER_1K_TOKENS', 0.00002)
    EMBEDDING_RUN_TIMEOUT_SECONDS = _env_float('EMBEDDING_RUN_TIMEOUT_SECONDS', 300.0)
    EMBEDDING_BACKFILL_LIMIT = _env_int('EMBEDDING_BACKFILL_LIMIT', 1000)
    # Row ceiling for the rebuild that follows a regenerate-all
    EMBEDDING_REGENERATE_LIMIT = _env_int('EMBEDDING_REGENERATE_LIMIT', 100000)

    # Chunking
    CHUNK_TARGET_SIZE = _env_int('CHUNK_TARGET_SIZE', 500)

    # Search
    SEARCH_MATCH_THRESHOLD = _env_float('SEARCH_MATCH_THRESHOLD', 0.7)
    SEARCH_MATCH_COUNT = _env_int('SEARCH_MATCH_COUNT', 10)
    SIMILAR_QUERY_THRESHOLD = _env_float('SIMILAR_QUERY_THRESHOLD', 0.85)

    # Content gap detection
    GAP_MIN_FREQUENCY = _env_int('GAP_MIN_FREQUENCY', 3)
    GAP_HIGH_FREQUENCY = _env_int('GAP_HIGH_FREQUENCY', 5)
    GAP_CRITICAL_FREQUENCY = _env_int('GAP_CRITICAL_FREQUENCY', 10)
    GAP_LOW_SIMILARITY = _env_float('GAP_LOW_SIMILARITY', 0.3)
    GAP_LOW_CONFIDENCE_SCORE = _env_float('GAP_LOW_CONFIDENCE_SCORE', 0.5)
    GAP_WINDOW_DAYS = _env_int('GAP_WINDOW_DAYS', 7)
    GAP_MAX_EXAMPLE_QUERIES = _env_int('GAP_MAX_EXAMPLE_QUERIES', 10)


settings = Config()
