"""
Shared constants for the knowledge service.

Classification vocabularies, lifecycle enums and table names. Tunable
thresholds live in app.core.config instead.
"""

# Query intents, in the precedence order the analyzer evaluates them
INTENT_HOW_TO = "how-to"
INTENT_EXPLANATION = "explanation"
INTENT_COMPARISON = "comparison"
INTENT_TROUBLESHOOTING = "troubleshooting"
INTENT_REFERENCE = "reference"

QUERY_INTENTS = {
    INTENT_HOW_TO,
    INTENT_EXPLANATION,
    INTENT_REFERENCE,
    INTENT_TROUBLESHOOTING,
    INTENT_COMPARISON,
}

COMPLEXITY_LEVELS = ("simple", "moderate", "complex")

# Declaration order is the order matches are reported in
PROGRAMMING_LANGUAGES = (
    "javascript", "typescript", "python", "java", "c++", "c#", "go", "rust",
    "ruby", "php", "swift", "kotlin", "scala", "html", "css", "sql",
)

TECH_TOPICS = (
    "react", "vue", "angular", "svelte", "next.js", "node.js", "express",
    "django", "flask", "fastapi", "postgresql", "mongodb", "redis", "docker",
    "kubernetes", "aws", "git", "webpack", "vite", "babel",
)

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "was", "are", "were", "been", "be",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "this", "that", "these", "those",
})

# Search
SEARCH_TYPES = ("semantic", "hybrid", "fulltext")
HYBRID_SEMANTIC_WEIGHT = 0.7
HYBRID_LEXICAL_WEIGHT = 0.3
MAX_RELEVANT_PAGE_IDS = 10

# Content gaps
GAP_PRIORITIES = ("low", "medium", "high", "critical")
GAP_STATUSES = ("identified", "planned", "in_progress", "resolved")
GAP_ACTIVE_STATUSES = ("identified", "planned", "in_progress")

# Metrics time ranges -> window length in hours
TIME_RANGE_HOURS = {
    "1h": 1,
    "24h": 24,
    "7d": 24 * 7,
    "30d": 24 * 30,
    "90d": 24 * 90,
}
DEFAULT_TIME_RANGE = "24h"

# Manual ingestion
MANUAL_URL_SCHEME = "manual://"
DEFAULT_MANUAL_SOURCE = "manual_input"
DEFAULT_UPLOAD_SOURCE = "manual_upload"
DEFAULT_MANUAL_CATEGORY = "user_provided"

# Tables
PAGES_TABLE = "documentation_pages"
CHUNKS_TABLE = "documentation_chunks"
SOURCES_TABLE = "knowledge_sources"
QUERIES_TABLE = "user_queries"
GAPS_TABLE = "content_gaps"
