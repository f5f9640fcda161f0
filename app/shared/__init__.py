# Shared constants and utilities
from .constants import (
    QUERY_INTENTS,
    SEARCH_TYPES,
    GAP_PRIORITIES,
    GAP_STATUSES,
    TIME_RANGE_HOURS,
)
from .time_utils import utc_now, utc_now_iso, parse_timestamp

__all__ = [
    "QUERY_INTENTS",
    "SEARCH_TYPES",
    "GAP_PRIORITIES",
    "GAP_STATUSES",
    "TIME_RANGE_HOURS",
    "utc_now",
    "utc_now_iso",
    "parse_timestamp",
]
