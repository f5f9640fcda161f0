from app.features.search.service import SearchResult, SearchService

__all__ = ["SearchResult", "SearchService"]
