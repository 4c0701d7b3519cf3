"""
GrantMatch Pydantic Schemas
Request/Response models for API endpoints.
"""
from backend.schemas.matching import (
    DebugAssertion,
    DebugMatchingResponse,
    DiscoverRequest,
    DiscoverResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    SearchRequest,
    SearchResponse,
    SearchResult,
)

__all__ = [
    "DebugAssertion",
    "DebugMatchingResponse",
    "DiscoverRequest",
    "DiscoverResponse",
    "ProfileResponse",
    "ProfileUpdateRequest",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
]
