"""
Matching schemas for discovery, search, and profile updates.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field

from agents.matching.models import (
    GrantData,
    GrantPreferences,
    PipelineDebug,
    PipelineResult,
    PipelineStats,
    RankedGrant,
    RelevanceResult,
    SortBy,
    UserProfile,
)
from agents.matching.taxonomy import MatchTier


class DiscoverRequest(BaseModel):
    """Schema for a personalized discovery request."""

    user_id: str = Field(..., min_length=1, description="User whose profile drives matching")
    limit: int = Field(default=20, ge=1, le=200, description="Maximum results")
    min_score: int = Field(default=30, ge=0, le=100, description="Minimum match score")
    sort_by: SortBy = Field(default=SortBy.BEST_MATCH, description="Result ordering")
    use_cache: bool = Field(default=True, description="Serve cached AI analyses")
    use_ai: bool = Field(default=True, description="Run AI analysis on cache misses")
    include_debug: bool = Field(default=False, description="Include pipeline diagnostics")


class DiscoverResponse(BaseModel):
    """Schema for ranked discovery results."""

    grants: list[RankedGrant] = Field(default_factory=list)
    stats: PipelineStats
    debug: Optional[PipelineDebug] = None
    profile_version: int = Field(..., description="Profile version the results were computed for")


class SearchRequest(BaseModel):
    """Schema for a search request, optionally personalized."""

    search_term: Optional[str] = Field(None, max_length=200, description="Category name or free text")
    user_id: Optional[str] = Field(None, description="Personalize relevance for this user's profile")
    include_ineligible: bool = Field(default=False, description="Keep grants that fail hard filters")
    limit: int = Field(default=20, ge=1, le=200)


class SearchResult(BaseModel):
    grant: GrantData
    relevance: RelevanceResult
    tier: MatchTier
    tier_label: str


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    total: int = Field(..., description="Matching grants before the limit")


class ProfileUpdateRequest(BaseModel):
    """Schema for a partial profile update. Omitted fields are left unchanged."""

    entity_type: Optional[str] = None
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    state: Optional[str] = None
    industry_tags: Optional[list[str]] = None
    size_band: Optional[str] = None
    stage: Optional[str] = None
    annual_budget: Optional[str] = None
    goals: Optional[list[str]] = None
    grant_preferences: Optional[GrantPreferences] = None

    def to_changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, mode="json")


class ProfileResponse(BaseModel):
    profile: UserProfile
    profile_version: int


class DebugAssertion(BaseModel):
    name: str
    passed: bool
    detail: str = ""


class DebugMatchingResponse(BaseModel):
    """Schema for a debug pipeline run against a fixture profile."""

    fixture: str
    profile: UserProfile
    passed: bool = Field(..., description="True when every assertion holds")
    assertions: list[DebugAssertion]
    result: PipelineResult
