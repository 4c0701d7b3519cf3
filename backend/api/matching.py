"""
Matching API Endpoints
Personalized discovery, search, and matching profile updates.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from agents.matching.models import PipelineOptions
from agents.matching.pipeline import run_discovery_pipeline
from agents.matching.relevance import filter_and_sort_by_relevance, get_relevance_tier
from backend.api.deps import AnalyzerDep, AsyncSessionDep, MatchCacheDep
from backend.core.config import settings
from backend.core.exceptions import NotFoundError
from backend.schemas.matching import (
    DiscoverRequest,
    DiscoverResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    SearchRequest,
    SearchResponse,
    SearchResult,
)
from backend.services.data_sources import apply_profile_update, load_grants, load_user_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matching", tags=["Matching"])


@router.post(
    "/discover",
    response_model=DiscoverResponse,
    summary="Discover matching grants",
    description="Rank open grants for a user's organization profile.",
)
async def discover_grants(
    request: DiscoverRequest,
    db: AsyncSessionDep,
    cache: MatchCacheDep,
    analyzer: AnalyzerDep,
) -> DiscoverResponse:
    """
    Run the discovery pipeline for a user.

    Returns 404 if the user has no profile yet.
    """
    profile = await load_user_profile(db, request.user_id)
    if profile is None:
        raise NotFoundError("Profile", request.user_id)

    grants = await load_grants(db, state=profile.state, limit=settings.grant_pool_limit)
    options = PipelineOptions(
        limit=request.limit,
        min_score=request.min_score,
        sort_by=request.sort_by,
        use_cache=request.use_cache,
        use_ai=request.use_ai,
        include_debug=request.include_debug,
    )

    result = await run_discovery_pipeline(grants, profile, options, cache=cache, analyzer=analyzer)

    return DiscoverResponse(
        grants=result.grants,
        stats=result.stats,
        debug=result.debug,
        profile_version=profile.profile_version,
    )


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Search grants",
    description="Search open grants; results are personalized when a user id is given.",
)
async def search_grants(
    request: SearchRequest,
    db: AsyncSessionDep,
) -> SearchResponse:
    profile = None
    if request.user_id:
        profile = await load_user_profile(db, request.user_id)
        if profile is None:
            raise NotFoundError("Profile", request.user_id)

    grants = await load_grants(
        db,
        state=profile.state if profile else None,
        limit=settings.grant_pool_limit,
    )
    ranked = filter_and_sort_by_relevance(
        grants,
        profile,
        search_term=request.search_term,
        include_ineligible=request.include_ineligible,
        min_score=settings.search_min_relevance,
        now=datetime.now(timezone.utc),
    )

    results = []
    for grant, relevance in ranked[: request.limit]:
        tier, label = get_relevance_tier(relevance.relevance_score)
        results.append(SearchResult(grant=grant, relevance=relevance, tier=tier, tier_label=label))

    return SearchResponse(results=results, total=len(ranked))


@router.patch(
    "/profile/{user_id}",
    response_model=ProfileResponse,
    summary="Update matching profile",
    description="Partially update a profile; matching-relevant changes bump the profile version.",
)
async def update_profile(
    user_id: str,
    request: ProfileUpdateRequest,
    db: AsyncSessionDep,
) -> ProfileResponse:
    profile = await apply_profile_update(db, user_id, request.to_changes())
    return ProfileResponse(profile=profile, profile_version=profile.profile_version)
