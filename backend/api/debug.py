"""
Matching Debug Endpoints
Admin-only diagnostics that run the pipeline for canned profiles and check
the result set against invariants every ranking must satisfy.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from agents.matching.eligibility import check_geography
from agents.matching.models import GrantStatus, PipelineOptions, PipelineResult, UserProfile
from agents.matching.pipeline import run_discovery_pipeline
from agents.matching.taxonomy import IndustryTag, contains_keywords
from backend.api.deps import AdminKeyDep, AsyncSessionDep, MatchCacheDep
from backend.core.config import settings
from backend.core.exceptions import NotFoundError
from backend.schemas.matching import DebugAssertion, DebugMatchingResponse
from backend.services.data_sources import load_grants

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/debug", tags=["Debug"], dependencies=[AdminKeyDep])


FIXTURE_PROFILES: dict[str, UserProfile] = {
    "agriculture_ca": UserProfile(
        entity_type="small_business",
        state="CA",
        industry_tags=["agriculture"],
        size_band="small",
        annual_budget="100k_250k",
        goals=["equipment", "sustainability"],
    ),
    "nonprofit_ny": UserProfile(
        entity_type="nonprofit",
        state="NY",
        industry_tags=["community", "youth"],
        size_band="small",
        annual_budget="250k_500k",
    ),
    "homeowner_wa": UserProfile(
        entity_type="individual",
        state="WA",
        industry_tags=["housing", "climate"],
    ),
    "manufacturer_tx": UserProfile(
        entity_type="for_profit",
        state="TX",
        industry_tags=["business", "workforce"],
        size_band="medium",
        annual_budget="1m_5m",
        goals=["workforce"],
    ),
    "startup_ma": UserProfile(
        entity_type="small_business",
        state="MA",
        industry_tags=["technology", "research"],
        size_band="micro",
        stage="early",
        annual_budget="under_50k",
        goals=["research"],
    ),
    "tribal_az": UserProfile(
        entity_type="tribal",
        state="AZ",
        industry_tags=["community", "infrastructure"],
    ),
}

# Titles that must never reach an agriculture profile.
_CLASSROOM_KEYWORDS = ("teacher", "k-12", "classroom")


def evaluate_assertions(profile: UserProfile, result: PipelineResult, limit: int) -> list[DebugAssertion]:
    grants = [item.grant for item in result.grants]

    missing_url = [grant.id for grant in grants if not grant.url]
    not_open = [grant.id for grant in grants if grant.status != GrantStatus.OPEN]
    wrong_location = [grant.id for grant in grants if not check_geography(profile, grant).passed]

    assertions = [
        DebugAssertion(
            name="results_count_in_range",
            passed=0 <= len(grants) <= limit,
            detail=f"{len(grants)} results (limit {limit})",
        ),
        DebugAssertion(
            name="all_results_have_urls",
            passed=not missing_url,
            detail=f"Missing URL: {missing_url}" if missing_url else "",
        ),
        DebugAssertion(
            name="all_results_open",
            passed=not not_open,
            detail=f"Not open: {not_open}" if not_open else "",
        ),
        DebugAssertion(
            name="geography_matches",
            passed=not wrong_location,
            detail=f"Outside {profile.state}: {wrong_location}" if wrong_location else "",
        ),
    ]

    if IndustryTag.AGRICULTURE in profile.industry_tags:
        classroom = [grant.id for grant in grants if contains_keywords(grant.title.lower(), _CLASSROOM_KEYWORDS)]
        assertions.append(
            DebugAssertion(
                name="no_teacher_grants_for_agriculture",
                passed=not classroom,
                detail=f"Classroom grants: {classroom}" if classroom else "",
            )
        )

    return assertions


@router.get(
    "/matching",
    response_model=DebugMatchingResponse,
    summary="Debug matching for a fixture profile",
    description="Run the pipeline with diagnostics over the stored grant pool and check result invariants.",
)
async def debug_matching(
    db: AsyncSessionDep,
    fixture: str = Query(default="agriculture_ca", description="Fixture profile name"),
    limit: Optional[int] = Query(default=None, ge=1, le=200, description="Maximum results"),
) -> DebugMatchingResponse:
    profile = FIXTURE_PROFILES.get(fixture)
    if profile is None:
        raise NotFoundError("Fixture", fixture)

    options = PipelineOptions(
        limit=limit or settings.match_default_limit,
        min_score=settings.match_default_min_score,
        use_cache=False,
        use_ai=False,
        include_debug=True,
    )
    grants = await load_grants(db, limit=settings.grant_pool_limit)
    result = await run_discovery_pipeline(grants, profile, options)

    assertions = evaluate_assertions(profile, result, options.limit)
    passed = all(assertion.passed for assertion in assertions)
    if not passed:
        failed = [assertion.name for assertion in assertions if not assertion.passed]
        logger.warning(f"Debug matching for fixture {fixture} failed assertions: {failed}")

    return DebugMatchingResponse(
        fixture=fixture,
        profile=profile,
        passed=passed,
        assertions=assertions,
        result=result,
    )


@router.get(
    "/match-cache",
    summary="Match cache statistics",
)
async def match_cache_stats(cache: MatchCacheDep) -> dict:
    return await cache.get_stats()
