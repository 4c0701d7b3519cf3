"""
Relevance Engine
Search-time variant of eligibility and scoring.

Cheaper than the full pipeline: industry overlap is read from the title and
categories only, and a grant must clear hard filters (including industry)
before it is scored at all. Search terms that name a known category are
backed by a curated keyword allow-list so weak overlap cannot surface
unrelated grants.
"""
from datetime import datetime
from typing import Iterable, Optional

import structlog

from .eligibility import (
    check_entity_type,
    check_geography,
    check_grant_status,
    check_industry_relevance,
    check_url_exists,
    profile_suggestions,
)
from .models import GrantData, RelevanceResult, ScoreBreakdown, UserProfile
from .scoring import (
    FactorScore,
    deadline_sort_key,
    get_tier,
    profile_confidence,
    quality_cap_for,
    score_budget_match,
    score_entity_match,
    score_geography_match,
    tier_label,
)
from .taxonomy import (
    INDUSTRY_LABELS,
    INDUSTRY_POSITIVE_KEYWORDS,
    SCORING_WEIGHTS,
    STRICT_CATEGORY_KEYWORDS,
    ConfidenceLevel,
    MatchTier,
    contains_keywords,
    industries_for_category,
)

logger = structlog.get_logger().bind(agent="relevance")

MIN_RELEVANCE_SCORE = 30
NEUTRAL_RELEVANCE_SCORE = 50

_RELEVANCE_FACTORS = ("entity_match", "industry_match", "geography_match", "budget_match")
_RELEVANCE_MAX_POINTS = sum(SCORING_WEIGHTS[name] for name in _RELEVANCE_FACTORS)


def matches_search_term(grant: GrantData, term: Optional[str]) -> bool:
    """
    Whether a grant satisfies a search term.

    Category terms ("agriculture", "health", ...) need one of the category's
    curated keywords in the title, sponsor, summary or categories. Any other
    term must appear literally in the title, sponsor or categories.
    """
    term = (term or "").strip().lower()
    if not term:
        return True

    categories = " ".join(grant.categories)
    strict_keywords = STRICT_CATEGORY_KEYWORDS.get(term)
    if strict_keywords:
        text = " ".join([grant.title, grant.sponsor, grant.summary or "", categories]).lower()
        return contains_keywords(text, strict_keywords)

    return term in " ".join([grant.title, grant.sponsor, categories]).lower()


def _score_industry_light(profile: UserProfile, grant: GrantData) -> FactorScore:
    weight = SCORING_WEIGHTS["industry_match"]
    if not profile.industry_tags:
        return FactorScore(weight * 0.5)

    title = grant.title.lower()
    category_tags = set()
    for category in grant.categories:
        category_tags.update(industries_for_category(category))

    hits = 0
    labels = []
    for tag in sorted(profile.industry_tags, key=lambda t: t.value):
        tag_hits = int(tag in category_tags) + int(contains_keywords(title, INDUSTRY_POSITIVE_KEYWORDS[tag]))
        if tag_hits:
            labels.append(INDUSTRY_LABELS[tag])
        hits += tag_hits

    if not hits:
        # Relevance was confirmed from the full text by the hard filter.
        return FactorScore(weight * 0.2, warning="General purpose grant - verify relevance")
    if hits >= 3:
        return FactorScore(weight, f"Excellent match: {', '.join(labels[:2])}")
    if hits == 2:
        return FactorScore(weight * 0.8, f"Strong match: {', '.join(labels[:2])}")
    return FactorScore(weight * 0.55, f"Matches your focus on {labels[0]}")


def _hard_filter_failure(
    grant: GrantData,
    profile: Optional[UserProfile],
    now: Optional[datetime] = None,
) -> Optional[str]:
    checks = [check_url_exists(grant), check_grant_status(grant, now)]
    if profile is not None:
        checks += [
            check_entity_type(profile, grant),
            check_geography(profile, grant),
            check_industry_relevance(profile, grant),
        ]
    for outcome in checks:
        if not outcome.passed:
            return outcome.reason
    return None


def calculate_relevance(
    grant: GrantData,
    profile: Optional[UserProfile] = None,
    now: Optional[datetime] = None,
) -> RelevanceResult:
    """
    Relevance of a grant for search display.

    Without a profile every listable grant gets a neutral score at low
    confidence; the application link and open status are still required, and
    with a reference time the deadline must not have passed.
    """
    failure = _hard_filter_failure(grant, profile, now)
    if failure:
        return RelevanceResult(
            relevance_score=0,
            is_eligible=False,
            eligibility_reason=failure,
            confidence_level=ConfidenceLevel.HIGH,
        )

    if profile is None:
        return RelevanceResult(
            relevance_score=NEUTRAL_RELEVANCE_SCORE,
            is_eligible=True,
            confidence_level=ConfidenceLevel.LOW,
            suggestions=["Complete your profile to see personalized matches"],
        )

    factors = {
        "entity_match": score_entity_match(profile, grant),
        "industry_match": _score_industry_light(profile, grant),
        "geography_match": score_geography_match(profile, grant),
        "budget_match": score_budget_match(profile, grant),
    }
    raw = sum(factor.points for factor in factors.values())
    score = max(0, min(100, round(raw * 100 / _RELEVANCE_MAX_POINTS)))

    warnings = [factor.warning for factor in factors.values() if factor.warning]
    cap = quality_cap_for(grant.quality_score)
    if cap is not None and score > cap:
        score = cap
        warnings.append("Listing has limited details; verify on the sponsor's site")

    return RelevanceResult(
        relevance_score=score,
        is_eligible=True,
        confidence_level=ConfidenceLevel.LOW if profile.is_sparse else profile_confidence(profile),
        match_reasons=[factor.reason for factor in factors.values() if factor.reason],
        warnings=warnings,
        suggestions=profile_suggestions(profile),
        breakdown=ScoreBreakdown(
            **{name: round(factor.points, 1) for name, factor in factors.items()},
            quality_cap=cap,
        ),
    )


def is_displayable(result: RelevanceResult, min_score: int = MIN_RELEVANCE_SCORE) -> bool:
    return result.is_eligible and result.relevance_score >= min_score


def get_relevance_tier(score: int) -> tuple[MatchTier, str]:
    tier = get_tier(score)
    return tier, tier_label(tier)


def filter_and_sort_by_relevance(
    grants: Iterable[GrantData],
    profile: Optional[UserProfile] = None,
    search_term: Optional[str] = None,
    include_ineligible: bool = False,
    min_score: int = MIN_RELEVANCE_SCORE,
    now: Optional[datetime] = None,
) -> list[tuple[GrantData, RelevanceResult]]:
    """
    Apply the search term, score relevance, and order results.

    Ineligible or below-threshold grants are dropped unless include_ineligible
    is set. Highest relevance first; ties by soonest deadline.
    """
    results = []
    skipped = 0
    for grant in grants:
        if not matches_search_term(grant, search_term):
            skipped += 1
            continue
        relevance = calculate_relevance(grant, profile, now)
        if not include_ineligible and not is_displayable(relevance, min_score):
            skipped += 1
            continue
        results.append((grant, relevance))

    results.sort(key=lambda pair: (-pair[1].relevance_score, *deadline_sort_key(pair[0])))
    logger.debug("relevance_filtered", search_term=search_term, kept=len(results), skipped=skipped)
    return results
