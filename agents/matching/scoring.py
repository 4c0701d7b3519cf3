"""
Scoring Engine
Weighted multi-factor match score (0-100) for a (profile, grant) pair.

Factors and their maximum points come from SCORING_WEIGHTS. Industry overlap
dominates; a low listing quality caps the total so that a sparse listing
cannot reach the top tier on topical match alone.
"""
from datetime import datetime, timezone
from typing import Iterable, NamedTuple, Optional

import structlog

from .eligibility import (
    accepted_entity_types,
    industry_signals,
    is_entity_explicitly_excluded,
    is_state_explicitly_excluded,
)
from .models import GrantData, ScoreBreakdown, ScoredGrant, ScoreResult, UserProfile, as_utc
from .taxonomy import (
    BUDGET_TO_GRANT_SIZE,
    ENTITY_ADJACENCY,
    ENTITY_TYPE_LABELS,
    GOALS_TO_PURPOSE,
    GRANT_SIZE_RANGES,
    INDUSTRY_CATEGORY_HIT_POINTS,
    INDUSTRY_KEYWORD_HIT_POINTS,
    INDUSTRY_LABELS,
    INDUSTRY_MAX_KEYWORD_HITS_PER_TAG,
    MAX_MATCH_REASONS,
    QUALITY_SCORE_CAPS,
    SCORING_WEIGHTS,
    SMALL_BUDGETS,
    TIER_LABELS,
    TIER_THRESHOLDS,
    US_REGIONS,
    US_STATES,
    ConfidenceLevel,
    GeographyScope,
    GrantSizeCategory,
    MatchTier,
    get_grant_size_category,
    normalize_tag,
)

logger = structlog.get_logger().bind(agent="scoring")

# Share of a factor's weight it must reach before it yields a match reason.
REASON_THRESHOLD = 0.5

NO_AMOUNT_WARNING = "This grant has no stated funding amount"
LOW_QUALITY_WARNING = "Listing has limited details; verify on the sponsor's site"

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class FactorScore(NamedTuple):
    points: float
    reason: Optional[str] = None
    warning: Optional[str] = None


# =============================================================================
# Factors
# =============================================================================


def score_entity_match(profile: UserProfile, grant: GrantData) -> FactorScore:
    weight = SCORING_WEIGHTS["entity_match"]
    entity = profile.entity_type
    if entity is None:
        return FactorScore(weight * 0.5)

    if is_entity_explicitly_excluded(entity, grant):
        return FactorScore(0, warning="Your organization type is excluded by this grant")

    if not any(tag.strip() for tag in grant.eligibility.tags):
        return FactorScore(weight * 0.8, "Open to all organization types")

    accepted = accepted_entity_types(grant)
    if not accepted:
        return FactorScore(weight * 0.5)

    label = ENTITY_TYPE_LABELS[entity]
    if entity in accepted:
        return FactorScore(weight, f"Open to {label} applicants")

    adjacency = ENTITY_ADJACENCY[entity]
    credit = max((adjacency[other] for other in accepted if other in adjacency), default=0.0)
    if credit:
        return FactorScore(weight * credit, "Good match for your organization type")

    return FactorScore(0, warning="Your organization type is not listed as eligible")


def score_industry_match(profile: UserProfile, grant: GrantData) -> FactorScore:
    """
    Points per focus area: a category label hit plus each distinct keyword.

    Never decreases as more keywords overlap; capped at the factor weight.
    """
    weight = SCORING_WEIGHTS["industry_match"]
    if not profile.industry_tags:
        return FactorScore(weight * 0.5)

    points = 0.0
    matched_labels = []
    for signal in industry_signals(profile.industry_tags, grant):
        if signal.excluded:
            continue
        if signal.category_hit:
            points += INDUSTRY_CATEGORY_HIT_POINTS
        points += INDUSTRY_KEYWORD_HIT_POINTS * min(len(signal.keywords), INDUSTRY_MAX_KEYWORD_HITS_PER_TAG)
        if signal.matched:
            matched_labels.append(INDUSTRY_LABELS[signal.tag])

    points = min(float(weight), points)
    if not matched_labels:
        return FactorScore(0, warning="This grant doesn't clearly match your focus areas")
    if points >= weight * 0.8:
        return FactorScore(points, f"Strong match for {', '.join(matched_labels[:2])}")
    return FactorScore(points, f"Matches your focus on {matched_labels[0]}")


def score_geography_match(profile: UserProfile, grant: GrantData) -> FactorScore:
    weight = SCORING_WEIGHTS["geography_match"]
    if profile.state and is_state_explicitly_excluded(profile.state, grant):
        return FactorScore(0, warning=f"Excludes applicants in {US_STATES.get(profile.state, profile.state)}")
    locations = grant.locations
    if not locations or any(location.is_national for location in locations):
        return FactorScore(weight * 0.7, "Available nationwide")

    if profile.state is None:
        return FactorScore(weight * 0.5)

    state_name = US_STATES.get(profile.state, profile.state)
    if any(location.state_code == profile.state for location in locations):
        return FactorScore(weight, f"Specifically for {state_name}")

    unresolved = False
    for location in locations:
        if location.type == GeographyScope.STATE and location.state_code:
            continue
        states = US_REGIONS.get((location.value or "").strip().lower())
        if states is None:
            unresolved = True
        elif profile.state in states:
            return FactorScore(weight * 0.8, f"Targeted to your region ({location.value})")

    if unresolved:
        return FactorScore(weight * 0.5)
    return FactorScore(0, warning=f"Not available in {state_name}")


def score_budget_match(profile: UserProfile, grant: GrantData) -> FactorScore:
    weight = SCORING_WEIGHTS["budget_match"]
    has_amount = bool(grant.amount_min) or bool(grant.amount_max)
    preferred = profile.grant_preferences.preferred_size if profile.grant_preferences else None

    if preferred == "any":
        return FactorScore(weight, warning=None if has_amount else NO_AMOUNT_WARNING)
    if not has_amount:
        return FactorScore(weight * 0.5, warning=NO_AMOUNT_WARNING)

    low = grant.amount_min or 0
    high = grant.amount_max or float("inf")

    if preferred:
        band_low, band_high = GRANT_SIZE_RANGES[GrantSizeCategory(preferred)]
        if low <= band_high and high >= band_low:
            return FactorScore(weight, "Award size fits your preference")
        return FactorScore(weight * 0.3, warning="Grant size may not match your preference")

    if profile.annual_budget:
        size = get_grant_size_category(grant.amount_min, grant.amount_max)
        if size in BUDGET_TO_GRANT_SIZE[profile.annual_budget]:
            return FactorScore(weight * 0.8, "Award size suits your budget")
        if size == GrantSizeCategory.LARGE and profile.annual_budget in SMALL_BUDGETS:
            return FactorScore(weight * 0.4, warning="This is a large grant and may be competitive")

    return FactorScore(weight * 0.5)


def score_purpose_match(profile: UserProfile, grant: GrantData) -> FactorScore:
    weight = SCORING_WEIGHTS["purpose_match"]
    wanted = set()
    for goal in profile.goals:
        wanted.update(purpose.value for purpose in GOALS_TO_PURPOSE.get(goal.strip().lower(), ()))
    offered = {normalize_tag(tag).replace(" ", "_") for tag in grant.purpose_tags}

    if not wanted or not offered:
        return FactorScore(weight * 0.5)

    hits = sorted(wanted & offered)
    if len(hits) >= 2:
        return FactorScore(weight, "Funds the uses you're planning")
    if hits:
        return FactorScore(weight * 0.8, f"Can fund {hits[0].replace('_', ' ')}")
    return FactorScore(weight * 0.3)


def score_preferences_match(profile: UserProfile, grant: GrantData, now: datetime) -> FactorScore:
    weight = SCORING_WEIGHTS["preferences_match"]
    points = 2.0
    reason = None
    warning = None

    prefs = profile.grant_preferences
    timeline = prefs.timeline if prefs else None
    deadline = grant.deadline_date

    if deadline is not None:
        days_left = (deadline - now).days
        if 0 <= days_left <= 14:
            warning = f"Deadline is in {days_left} days"
        if timeline == "immediate" and 0 <= days_left <= 60:
            points += 3
            reason = "Deadline fits your immediate timeline"
        elif timeline == "quarter" and 0 <= days_left <= 180:
            points += 2
        elif timeline == "year" and 0 <= days_left <= 365:
            points += 1
        elif timeline == "flexible":
            points += 2
    elif timeline in ("immediate", "flexible"):
        points += 2
        reason = "Accepts applications on a rolling basis"

    if prefs and prefs.complexity == "simple":
        size = get_grant_size_category(grant.amount_min, grant.amount_max)
        if size in (GrantSizeCategory.MICRO, GrantSizeCategory.SMALL):
            points += 1

    return FactorScore(min(float(weight), points), reason, warning)


# =============================================================================
# Totals and Tiers
# =============================================================================


def get_tier(score: float) -> MatchTier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return MatchTier.LOW


def tier_label(tier: MatchTier) -> str:
    return TIER_LABELS[tier]


def quality_cap_for(quality_score: float) -> Optional[int]:
    """Highest total a listing of this quality may reach, or None if uncapped."""
    for below, cap in QUALITY_SCORE_CAPS:
        if quality_score < below:
            return cap
    return None


def profile_confidence(profile: UserProfile) -> ConfidenceLevel:
    if profile.completeness >= 4:
        return ConfidenceLevel.HIGH
    if profile.completeness >= 2:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def calculate_score(
    profile: UserProfile,
    grant: GrantData,
    now: Optional[datetime] = None,
) -> ScoreResult:
    """
    Score a grant against a profile.

    Args:
        profile: Matching profile.
        grant: Grant to score. Eligibility is not required.
        now: Reference time for deadline-relative factors.

    Returns:
        ScoreResult with total, tier, per-factor breakdown, reasons and warnings.
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)

    factors = {
        "entity_match": score_entity_match(profile, grant),
        "industry_match": score_industry_match(profile, grant),
        "geography_match": score_geography_match(profile, grant),
        "budget_match": score_budget_match(profile, grant),
        "purpose_match": score_purpose_match(profile, grant),
        "preferences_match": score_preferences_match(profile, grant, now),
    }

    reasons = []
    warnings = []
    for name, factor in factors.items():
        if factor.reason and factor.points >= SCORING_WEIGHTS[name] * REASON_THRESHOLD:
            reasons.append(factor.reason)
        if factor.warning:
            warnings.append(factor.warning)

    total = max(0, min(100, round(sum(factor.points for factor in factors.values()))))

    cap = quality_cap_for(grant.quality_score)
    if cap is not None and total > cap:
        total = cap
        warnings.append(LOW_QUALITY_WARNING)

    breakdown = ScoreBreakdown(
        **{name: round(factor.points, 1) for name, factor in factors.items()},
        quality_cap=cap,
    )
    tier = get_tier(total)

    return ScoreResult(
        total_score=total,
        tier=tier,
        tier_label=tier_label(tier),
        breakdown=breakdown,
        match_reasons=reasons[:MAX_MATCH_REASONS],
        warnings=warnings,
        confidence_level=profile_confidence(profile),
    )


def deadline_sort_key(grant: GrantData) -> tuple[bool, datetime]:
    """Soonest deadline first; rolling deadlines last."""
    return (grant.deadline_date is None, grant.deadline_date or _FAR_FUTURE)


def score_and_sort_grants(
    profile: UserProfile,
    grants: Iterable[GrantData],
    now: Optional[datetime] = None,
) -> list[ScoredGrant]:
    """Score every grant; highest score first, ties by soonest deadline."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    scored = [ScoredGrant(grant=grant, score=calculate_score(profile, grant, now)) for grant in grants]
    scored.sort(key=lambda item: (-item.score.total_score, *deadline_sort_key(item.grant)))
    return scored


def get_top_grants(
    profile: UserProfile,
    grants: Iterable[GrantData],
    limit: int = 20,
    min_score: int = 30,
    now: Optional[datetime] = None,
) -> list[ScoredGrant]:
    ranked = score_and_sort_grants(profile, grants, now)
    return [item for item in ranked if item.score.total_score >= min_score][:limit]


_FACTOR_LABELS = {
    "entity_match": "Organization type",
    "industry_match": "Focus area",
    "geography_match": "Location",
    "budget_match": "Award size",
    "purpose_match": "Use of funds",
    "preferences_match": "Timeline",
}


def explain_score(result: ScoreResult) -> str:
    """Multi-line, human-readable breakdown of a score."""
    lines = [f"{result.tier_label} ({result.total_score}/100)"]
    for name, label in _FACTOR_LABELS.items():
        points = getattr(result.breakdown, name)
        lines.append(f"  {label}: {points:g}/{SCORING_WEIGHTS[name]}")
    if result.breakdown.quality_cap is not None:
        lines.append(f"  Capped at {result.breakdown.quality_cap} for listing quality")
    lines.extend(f"  + {reason}" for reason in result.match_reasons)
    lines.extend(f"  ! {warning}" for warning in result.warnings)
    return "\n".join(lines)
