"""
Eligibility Engine
Runs ordered pass/fail filters against a (profile, grant) pair.

Filters:
1. URL_EXISTS         - grant has a usable application link (hard gate)
2. GRANT_STATUS       - grant is open and its deadline has not passed (hard gate)
3. ENTITY_TYPE        - profile entity type is admitted by the grant
4. GEOGRAPHY          - grant is available where the applicant is located
5. INDUSTRY_RELEVANCE - grant touches at least one of the profile's focus areas

A grant is eligible when filters 1-4 pass. Industry relevance is advisory: a
failure there lowers confidence and adds a warning but does not exclude.
"""
from datetime import datetime
from typing import Iterable, NamedTuple, Optional, Sequence
from urllib.parse import urlparse

import structlog

from .models import (
    EligibilityBatch,
    EligibilityFilter,
    EligibilityResult,
    FilterOutcome,
    GrantData,
    GrantStatus,
    IneligibleGrant,
    UserProfile,
    as_utc,
)
from .taxonomy import (
    AUTO_PASS_WHEN_NO_ENTITY_RESTRICTION,
    AUTO_PASS_WHEN_NO_INDUSTRY_TAGS,
    DEFAULT_SCOPE_WHEN_UNSPECIFIED,
    ENTITY_ADJACENCY,
    ENTITY_EXCLUSION_PATTERNS,
    ENTITY_TYPE_LABELS,
    INDUSTRY_EXCLUSION_KEYWORDS,
    INDUSTRY_LABELS,
    INDUSTRY_POSITIVE_KEYWORDS,
    MAX_SUGGESTIONS,
    STATE_EXCLUSION_TEMPLATES,
    US_REGIONS,
    US_STATES,
    ConfidenceLevel,
    EntityType,
    GeographyScope,
    IndustryTag,
    canonical_entity_types,
    contains_keywords,
    industries_for_category,
    matched_keywords,
    normalize_tag,
)

logger = structlog.get_logger().bind(agent="eligibility")

HARD_FILTERS = frozenset({
    EligibilityFilter.URL_EXISTS,
    EligibilityFilter.GRANT_STATUS,
    EligibilityFilter.ENTITY_TYPE,
    EligibilityFilter.GEOGRAPHY,
})


def _passed(
    filter_: EligibilityFilter,
    reason: str,
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH,
) -> FilterOutcome:
    return FilterOutcome(filter=filter_, passed=True, reason=reason, confidence=confidence)


def _failed(filter_: EligibilityFilter, reason: str) -> FilterOutcome:
    return FilterOutcome(filter=filter_, passed=False, reason=reason, confidence=ConfidenceLevel.HIGH)


# =============================================================================
# Grant-only Filters
# =============================================================================


def check_url_exists(grant: GrantData) -> FilterOutcome:
    url = grant.url.strip()
    if not url:
        return _failed(EligibilityFilter.URL_EXISTS, "Grant has no application link")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return _failed(EligibilityFilter.URL_EXISTS, "Grant application link is not a valid web address")

    return _passed(EligibilityFilter.URL_EXISTS, "Application link available")


def check_grant_status(grant: GrantData, now: Optional[datetime] = None) -> FilterOutcome:
    """Open status is required; with a reference time, a past deadline also fails."""
    if grant.status == GrantStatus.FORECASTED:
        return _failed(EligibilityFilter.GRANT_STATUS, "Grant is forecasted and not yet accepting applications")
    if grant.status != GrantStatus.OPEN:
        return _failed(EligibilityFilter.GRANT_STATUS, "Grant is closed")
    if now is not None and grant.deadline_date is not None and grant.deadline_date < as_utc(now):
        return _failed(EligibilityFilter.GRANT_STATUS, "Application deadline has passed")
    return _passed(EligibilityFilter.GRANT_STATUS, "Accepting applications")


# =============================================================================
# Profile Filters
# =============================================================================


def accepted_entity_types(grant: GrantData) -> frozenset[EntityType]:
    """Entity types admitted by the grant's eligibility labels."""
    accepted: set[EntityType] = set()
    for tag in grant.eligibility.tags:
        accepted.update(canonical_entity_types(tag))
    return frozenset(accepted)


def _exclusion_text(grant: GrantData) -> str:
    return normalize_tag(" ".join(text for text in (grant.eligibility.raw_text, grant.description) if text))


def is_entity_explicitly_excluded(entity: EntityType, grant: GrantData) -> bool:
    text = _exclusion_text(grant)
    if not text:
        return False
    return any(normalize_tag(phrase) in text for phrase in ENTITY_EXCLUSION_PATTERNS[entity])


def is_state_explicitly_excluded(state: str, grant: GrantData) -> bool:
    """True when the eligibility text or description names the state as excluded."""
    text = _exclusion_text(grant)
    if not text:
        return False
    state_name = normalize_tag(US_STATES.get(state, state))
    return any(template.format(state=state_name) in text for template in STATE_EXCLUSION_TEMPLATES)


def check_entity_type(profile: UserProfile, grant: GrantData) -> FilterOutcome:
    if profile.entity_type is None:
        return _passed(
            EligibilityFilter.ENTITY_TYPE,
            "Organization type not set; applicant eligibility not verified",
            ConfidenceLevel.LOW,
        )

    entity = profile.entity_type
    label = ENTITY_TYPE_LABELS[entity]

    if is_entity_explicitly_excluded(entity, grant):
        return _failed(EligibilityFilter.ENTITY_TYPE, f"Grant excludes {label} applicants")

    tags = [tag for tag in grant.eligibility.tags if tag.strip()]
    if not tags and AUTO_PASS_WHEN_NO_ENTITY_RESTRICTION:
        return _passed(EligibilityFilter.ENTITY_TYPE, "Open to all organization types", ConfidenceLevel.MEDIUM)

    accepted = accepted_entity_types(grant)
    if not accepted:
        return _passed(
            EligibilityFilter.ENTITY_TYPE,
            "Applicant requirements could not be matched to an organization type; verify with the sponsor",
            ConfidenceLevel.LOW,
        )

    if entity in accepted:
        return _passed(EligibilityFilter.ENTITY_TYPE, f"Open to {label} applicants")

    adjacent = sorted(accepted.intersection(ENTITY_ADJACENCY[entity]), key=lambda e: e.value)
    if adjacent:
        return _passed(
            EligibilityFilter.ENTITY_TYPE,
            f"{label} applicants may qualify as {ENTITY_TYPE_LABELS[adjacent[0]]}",
            ConfidenceLevel.MEDIUM,
        )

    return _failed(EligibilityFilter.ENTITY_TYPE, f"Limited to {', '.join(tags[:3])}")


def check_geography(profile: UserProfile, grant: GrantData) -> FilterOutcome:
    if profile.state and is_state_explicitly_excluded(profile.state, grant):
        state_name = US_STATES.get(profile.state, profile.state)
        return _failed(EligibilityFilter.GEOGRAPHY, f"Grant excludes applicants in {state_name}")

    locations = grant.locations
    if not locations:
        if DEFAULT_SCOPE_WHEN_UNSPECIFIED == GeographyScope.NATIONAL:
            return _passed(EligibilityFilter.GEOGRAPHY, "No geographic restriction listed")
        return _failed(EligibilityFilter.GEOGRAPHY, "Grant does not list where it is available")

    if any(location.is_national for location in locations):
        return _passed(EligibilityFilter.GEOGRAPHY, "Available nationwide")

    if profile.state is None:
        return _passed(
            EligibilityFilter.GEOGRAPHY,
            "Add your state to confirm geographic eligibility",
            ConfidenceLevel.LOW,
        )

    allowed: set[str] = set()
    unresolved: list[str] = []
    for location in locations:
        if location.type == GeographyScope.STATE and location.state_code:
            allowed.add(location.state_code)
            continue
        states = US_REGIONS.get((location.value or "").strip().lower())
        if states:
            allowed.update(states)
        else:
            unresolved.append(location.value or location.type.value)

    state_name = US_STATES.get(profile.state, profile.state)
    if profile.state in allowed:
        return _passed(EligibilityFilter.GEOGRAPHY, f"Available in {state_name}")

    if unresolved:
        return _passed(
            EligibilityFilter.GEOGRAPHY,
            f"Geographic scope unclear ({unresolved[0]}); verify availability in {state_name}",
            ConfidenceLevel.LOW,
        )

    return _failed(EligibilityFilter.GEOGRAPHY, f"Not available in {state_name}")


class IndustrySignal(NamedTuple):
    """How strongly a grant touches one profile focus area."""

    tag: IndustryTag
    category_hit: bool
    keywords: tuple[str, ...]
    excluded: bool

    @property
    def matched(self) -> bool:
        return not self.excluded and (self.category_hit or bool(self.keywords))


def industry_signals(tags: Iterable[IndustryTag], grant: GrantData) -> list[IndustrySignal]:
    """Category and keyword overlap per tag, in stable tag order."""
    text = grant.searchable_text()
    category_tags: set[IndustryTag] = set()
    for category in grant.categories:
        category_tags.update(industries_for_category(category))

    signals = []
    for tag in sorted(tags, key=lambda t: t.value):
        keywords = tuple(matched_keywords(text, INDUSTRY_POSITIVE_KEYWORDS[tag]))
        has_exclusion = contains_keywords(text, INDUSTRY_EXCLUSION_KEYWORDS.get(tag, ()))
        signals.append(
            IndustrySignal(
                tag=tag,
                category_hit=tag in category_tags,
                keywords=keywords,
                excluded=has_exclusion and not keywords,
            )
        )
    return signals


def check_industry_relevance(profile: UserProfile, grant: GrantData) -> FilterOutcome:
    if not profile.industry_tags:
        if AUTO_PASS_WHEN_NO_INDUSTRY_TAGS:
            return _passed(
                EligibilityFilter.INDUSTRY_RELEVANCE,
                "No focus areas set; topical relevance not checked",
                ConfidenceLevel.LOW,
            )
        return _failed(EligibilityFilter.INDUSTRY_RELEVANCE, "No focus areas set")

    signals = industry_signals(profile.industry_tags, grant)
    matched = [signal for signal in signals if signal.matched]

    if not matched:
        excluded = [signal for signal in signals if signal.excluded]
        if excluded:
            return _failed(
                EligibilityFilter.INDUSTRY_RELEVANCE,
                f"Grant appears unrelated to {INDUSTRY_LABELS[excluded[0].tag]}",
            )
        labels = ", ".join(INDUSTRY_LABELS[signal.tag] for signal in signals)
        return _failed(EligibilityFilter.INDUSTRY_RELEVANCE, f"No overlap with your focus areas ({labels})")

    by_category = [signal for signal in matched if signal.category_hit]
    if by_category:
        return _passed(
            EligibilityFilter.INDUSTRY_RELEVANCE,
            f"Listed under {INDUSTRY_LABELS[by_category[0].tag]}",
        )

    strongest = max(matched, key=lambda signal: len(signal.keywords))
    keyword_count = sum(len(signal.keywords) for signal in matched)
    label = INDUSTRY_LABELS[strongest.tag]
    if keyword_count >= 2:
        return _passed(EligibilityFilter.INDUSTRY_RELEVANCE, f"Strong topical match for {label}")
    return _passed(
        EligibilityFilter.INDUSTRY_RELEVANCE,
        f"Possible topical match for {label}",
        ConfidenceLevel.MEDIUM,
    )


# =============================================================================
# Verdict
# =============================================================================


def profile_suggestions(profile: UserProfile) -> list[str]:
    suggestions = []
    if profile.entity_type is None:
        suggestions.append("Add your organization type to confirm eligibility")
    if not profile.industry_tags:
        suggestions.append("Add focus areas to improve match accuracy")
    if profile.state is None:
        suggestions.append("Add your state to see location-specific grants")
    return suggestions[:MAX_SUGGESTIONS]


def _summarize(outcomes: Sequence[FilterOutcome]) -> str:
    failures = [outcome for outcome in outcomes if not outcome.passed]
    if failures:
        return failures[0].reason

    for filter_ in (
        EligibilityFilter.INDUSTRY_RELEVANCE,
        EligibilityFilter.ENTITY_TYPE,
        EligibilityFilter.GEOGRAPHY,
    ):
        for outcome in outcomes:
            if outcome.filter == filter_ and outcome.confidence == ConfidenceLevel.HIGH:
                return outcome.reason
    return "Meets basic eligibility requirements"


def run_eligibility_engine(
    profile: UserProfile,
    grant: GrantData,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """
    Run all eligibility filters for one profile and grant.

    Pure function: identical inputs always produce identical results. Deadlines
    are only checked when a reference time is given.
    """
    outcomes = [
        check_url_exists(grant),
        check_grant_status(grant, now),
        check_entity_type(profile, grant),
        check_geography(profile, grant),
        check_industry_relevance(profile, grant),
    ]

    passed = [outcome.filter for outcome in outcomes if outcome.passed]
    failed = [outcome.filter for outcome in outcomes if not outcome.passed]
    is_eligible = not any(filter_ in HARD_FILTERS for filter_ in failed)

    if profile.is_sparse:
        confidence = ConfidenceLevel.LOW
    elif not is_eligible or not failed:
        confidence = ConfidenceLevel.HIGH
    else:
        confidence = ConfidenceLevel.MEDIUM

    warnings = [
        outcome.reason
        for outcome in outcomes
        if outcome.passed and outcome.confidence == ConfidenceLevel.LOW
    ]
    if is_eligible:
        warnings.extend(outcome.reason for outcome in outcomes if not outcome.passed)

    return EligibilityResult(
        is_eligible=is_eligible,
        confidence_level=confidence,
        passed_filters=passed,
        failed_filters=failed,
        filter_results=outcomes,
        primary_reason=_summarize(outcomes),
        warnings=warnings,
        suggestions=profile_suggestions(profile),
    )


def filter_eligible_grants(
    profile: UserProfile,
    grants: Iterable[GrantData],
    now: Optional[datetime] = None,
) -> EligibilityBatch:
    """
    Partition grants into eligible and ineligible.

    A grant whose check raises is skipped and logged; it never aborts the batch.
    """
    batch = EligibilityBatch()
    stats = batch.stats

    for grant in grants:
        stats.total += 1
        try:
            result = run_eligibility_engine(profile, grant, now)
        except Exception as e:
            stats.errored += 1
            logger.warning("eligibility_check_failed", grant_id=grant.id, error=str(e))
            continue

        batch.results[grant.id] = result
        if result.is_eligible:
            stats.passed += 1
            batch.eligible.append(grant)
            continue

        stats.failed += 1
        batch.ineligible.append(IneligibleGrant(grant=grant, reason=result.primary_reason, result=result))
        for filter_ in result.failed_filters:
            stats.by_filter[filter_.value] = stats.by_filter.get(filter_.value, 0) + 1

    logger.debug(
        "eligibility_filtered",
        total=stats.total,
        passed=stats.passed,
        failed=stats.failed,
        errored=stats.errored,
    )
    return batch
