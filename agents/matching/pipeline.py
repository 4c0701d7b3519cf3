"""
Discovery Pipeline
Eligibility, scoring, cache and AI enrichment, and ranking for one profile.

The engines are pure; the pipeline only suspends on the match cache and the
AI analyzer, and both are optional. Any failure at those boundaries degrades
to deterministic scores instead of failing the request.
"""

import asyncio
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, Sequence, Union

import structlog
from pydantic import ValidationError

from backend.core.config import settings
from backend.core.exceptions import PipelineInputError

from .eligibility import filter_eligible_grants
from .models import (
    AppliesToUser,
    EligibilityResult,
    EligibilityStatus,
    GrantData,
    GrantTrace,
    MatchAnalysis,
    PipelineDebug,
    PipelineOptions,
    PipelineResult,
    PipelineStats,
    RankedGrant,
    ScoredGrant,
    SortBy,
    UserProfile,
    as_utc,
)
from .scoring import calculate_score, deadline_sort_key, get_tier, tier_label
from .taxonomy import ConfidenceLevel, format_deadline_display, normalize_tag

logger = structlog.get_logger().bind(agent="pipeline")

SCORE_BUCKETS = (
    ("0-20", 0, 20),
    ("21-40", 21, 40),
    ("41-60", 41, 60),
    ("61-80", 61, 80),
    ("81-100", 81, 100),
)

_AI_STATUS_TO_APPLIES = {
    EligibilityStatus.ELIGIBLE: AppliesToUser.YES,
    EligibilityStatus.LIKELY_ELIGIBLE: AppliesToUser.LIKELY,
    EligibilityStatus.UNCERTAIN: AppliesToUser.UNCERTAIN,
    EligibilityStatus.NOT_ELIGIBLE: AppliesToUser.NO,
}

_CONFIDENCE_TO_APPLIES = {
    ConfidenceLevel.HIGH: AppliesToUser.YES,
    ConfidenceLevel.MEDIUM: AppliesToUser.LIKELY,
    ConfidenceLevel.LOW: AppliesToUser.UNCERTAIN,
}


class MatchCacheProtocol(Protocol):
    async def get_cached_matches(
        self, user_id: str, grants: Sequence[GrantData], profile_version: int
    ) -> dict[str, Optional[MatchAnalysis]]: ...

    async def set_cached_matches(
        self, user_id: str, profile_version: int, items: Sequence[tuple[GrantData, MatchAnalysis]]
    ) -> int: ...


class AnalyzerProtocol(Protocol):
    async def analyze(self, profile: UserProfile, grants: Sequence[GrantData]) -> dict[str, MatchAnalysis]: ...


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


# =============================================================================
# Stages
# =============================================================================


def coerce_grants(raw_grants: Iterable[Union[GrantData, dict[str, Any]]]) -> tuple[list[GrantData], int]:
    """
    Validate raw grant records.

    Returns:
        Tuple of (valid grants, number of records that failed validation)
    """
    grants = []
    invalid = 0
    for raw in raw_grants:
        if isinstance(raw, GrantData):
            grants.append(raw)
            continue
        try:
            grants.append(GrantData.model_validate(raw))
        except (ValidationError, TypeError, ValueError) as e:
            invalid += 1
            grant_id = raw.get("id") if isinstance(raw, dict) else None
            errors = e.error_count() if isinstance(e, ValidationError) else 1
            logger.warning("grant_validation_failed", grant_id=grant_id, errors=errors, error=str(e))
    return grants, invalid


def combine_scores(deterministic: int, analysis: Optional[MatchAnalysis]) -> int:
    """Blend the deterministic and AI scores; low-confidence analyses are ignored."""
    if analysis is None or analysis.confidence == ConfidenceLevel.LOW:
        return deterministic
    weight = settings.match_ai_weight
    return max(0, min(100, round((1 - weight) * deterministic + weight * analysis.match_score)))


def applies_to_user(eligibility: EligibilityResult, analysis: Optional[MatchAnalysis]) -> AppliesToUser:
    if analysis is not None and analysis.confidence != ConfidenceLevel.LOW:
        return _AI_STATUS_TO_APPLIES[analysis.eligibility_status]
    return _CONFIDENCE_TO_APPLIES[eligibility.confidence_level]


def dedupe_ranked(ranked: Iterable[RankedGrant]) -> list[RankedGrant]:
    """Keep the first occurrence of each id and of each normalized (title, sponsor)."""
    seen_ids = set()
    seen_titles = set()
    unique = []
    for item in ranked:
        title_key = (normalize_tag(item.grant.title), normalize_tag(item.grant.sponsor))
        if item.grant.id in seen_ids or title_key in seen_titles:
            continue
        seen_ids.add(item.grant.id)
        seen_titles.add(title_key)
        unique.append(item)
    return unique


def _best_match_key(item: RankedGrant):
    return (-item.match_score, *deadline_sort_key(item.grant))


def sort_ranked(ranked: list[RankedGrant], sort_by: SortBy) -> list[RankedGrant]:
    if sort_by == SortBy.DEADLINE:
        return sorted(ranked, key=lambda item: (*deadline_sort_key(item.grant), -item.match_score))
    if sort_by == SortBy.HIGHEST_FUNDING:
        return sorted(
            ranked,
            key=lambda item: (-(item.grant.amount_max or item.grant.amount_min or 0), -item.match_score),
        )
    return sorted(ranked, key=_best_match_key)


def scoring_distribution(scored: Iterable[ScoredGrant]) -> dict[str, int]:
    distribution = {label: 0 for label, _, _ in SCORE_BUCKETS}
    for item in scored:
        for label, low, high in SCORE_BUCKETS:
            if low <= item.score.total_score <= high:
                distribution[label] += 1
                break
    return distribution


async def _lookup_cached(
    cache: MatchCacheProtocol,
    profile: UserProfile,
    candidates: Sequence[GrantData],
) -> dict[str, MatchAnalysis]:
    try:
        cached = await cache.get_cached_matches(profile.user_id, candidates, profile.profile_version)
    except Exception as e:
        logger.warning("match_cache_lookup_failed", user_id=profile.user_id, error=str(e))
        return {}
    return {grant_id: analysis for grant_id, analysis in cached.items() if analysis is not None}


async def _analyze_misses(
    analyzer: AnalyzerProtocol,
    profile: UserProfile,
    misses: Sequence[GrantData],
) -> dict[str, MatchAnalysis]:
    fresh = await asyncio.wait_for(
        analyzer.analyze(profile, misses),
        timeout=settings.match_ai_timeout_seconds,
    )
    known = {grant.id for grant in misses}
    return {grant_id: analysis for grant_id, analysis in fresh.items() if grant_id in known}


# =============================================================================
# Pipeline
# =============================================================================


async def run_discovery_pipeline(
    grants: Optional[Iterable[Union[GrantData, dict[str, Any]]]],
    profile: Optional[UserProfile],
    options: Optional[PipelineOptions] = None,
    *,
    cache: Optional[MatchCacheProtocol] = None,
    analyzer: Optional[AnalyzerProtocol] = None,
    now: Optional[datetime] = None,
) -> PipelineResult:
    """
    Run the full discovery pipeline for one profile.

    Args:
        grants: Candidate pool, as GrantData or raw dicts.
        profile: Matching profile.
        options: Limit, threshold, ordering and feature switches.
        cache: Match cache; used when options.use_cache and the profile has a user id.
        analyzer: AI analyzer; used for cache misses when options.use_ai.
        now: Reference time for deadline-relative scoring and display.

    Returns:
        PipelineResult with ranked grants, stats and optional debug output.

    Raises:
        PipelineInputError: If grants or profile is None.
    """
    if grants is None:
        raise PipelineInputError("A candidate grant pool is required")
    if profile is None:
        raise PipelineInputError("A profile is required")

    options = options or PipelineOptions()
    now = as_utc(now) if now else datetime.now(timezone.utc)
    started = time.perf_counter()
    timings = {}
    stats = PipelineStats()

    # Validation
    stage_start = time.perf_counter()
    valid_grants, stats.invalid = coerce_grants(grants)
    stats.fetched = len(valid_grants) + stats.invalid
    timings["validation_ms"] = _elapsed_ms(stage_start)

    # Eligibility
    stage_start = time.perf_counter()
    batch = filter_eligible_grants(profile, valid_grants, now)
    stats.eligible = len(batch.eligible)
    stats.ineligible = len(batch.ineligible)
    timings["eligibility_ms"] = _elapsed_ms(stage_start)

    # Scoring
    stage_start = time.perf_counter()
    scored = []
    for grant in batch.eligible:
        try:
            scored.append(ScoredGrant(grant=grant, score=calculate_score(profile, grant, now)))
        except Exception as e:
            logger.warning("scoring_failed", grant_id=grant.id, error=str(e))
    scored.sort(key=lambda item: (-item.score.total_score, *deadline_sort_key(item.grant)))
    stats.after_scoring = len(scored)
    timings["scoring_ms"] = _elapsed_ms(stage_start)

    # Cache and AI enrichment of the top candidates
    candidates = [item.grant for item in scored[: settings.match_max_ai_candidates]]
    analyses: dict[str, MatchAnalysis] = {}
    cached_ids = set()
    ai_error = None
    use_cache = options.use_cache and cache is not None and profile.user_id is not None

    stage_start = time.perf_counter()
    if use_cache and candidates:
        analyses = await _lookup_cached(cache, profile, candidates)
        cached_ids = set(analyses)
        stats.from_cache = len(cached_ids)
    timings["cache_ms"] = _elapsed_ms(stage_start)

    stage_start = time.perf_counter()
    misses = [grant for grant in candidates if grant.id not in analyses]
    if misses and options.use_ai and analyzer is not None:
        try:
            fresh = await _analyze_misses(analyzer, profile, misses)
        except Exception as e:
            ai_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            stats.ai_fallback = True
            logger.warning("ai_analysis_unavailable", user_id=profile.user_id, error=ai_error)
        else:
            analyses.update(fresh)
            stats.from_ai = len(fresh)
            if use_cache and fresh:
                try:
                    await cache.set_cached_matches(
                        profile.user_id,
                        profile.profile_version,
                        [(grant, fresh[grant.id]) for grant in misses if grant.id in fresh],
                    )
                except Exception as e:
                    logger.warning("match_cache_write_failed", user_id=profile.user_id, error=str(e))
    timings["ai_ms"] = _elapsed_ms(stage_start)

    # Ranking
    stage_start = time.perf_counter()
    ranked = []
    for item in scored:
        analysis = analyses.get(item.grant.id)
        eligibility = batch.results[item.grant.id]
        match_score = combine_scores(item.score.total_score, analysis)
        tier = get_tier(match_score)
        ranked.append(
            RankedGrant(
                grant=item.grant,
                match_score=match_score,
                deterministic_score=item.score.total_score,
                ai_score=analysis.match_score if analysis else None,
                tier=tier,
                tier_label=tier_label(tier),
                applies_to_user=applies_to_user(eligibility, analysis),
                eligibility_assessment=eligibility,
                score=item.score,
                ai_analysis=analysis,
                from_cache=item.grant.id in cached_ids,
                funding_display=item.grant.funding_display,
                deadline_display=format_deadline_display(item.grant.deadline_date, now),
            )
        )

    above_min = [item for item in ranked if item.match_score >= options.min_score]
    stats.above_min_score = len(above_min)
    unique = dedupe_ranked(sorted(above_min, key=_best_match_key))
    results = sort_ranked(unique, options.sort_by)[: options.limit]
    timings["ranking_ms"] = _elapsed_ms(stage_start)

    stats.returned = len(results)
    stats.by_tier = dict(Counter(item.tier.value for item in results))
    stats.by_applies = dict(Counter(item.applies_to_user.value for item in results))

    processing_time_ms = _elapsed_ms(started)
    logger.info(
        "pipeline_complete",
        user_id=profile.user_id,
        fetched=stats.fetched,
        eligible=stats.eligible,
        returned=stats.returned,
        from_cache=stats.from_cache,
        from_ai=stats.from_ai,
        ai_fallback=stats.ai_fallback,
        processing_time_ms=processing_time_ms,
    )

    debug = None
    if options.include_debug:
        trace_size = (
            options.debug_trace_size if options.debug_trace_size is not None else settings.match_debug_trace_size
        )
        scores_by_id = {item.grant.id: item.score for item in scored}
        traces = [
            GrantTrace(
                grant_id=grant.id,
                title=grant.title,
                url=grant.url,
                eligibility=batch.results[grant.id],
                score=scores_by_id.get(grant.id),
            )
            for grant in valid_grants
            if grant.id in batch.results
        ][:trace_size]
        debug = PipelineDebug(
            eligibility_stats=batch.stats,
            scoring_distribution=scoring_distribution(scored),
            cache_hit_rate=round(stats.from_cache / len(candidates), 3) if use_cache and candidates else 0.0,
            processing_time_ms=processing_time_ms,
            timings=timings,
            traces=traces,
            ai_error=ai_error,
        )

    return PipelineResult(grants=results, stats=stats, debug=debug)
