"""
Tests for the scoring engine.
"""

from datetime import timedelta

import pytest

from agents.matching.scoring import (
    LOW_QUALITY_WARNING,
    NO_AMOUNT_WARNING,
    calculate_score,
    explain_score,
    get_tier,
    get_top_grants,
    quality_cap_for,
    score_and_sort_grants,
    score_budget_match,
    score_entity_match,
    score_geography_match,
    score_industry_match,
    score_purpose_match,
)
from agents.matching.taxonomy import SCORING_WEIGHTS, ConfidenceLevel, MatchTier
from tests.fixtures.factories import GrantDataFactory, ProfileFactory


class TestTiers:
    """Tests for tier thresholds."""

    @pytest.mark.parametrize(
        "score,tier",
        [
            (100, MatchTier.EXCELLENT),
            (80, MatchTier.EXCELLENT),
            (79, MatchTier.GOOD),
            (60, MatchTier.GOOD),
            (59, MatchTier.FAIR),
            (40, MatchTier.FAIR),
            (39, MatchTier.LOW),
            (0, MatchTier.LOW),
        ],
    )
    def test_get_tier(self, score, tier):
        assert get_tier(score) == tier

    def test_quality_caps(self):
        assert quality_cap_for(10) == 59
        assert quality_cap_for(45) == 79
        assert quality_cap_for(60) is None


class TestFactors:
    """Tests for individual scoring factors."""

    def test_entity_direct_match_is_full_weight(self, agriculture_profile, agriculture_grant):
        assert score_entity_match(agriculture_profile, agriculture_grant).points == SCORING_WEIGHTS["entity_match"]

    def test_entity_adjacency_is_partial(self, agriculture_profile):
        grant = GrantDataFactory.create(eligibility={"tags": ["For-profit businesses"]})
        assert score_entity_match(agriculture_profile, grant).points == pytest.approx(15.0)

    def test_entity_excluded_scores_zero_with_warning(self):
        profile = ProfileFactory.create(entity_type="individual")
        grant = GrantDataFactory.create(eligibility={"raw_text": "Individuals are not eligible to apply."})
        factor = score_entity_match(profile, grant)
        assert factor.points == 0
        assert factor.warning

    def test_industry_points_grow_with_keyword_overlap(self, agriculture_profile):
        one = GrantDataFactory.create(title="Irrigation Grant")
        more = GrantDataFactory.create(title="Irrigation Grant", summary="For farmers raising livestock.")
        listed = GrantDataFactory.create(
            title="Irrigation Grant",
            summary="For farmers raising livestock.",
            categories=["Agriculture"],
        )

        points = [score_industry_match(agriculture_profile, grant).points for grant in (one, more, listed)]

        assert points == sorted(points)
        assert points[0] < points[2]
        assert all(value <= SCORING_WEIGHTS["industry_match"] for value in points)

    def test_industry_is_capped_at_weight(self):
        profile = ProfileFactory.create(industry_tags=["agriculture", "climate", "community"])
        grant = GrantDataFactory.create(
            title="Rural Community Climate Resilience and Farm Conservation Program",
            summary="Soil health, renewable energy, and neighborhood revitalization for farming towns.",
            categories=["Agriculture", "Climate", "Community"],
        )
        assert score_industry_match(profile, grant).points == SCORING_WEIGHTS["industry_match"]

    def test_industry_mismatch_scores_zero(self, agriculture_profile, teacher_grant):
        factor = score_industry_match(agriculture_profile, teacher_grant)
        assert factor.points == 0
        assert factor.warning

    def test_geography_levels(self):
        profile = ProfileFactory.create(state="OR")
        state = GrantDataFactory.create(locations=["Oregon"])
        region = GrantDataFactory.create(locations=[{"type": "region", "value": "Pacific Northwest"}])
        national = GrantDataFactory.create(locations=[{"type": "national"}])
        elsewhere = GrantDataFactory.create(locations=["TX"])

        assert score_geography_match(profile, state).points == 10
        assert score_geography_match(profile, region).points == pytest.approx(8.0)
        assert score_geography_match(profile, national).points == pytest.approx(7.0)
        assert score_geography_match(profile, elsewhere).points == 0

    def test_region_after_unresolved_location_still_matches(self):
        profile = ProfileFactory.create(state="OR")
        grant = GrantDataFactory.create(
            locations=[
                {"type": "region", "value": "Tri-County Service Area"},
                {"type": "region", "value": "Pacific Northwest"},
            ]
        )
        unresolved_only = GrantDataFactory.create(locations=[{"type": "region", "value": "Tri-County Service Area"}])

        assert score_geography_match(profile, grant).points == pytest.approx(8.0)
        assert score_geography_match(profile, unresolved_only).points == pytest.approx(5.0)

    def test_budget_without_amount_warns(self, agriculture_profile):
        grant = GrantDataFactory.create(amount_min=None, amount_max=None)
        factor = score_budget_match(agriculture_profile, grant)
        assert factor.points == pytest.approx(5.0)
        assert factor.warning == NO_AMOUNT_WARNING

    def test_budget_preferred_size(self):
        profile = ProfileFactory.create(grant_preferences={"preferred_size": "small"})
        fits = GrantDataFactory.create(amount_min=10_000, amount_max=40_000)
        too_big = GrantDataFactory.create(amount_min=500_000, amount_max=2_000_000)

        assert score_budget_match(profile, fits).points == 10
        assert score_budget_match(profile, too_big).points == pytest.approx(3.0)

    def test_large_grant_for_small_budget_warns(self):
        profile = ProfileFactory.create(annual_budget="under_50k")
        grant = GrantDataFactory.create(amount_min=300_000, amount_max=1_000_000)
        factor = score_budget_match(profile, grant)
        assert factor.points == pytest.approx(4.0)
        assert factor.warning

    def test_purpose_overlap(self, agriculture_profile, agriculture_grant):
        assert score_purpose_match(agriculture_profile, agriculture_grant).points == 10

    def test_purpose_without_goals_is_neutral(self, agriculture_grant):
        profile = ProfileFactory.create(goals=[])
        assert score_purpose_match(profile, agriculture_grant).points == pytest.approx(5.0)


class TestCalculateScore:
    """Tests for the total score."""

    def test_breakdown_sums_to_total(self, agriculture_profile, agriculture_grant, now):
        result = calculate_score(agriculture_profile, agriculture_grant, now)
        breakdown = result.breakdown
        total = (
            breakdown.entity_match
            + breakdown.industry_match
            + breakdown.geography_match
            + breakdown.budget_match
            + breakdown.purpose_match
            + breakdown.preferences_match
        )
        assert result.total_score == round(total)
        assert result.tier == get_tier(result.total_score)
        assert result.confidence_level == ConfidenceLevel.HIGH
        assert result.match_reasons

    def test_every_factor_within_weight(self, agriculture_profile, agriculture_grant, teacher_grant, now):
        for grant in (agriculture_grant, teacher_grant):
            breakdown = calculate_score(agriculture_profile, grant, now).breakdown
            for name, weight in SCORING_WEIGHTS.items():
                assert 0 <= getattr(breakdown, name) <= weight

    def test_deterministic(self, agriculture_profile, agriculture_grant, now):
        first = calculate_score(agriculture_profile, agriculture_grant, now)
        second = calculate_score(agriculture_profile, agriculture_grant, now)
        assert first == second

    def test_low_quality_listing_is_capped(self, agriculture_profile, now):
        good = calculate_score(agriculture_profile, GrantDataFactory.create_agriculture(quality_score=90), now)
        poor = calculate_score(agriculture_profile, GrantDataFactory.create_agriculture(quality_score=20), now)

        assert good.total_score > 59
        assert poor.total_score == 59
        assert poor.breakdown.quality_cap == 59
        assert LOW_QUALITY_WARNING in poor.warnings

    def test_relevant_grant_outscores_irrelevant(self, agriculture_profile, agriculture_grant, teacher_grant, now):
        relevant = calculate_score(agriculture_profile, agriculture_grant, now)
        irrelevant = calculate_score(agriculture_profile, teacher_grant, now)
        assert relevant.total_score > irrelevant.total_score

    def test_imminent_deadline_warns(self, agriculture_profile, now):
        grant = GrantDataFactory.create_agriculture(deadline_date=now + timedelta(days=5))
        result = calculate_score(agriculture_profile, grant, now)
        assert "Deadline is in 5 days" in result.warnings

    def test_naive_reference_time_is_read_as_utc(self, agriculture_profile, now):
        grant = GrantDataFactory.create_agriculture(deadline_date=now + timedelta(days=5))

        naive = calculate_score(agriculture_profile, grant, now.replace(tzinfo=None))

        assert naive == calculate_score(agriculture_profile, grant, now)
        assert "Deadline is in 5 days" in naive.warnings

    def test_sort_accepts_naive_reference_time(self, agriculture_profile, agriculture_grant, now):
        ranked = score_and_sort_grants(agriculture_profile, [agriculture_grant], now.replace(tzinfo=None))
        assert [item.grant.id for item in ranked] == ["ag-equipment"]

    def test_sparse_profile_has_low_confidence(self, agriculture_grant, now):
        profile = ProfileFactory.create_sparse(state=None)
        assert calculate_score(profile, agriculture_grant, now).confidence_level == ConfidenceLevel.LOW

    def test_explain_score(self, agriculture_profile, agriculture_grant, now):
        text = explain_score(calculate_score(agriculture_profile, agriculture_grant, now))
        assert "Focus area:" in text
        assert "/45" in text


class TestSorting:
    """Tests for ranking helpers."""

    def test_ties_break_on_soonest_deadline(self, agriculture_profile, now):
        later = GrantDataFactory.create_agriculture(id="later", deadline_date=now + timedelta(days=90))
        rolling = GrantDataFactory.create_agriculture(id="rolling", deadline_date=None)
        sooner = GrantDataFactory.create_agriculture(id="sooner", deadline_date=now + timedelta(days=30))

        ranked = score_and_sort_grants(agriculture_profile, [later, rolling, sooner], now)

        assert [item.grant.id for item in ranked] == ["sooner", "later", "rolling"]

    def test_higher_score_first(self, agriculture_profile, agriculture_grant, now):
        weak = GrantDataFactory.create(id="weak", title="Irrigation Grant")
        ranked = score_and_sort_grants(agriculture_profile, [weak, agriculture_grant], now)
        assert ranked[0].grant.id == "ag-equipment"

    def test_get_top_grants_applies_threshold_and_limit(self, agriculture_profile, teacher_grant, now):
        grants = [GrantDataFactory.create_agriculture() for _ in range(4)] + [teacher_grant]
        top = get_top_grants(agriculture_profile, grants, limit=3, min_score=60, now=now)
        assert len(top) == 3
        assert all(item.score.total_score >= 60 for item in top)
