"""
Tests for the eligibility engine.
"""

from datetime import timedelta

import pytest

from agents.matching import eligibility
from agents.matching.eligibility import (
    check_entity_type,
    check_geography,
    check_grant_status,
    check_industry_relevance,
    check_url_exists,
    filter_eligible_grants,
    run_eligibility_engine,
)
from agents.matching.models import EligibilityFilter
from agents.matching.taxonomy import ConfidenceLevel, EntityType
from tests.fixtures.factories import GrantDataFactory, ProfileFactory


class TestGrantFilters:
    """Tests for the URL and status gates."""

    @pytest.mark.parametrize("url", ["", "   ", "not a link", "ftp://files.example.gov/grant.pdf"])
    def test_unusable_url_fails(self, url):
        grant = GrantDataFactory.create(url=url)
        assert not check_url_exists(grant).passed

    def test_https_url_passes(self):
        assert check_url_exists(GrantDataFactory.create(url="https://www.grants.gov/view/123")).passed

    @pytest.mark.parametrize("status", ["closed", "forecasted", "expired", "archived"])
    def test_not_open_fails(self, status):
        assert not check_grant_status(GrantDataFactory.create(status=status)).passed

    def test_status_alias_counts_as_open(self):
        grant = GrantDataFactory.create(status="Posted")
        assert check_grant_status(grant).passed

    def test_past_deadline_fails(self, now):
        grant = GrantDataFactory.create(deadline_date=now - timedelta(hours=1))
        outcome = check_grant_status(grant, now)
        assert not outcome.passed
        assert outcome.reason == "Application deadline has passed"

    def test_future_and_rolling_deadlines_pass(self, now):
        assert check_grant_status(GrantDataFactory.create(deadline_date=now + timedelta(days=1)), now).passed
        assert check_grant_status(GrantDataFactory.create(deadline_date=None), now).passed

    def test_deadline_ignored_without_reference_time(self, now):
        assert check_grant_status(GrantDataFactory.create(deadline_date=now - timedelta(days=30))).passed

    def test_naive_reference_time(self, now):
        grant = GrantDataFactory.create(deadline_date=now - timedelta(hours=1))
        assert not check_grant_status(grant, now.replace(tzinfo=None)).passed


class TestEntityFilter:
    """Tests for entity type compatibility."""

    def test_direct_match(self):
        profile = ProfileFactory.create(entity_type="nonprofit")
        grant = GrantDataFactory.create(eligibility={"tags": ["Nonprofits"]})
        outcome = check_entity_type(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.HIGH

    def test_unrestricted_grant_is_open_to_all(self):
        profile = ProfileFactory.create(entity_type="individual")
        outcome = check_entity_type(profile, GrantDataFactory.create(eligibility={"tags": []}))
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.MEDIUM

    def test_adjacent_entity_passes_at_medium_confidence(self):
        profile = ProfileFactory.create(entity_type="small_business")
        grant = GrantDataFactory.create(eligibility={"tags": ["For-profit businesses"]})
        outcome = check_entity_type(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.MEDIUM

    def test_adjacency_is_not_symmetric(self):
        profile = ProfileFactory.create(entity_type="nonprofit")
        grant = GrantDataFactory.create(eligibility={"tags": ["Universities"]})
        assert not check_entity_type(profile, grant).passed

    def test_unlisted_entity_fails(self):
        profile = ProfileFactory.create(entity_type="small_business")
        grant = GrantDataFactory.create(eligibility={"tags": ["individual", "school_district"]})
        assert not check_entity_type(profile, grant).passed

    def test_explicit_exclusion_overrides_tags(self):
        profile = ProfileFactory.create(entity_type="individual")
        grant = GrantDataFactory.create(
            eligibility={"tags": [], "raw_text": "Open to local organizations. Individuals are not eligible."}
        )
        outcome = check_entity_type(profile, grant)
        assert not outcome.passed
        assert "excludes" in outcome.reason

    def test_exclusion_in_description(self):
        profile = ProfileFactory.create(entity_type="nonprofit")
        grant = GrantDataFactory.create(
            eligibility={"tags": ["Nonprofits"]},
            description="This program funds private lenders. Nonprofit organizations are not eligible.",
        )
        assert not check_entity_type(profile, grant).passed

    def test_unmapped_tags_pass_at_low_confidence(self):
        profile = ProfileFactory.create(entity_type="small_business")
        grant = GrantDataFactory.create(eligibility={"tags": ["Astronauts"]})
        outcome = check_entity_type(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.LOW

    def test_missing_entity_type_passes_at_low_confidence(self):
        profile = ProfileFactory.create(entity_type=None)
        grant = GrantDataFactory.create(eligibility={"tags": ["Nonprofits"]})
        outcome = check_entity_type(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.LOW

    def test_unknown_entity_value_is_treated_as_unset(self):
        profile = ProfileFactory.create(entity_type="space agency")
        assert profile.entity_type is None

    def test_tribal_profile_qualifies_for_government_grant(self):
        profile = ProfileFactory.create(entity_type="tribal")
        grant = GrantDataFactory.create(eligibility={"tags": ["Local governments"]})
        assert check_entity_type(profile, grant).passed
        assert profile.entity_type == EntityType.TRIBAL


class TestGeographyFilter:
    """Tests for geographic availability."""

    def test_other_state_only_fails(self):
        profile = ProfileFactory.create(state="MA")
        grant = GrantDataFactory.create(locations=[{"type": "state", "value": "TX"}])
        outcome = check_geography(profile, grant)
        assert not outcome.passed
        assert "Massachusetts" in outcome.reason

    def test_matching_state_passes(self):
        profile = ProfileFactory.create(state="New York")
        grant = GrantDataFactory.create(locations=["NY", "NJ"])
        assert check_geography(profile, grant).passed

    def test_region_containing_state_passes(self):
        profile = ProfileFactory.create(state="MA")
        grant = GrantDataFactory.create(locations=[{"type": "region", "value": "New England"}])
        outcome = check_geography(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.HIGH

    def test_region_excluding_state_fails(self):
        profile = ProfileFactory.create(state="CA")
        grant = GrantDataFactory.create(locations=[{"type": "region", "value": "Midwest"}])
        assert not check_geography(profile, grant).passed

    @pytest.mark.parametrize(
        "text",
        [
            "Available to rural communities nationwide, excluding California.",
            "Open in all states except California and Hawaii.",
            "This program is not available in California.",
            "Service area does not include California.",
        ],
    )
    def test_explicit_state_exclusion_fails(self, text):
        profile = ProfileFactory.create(state="CA")
        grant = GrantDataFactory.create(locations=[{"type": "national"}], description=text)
        outcome = check_geography(profile, grant)
        assert not outcome.passed
        assert outcome.reason == "Grant excludes applicants in California"

    def test_state_exclusion_in_eligibility_text(self):
        profile = ProfileFactory.create(state="NY")
        grant = GrantDataFactory.create(eligibility={"tags": [], "raw_text": "All states except New York."})
        assert not check_geography(profile, grant).passed

    def test_exclusion_of_other_state_passes(self):
        profile = ProfileFactory.create(state="VA")
        grant = GrantDataFactory.create(description="Open nationwide except West Virginia.")
        assert check_geography(profile, grant).passed

    def test_unresolved_region_passes_at_low_confidence(self):
        profile = ProfileFactory.create(state="AZ")
        grant = GrantDataFactory.create(locations=[{"type": "region", "value": "Four Corners"}])
        outcome = check_geography(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.LOW

    def test_national_and_unlisted_pass(self):
        profile = ProfileFactory.create(state="WA")
        assert check_geography(profile, GrantDataFactory.create(locations=[{"type": "national"}])).passed
        assert check_geography(profile, GrantDataFactory.create(locations=[])).passed

    def test_missing_state_passes_at_low_confidence(self):
        profile = ProfileFactory.create(state=None)
        grant = GrantDataFactory.create(locations=[{"type": "state", "value": "TX"}])
        outcome = check_geography(profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.LOW


class TestIndustryFilter:
    """Tests for topical relevance."""

    def test_category_hit(self, agriculture_profile, agriculture_grant):
        outcome = check_industry_relevance(agriculture_profile, agriculture_grant)
        assert outcome.passed
        assert outcome.reason == "Listed under Agriculture & Farming"

    def test_single_keyword_is_possible_match(self, agriculture_profile):
        grant = GrantDataFactory.create(title="Irrigation Improvement Program")
        outcome = check_industry_relevance(agriculture_profile, grant)
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.MEDIUM

    def test_exclusion_keyword_fails(self, agriculture_profile, teacher_grant):
        outcome = check_industry_relevance(agriculture_profile, teacher_grant)
        assert not outcome.passed
        assert "unrelated" in outcome.reason

    def test_no_overlap_fails(self, agriculture_profile):
        grant = GrantDataFactory.create(title="Downtown Facade Improvement Program")
        assert not check_industry_relevance(agriculture_profile, grant).passed

    def test_no_tags_passes_at_low_confidence(self):
        profile = ProfileFactory.create(industry_tags=[])
        outcome = check_industry_relevance(profile, GrantDataFactory.create())
        assert outcome.passed
        assert outcome.confidence == ConfidenceLevel.LOW


class TestRunEligibilityEngine:
    """Tests for the combined verdict."""

    def test_all_filters_pass(self, agriculture_profile, agriculture_grant):
        result = run_eligibility_engine(agriculture_profile, agriculture_grant)
        assert result.is_eligible
        assert result.failed_filters == []
        assert result.confidence_level == ConfidenceLevel.HIGH
        assert [outcome.filter for outcome in result.filter_results] == list(EligibilityFilter)

    def test_industry_failure_is_advisory(self, agriculture_profile):
        grant = GrantDataFactory.create(title="Downtown Facade Improvement Program")
        result = run_eligibility_engine(agriculture_profile, grant)
        assert result.is_eligible
        assert result.failed_filters == [EligibilityFilter.INDUSTRY_RELEVANCE]
        assert result.confidence_level == ConfidenceLevel.MEDIUM
        assert any("focus areas" in warning for warning in result.warnings)

    def test_past_deadline_is_ineligible(self, agriculture_profile, now):
        grant = GrantDataFactory.create_agriculture(deadline_date=now - timedelta(days=2))
        result = run_eligibility_engine(agriculture_profile, grant, now)
        assert not result.is_eligible
        assert result.failed_filters == [EligibilityFilter.GRANT_STATUS]
        assert result.primary_reason == "Application deadline has passed"

    def test_hard_failure_is_ineligible_with_high_confidence(self, agriculture_profile):
        grant = GrantDataFactory.create_agriculture(status="closed")
        result = run_eligibility_engine(agriculture_profile, grant)
        assert not result.is_eligible
        assert result.confidence_level == ConfidenceLevel.HIGH
        assert result.primary_reason == "Grant is closed"

    def test_sparse_profile_has_low_confidence(self, agriculture_grant):
        profile = ProfileFactory.create_sparse(state=None)
        result = run_eligibility_engine(profile, agriculture_grant)
        assert result.is_eligible
        assert result.confidence_level == ConfidenceLevel.LOW
        assert len(result.suggestions) == 2

    def test_out_of_state_is_ineligible(self):
        """A profile in MA is never eligible for a Texas-only grant."""
        profile = ProfileFactory.create(state="MA", industry_tags=["business"])
        grant = GrantDataFactory.create(
            title="Texas Small Business Expansion Fund",
            locations=[{"type": "state", "value": "TX"}],
        )
        result = run_eligibility_engine(profile, grant)
        assert not result.is_eligible
        assert EligibilityFilter.GEOGRAPHY in result.failed_filters

    def test_teacher_grant_is_ineligible_for_farm_business(self, agriculture_profile):
        grant = GrantDataFactory.create(
            title="K-12 Teacher Professional Development Grant",
            eligibility={"tags": ["individual", "school_district"]},
        )
        result = run_eligibility_engine(agriculture_profile, grant)
        assert not result.is_eligible

    def test_deterministic(self, agriculture_profile, agriculture_grant):
        first = run_eligibility_engine(agriculture_profile, agriculture_grant)
        second = run_eligibility_engine(agriculture_profile, agriculture_grant)
        assert first == second


class TestFilterEligibleGrants:
    """Tests for batch partitioning."""

    @pytest.mark.parametrize(
        "profile",
        [
            ProfileFactory.create(),
            ProfileFactory.create(entity_type="nonprofit", state="NY", industry_tags=["community"]),
            ProfileFactory.create_sparse(state=None),
        ],
    )
    def test_grants_without_url_never_eligible(self, profile):
        grants = [
            GrantDataFactory.create_agriculture(id="no-url", url=""),
            GrantDataFactory.create_agriculture(id="with-url"),
            GrantDataFactory.create(id="no-url-2", url="", categories=["Community"]),
        ]
        batch = filter_eligible_grants(profile, grants)
        eligible_ids = {grant.id for grant in batch.eligible}
        assert "no-url" not in eligible_ids
        assert "no-url-2" not in eligible_ids
        assert batch.stats.by_filter[EligibilityFilter.URL_EXISTS.value] == 2

    def test_partition_and_stats(self, agriculture_profile, agriculture_grant, teacher_grant):
        closed = GrantDataFactory.create_agriculture(id="closed", status="closed")
        batch = filter_eligible_grants(agriculture_profile, [agriculture_grant, teacher_grant, closed])

        assert [grant.id for grant in batch.eligible] == ["ag-equipment"]
        assert {item.grant.id for item in batch.ineligible} == {"teacher-pd", "closed"}
        assert batch.stats.total == 3
        assert batch.stats.passed == 1
        assert batch.stats.failed == 2
        assert set(batch.results) == {"ag-equipment", "teacher-pd", "closed"}

    def test_failing_grant_does_not_abort_batch(self, agriculture_profile, monkeypatch):
        original = eligibility.check_url_exists

        def flaky(grant):
            if grant.id == "broken":
                raise ValueError("malformed grant")
            return original(grant)

        monkeypatch.setattr(eligibility, "check_url_exists", flaky)
        grants = [GrantDataFactory.create_agriculture(id="broken"), GrantDataFactory.create_agriculture(id="fine")]

        batch = filter_eligible_grants(agriculture_profile, grants)

        assert [grant.id for grant in batch.eligible] == ["fine"]
        assert batch.stats.errored == 1
        assert "broken" not in batch.results
