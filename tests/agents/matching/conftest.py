"""
Matching agent test fixtures.
Provides profiles, grants, and mock AI responses for matching tests.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fixtures.factories import GrantDataFactory, ProfileFactory


@pytest.fixture
def agriculture_profile():
    """Small farm business in California."""
    return ProfileFactory.create(
        user_id="farm-user",
        entity_type="small_business",
        state="CA",
        industry_tags=["agriculture"],
        size_band="small",
        annual_budget="100k_250k",
        goals=["equipment", "sustainability"],
    )


@pytest.fixture
def agriculture_grant():
    return GrantDataFactory.create_agriculture(id="ag-equipment")


@pytest.fixture
def teacher_grant():
    """Classroom grant that an agriculture profile must never see ranked."""
    return GrantDataFactory.create(
        id="teacher-pd",
        title="K-12 Teacher Professional Development Grant",
        sponsor="Department of Education",
        summary="Funds classroom teacher professional development and curriculum design.",
        categories=["Education"],
        eligibility={"tags": ["School districts", "Nonprofits"]},
    )


@pytest.fixture
def sample_analysis_items():
    """AI analysis items as the model returns them."""
    return [
        {
            "grant_id": "ag-equipment",
            "match_score": 92,
            "eligibility_status": "eligible",
            "confidence": "high",
            "fit_summary": "Directly funds irrigation equipment for small producers.",
            "why_match": "The applicant is a small agricultural business in California.",
            "next_steps": ["Gather equipment quotes", "Register in SAM.gov"],
            "concerns": [],
            "what_you_can_fund": ["Irrigation systems"],
            "urgency": "medium",
        },
    ]


@pytest.fixture
def mock_anthropic_response(sample_analysis_items):
    """Mock Anthropic API response."""
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=json.dumps(sample_analysis_items))]
    return mock_response


@pytest.fixture
def mock_anthropic_client(mock_anthropic_response):
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=mock_anthropic_response)
    return client


@pytest.fixture
def unlimited_budget():
    budget = MagicMock()
    budget.consume = AsyncMock(return_value=(True, 0))
    return budget
