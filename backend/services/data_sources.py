"""
Grant and profile data sources for the matching pipeline.

Translates database rows into matching models. Grant rows written by older
ingestion jobs may store list columns as JSON-encoded strings or comma
separated text, and locations in the legacy {"state": "CA"} shape; all of
these are accepted here so the engines only ever see structured values.
"""

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agents.matching.models import GrantData, GrantPreferences, UserProfile
from agents.matching.taxonomy import GeographyScope, normalize_state
from backend.core.exceptions import NotFoundError, ValidationError
from backend.models import Grant, OrganizationProfile

logger = logging.getLogger(__name__)

# Profile fields whose change invalidates cached match analyses.
MATCHING_FIELDS = frozenset({
    "entity_type",
    "country",
    "state",
    "industry_tags",
    "size_band",
    "stage",
    "annual_budget",
    "goals",
    "grant_preferences",
})

_UPDATABLE_FIELDS = MATCHING_FIELDS | {"confidence_score"}

_PROFILE_COMPLETENESS_FIELDS = 6


# =============================================================================
# Decoding Helpers
# =============================================================================


def decode_json_column(value: Any) -> Any:
    """Decode a JSON-encoded string column; other values pass through."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    if text[0] in "[{\"":
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


def decode_list_column(value: Any) -> list[Any]:
    value = decode_json_column(value)
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return list(value)
    # A lone scalar or object is a one-item list.
    return [value]


def decode_eligibility(value: Any) -> dict[str, Any]:
    value = decode_json_column(value)
    if value is None:
        return {"tags": [], "raw_text": None}
    if isinstance(value, str):
        return {"tags": [], "raw_text": value}
    if not isinstance(value, dict):
        return {"tags": [str(tag) for tag in decode_list_column(value)], "raw_text": None}
    return {
        "tags": [
            str(tag)
            for tag in decode_list_column(
                value.get("tags") or value.get("entity_types") or value.get("applicant_types")
            )
        ],
        "raw_text": value.get("raw_text") or value.get("text") or value.get("description"),
    }


def grant_row_to_data(row: Grant) -> GrantData:
    """
    Convert a grant row into GrantData.

    Raises:
        pydantic.ValidationError: If the row cannot form a valid grant.
    """
    return GrantData.model_validate({
        "id": row.id,
        "title": row.title,
        "sponsor": row.agency or "",
        "summary": row.summary,
        "description": row.description,
        "categories": [str(category) for category in decode_list_column(row.categories)],
        "eligibility": decode_eligibility(row.eligibility),
        "locations": decode_list_column(row.locations),
        "amount_min": row.amount_min,
        "amount_max": row.amount_max,
        "amount_text": row.amount_text,
        "funding_type": row.funding_type,
        "purpose_tags": [str(tag) for tag in decode_list_column(row.purpose_tags)],
        "deadline_date": row.deadline,
        "status": row.status or "open",
        "quality_score": row.quality_score if row.quality_score is not None else 50.0,
        "url": row.url or "",
        "updated_at": row.updated_at,
    })


def _available_in_state(grant: GrantData, state: str) -> bool:
    """Coarse prefilter; regions and unresolved values are left to the eligibility engine."""
    if not grant.locations:
        return True
    for location in grant.locations:
        if location.is_national or location.type != GeographyScope.STATE:
            return True
        if location.state_code == state or location.state_code is None:
            return True
    return False


# =============================================================================
# Grants
# =============================================================================


async def load_grants(
    session: AsyncSession,
    status: Optional[str] = "open",
    state: Optional[str] = None,
    limit: int = 300,
) -> list[GrantData]:
    """
    Load the candidate grant pool.

    Args:
        session: Database session.
        status: Only grants with this status; None for all.
        state: Optional state code or name used to drop grants limited to other states.
        limit: Maximum number of grants returned.

    Returns:
        Valid grants; malformed rows are skipped with a warning.
    """
    stmt = select(Grant)
    if status:
        stmt = stmt.where(Grant.status == status)
    stmt = stmt.order_by(Grant.created_at.desc(), Grant.id)

    state_code = normalize_state(state) if state else None
    # Over-fetch when filtering by state so the limit applies after the filter.
    stmt = stmt.limit(limit * 3 if state_code else limit)

    result = await session.execute(stmt)

    grants = []
    skipped = 0
    for row in result.scalars():
        try:
            grant = grant_row_to_data(row)
        except PydanticValidationError as e:
            skipped += 1
            logger.warning(f"Skipping malformed grant {row.id}: {e.error_count()} validation errors")
            continue
        except (TypeError, ValueError) as e:
            skipped += 1
            logger.warning(f"Skipping malformed grant {row.id}: {e}")
            continue
        if state_code and not _available_in_state(grant, state_code):
            continue
        grants.append(grant)
        if len(grants) >= limit:
            break

    logger.info(f"Loaded {len(grants)} grants (status={status}, state={state_code}, skipped={skipped})")
    return grants


# =============================================================================
# Profiles
# =============================================================================


def profile_row_to_model(row: OrganizationProfile) -> UserProfile:
    preferences = decode_json_column(row.grant_preferences)
    try:
        grant_preferences = GrantPreferences.model_validate(preferences) if preferences else None
    except PydanticValidationError:
        logger.warning(f"Ignoring invalid grant preferences for user {row.user_id}")
        grant_preferences = None

    data = {
        "user_id": row.user_id,
        "entity_type": row.entity_type,
        "country": row.country or "US",
        "state": row.state,
        "industry_tags": decode_list_column(row.industry_tags),
        "size_band": row.size_band,
        "stage": row.stage,
        "annual_budget": row.annual_budget,
        "goals": [str(goal) for goal in decode_list_column(row.goals)],
        "grant_preferences": grant_preferences,
        "profile_version": row.profile_version or 1,
        "confidence_score": row.confidence_score,
    }
    try:
        return UserProfile.model_validate(data)
    except PydanticValidationError as e:
        # Unknown band values from older onboarding flows degrade to unset.
        invalid = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
        logger.warning(f"Dropping invalid profile fields for user {row.user_id}: {sorted(invalid)}")
        return UserProfile.model_validate({key: value for key, value in data.items() if key not in invalid})


async def _get_profile_row(session: AsyncSession, user_id: str) -> Optional[OrganizationProfile]:
    result = await session.execute(select(OrganizationProfile).where(OrganizationProfile.user_id == user_id))
    return result.scalar_one_or_none()


async def load_user_profile(session: AsyncSession, user_id: str) -> Optional[UserProfile]:
    """Load a user's matching profile, or None if they have not created one."""
    row = await _get_profile_row(session, user_id)
    if row is None:
        return None
    return profile_row_to_model(row)


def _normalized(field: str, value: Any) -> Any:
    value = decode_json_column(value)
    if field in ("industry_tags", "goals"):
        return sorted(str(item) for item in decode_list_column(value))
    if field == "state" and value:
        return normalize_state(str(value)) or value
    return value


async def apply_profile_update(
    session: AsyncSession,
    user_id: str,
    changes: dict[str, Any],
) -> UserProfile:
    """
    Apply profile changes and bump profile_version when matching fields change.

    Raises:
        NotFoundError: If the user has no profile.
        ValidationError: If changes include fields that cannot be updated.
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update profile fields: {', '.join(sorted(unknown))}")

    row = await _get_profile_row(session, user_id)
    if row is None:
        raise NotFoundError("Profile", user_id)

    changed = [
        field
        for field, value in changes.items()
        if field in MATCHING_FIELDS and _normalized(field, value) != _normalized(field, getattr(row, field))
    ]

    for field, value in changes.items():
        setattr(row, field, value)

    if changed:
        row.profile_version = (row.profile_version or 1) + 1
        profile = profile_row_to_model(row)
        if "confidence_score" not in changes:
            row.confidence_score = round(profile.completeness / _PROFILE_COMPLETENESS_FIELDS, 2)
        logger.info(f"Profile for user {user_id} changed ({', '.join(sorted(changed))}); now v{row.profile_version}")

    await session.flush()
    return profile_row_to_model(row)
