"""
Matching Pydantic Models
Typed records for the grant matching pipeline.

Profiles and grants are validated once at construction time so the engines
can assume well-formed input. Results are plain records recomputed on every
pipeline run.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .taxonomy import (
    NATIONAL_LOCATION_VALUES,
    BudgetRange,
    ConfidenceLevel,
    EntityType,
    GeographyScope,
    IndustryTag,
    MatchTier,
    SizeBand,
    Stage,
    format_funding_display,
    normalize_state,
    normalize_tag,
)


_INDUSTRY_VALUES = frozenset(tag.value for tag in IndustryTag)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================


class GrantStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    FORECASTED = "forecasted"


_STATUS_ALIASES = {
    "active": GrantStatus.OPEN,
    "posted": GrantStatus.OPEN,
    "archived": GrantStatus.CLOSED,
    "expired": GrantStatus.CLOSED,
    "forecast": GrantStatus.FORECASTED,
}


class EligibilityFilter(str, Enum):
    """Eligibility filters, in the order they run."""

    URL_EXISTS = "URL_EXISTS"
    GRANT_STATUS = "GRANT_STATUS"
    ENTITY_TYPE = "ENTITY_TYPE"
    GEOGRAPHY = "GEOGRAPHY"
    INDUSTRY_RELEVANCE = "INDUSTRY_RELEVANCE"


class EligibilityStatus(str, Enum):
    """AI-assessed eligibility."""

    ELIGIBLE = "eligible"
    LIKELY_ELIGIBLE = "likely_eligible"
    UNCERTAIN = "uncertain"
    NOT_ELIGIBLE = "not_eligible"


class AppliesToUser(str, Enum):
    YES = "yes"
    LIKELY = "likely"
    UNCERTAIN = "uncertain"
    NO = "no"


class SortBy(str, Enum):
    BEST_MATCH = "best_match"
    DEADLINE = "deadline"
    HIGHEST_FUNDING = "highest_funding"


# =============================================================================
# Profile
# =============================================================================


class GrantPreferences(BaseModel):
    """Optional soft preferences captured during onboarding."""

    preferred_size: Optional[Literal["micro", "small", "medium", "large", "any"]] = None
    timeline: Optional[Literal["immediate", "quarter", "year", "flexible"]] = None
    complexity: Optional[Literal["simple", "moderate", "complex"]] = None


class UserProfile(BaseModel):
    """
    Organizational profile used as matching input.

    Missing entity_type or industry_tags is allowed; the engines degrade
    confidence instead of failing.
    """

    user_id: Optional[str] = Field(default=None, description="Owning user identifier")
    entity_type: Optional[EntityType] = Field(
        default=None,
        description="Applicant organization category",
    )
    country: str = Field(default="US", description="ISO country code")
    state: Optional[str] = Field(
        default=None,
        description="USPS state code (names are normalized to codes)",
    )
    industry_tags: frozenset[IndustryTag] = Field(
        default_factory=frozenset,
        description="Focus areas; unknown tags are dropped",
    )
    size_band: Optional[SizeBand] = None
    stage: Optional[Stage] = None
    annual_budget: Optional[BudgetRange] = None
    goals: list[str] = Field(
        default_factory=list,
        description="Funding goals (equipment, expansion, workforce, ...)",
    )
    grant_preferences: Optional[GrantPreferences] = None
    profile_version: int = Field(
        default=1,
        ge=1,
        description="Bumped whenever a matching-relevant field changes",
    )
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("entity_type", mode="before")
    @classmethod
    def _coerce_entity_type(cls, value: Any) -> Any:
        if value is None or isinstance(value, EntityType):
            return value
        candidate = normalize_tag(str(value)).replace(" ", "_")
        try:
            return EntityType(candidate)
        except ValueError:
            return None

    @field_validator("state", mode="before")
    @classmethod
    def _normalize_state(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return normalize_state(str(value))

    @field_validator("industry_tags", mode="before")
    @classmethod
    def _drop_unknown_tags(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        tags = set()
        for raw in value:
            candidate = normalize_tag(str(raw)).replace(" ", "_")
            if candidate in _INDUSTRY_VALUES:
                tags.add(IndustryTag(candidate))
        return frozenset(tags)

    @property
    def is_sparse(self) -> bool:
        """True when entity type or industry tags are missing."""
        return self.entity_type is None or not self.industry_tags

    @property
    def completeness(self) -> int:
        """Number of populated matching-relevant fields."""
        return sum(
            1
            for filled in (
                self.entity_type is not None,
                self.state is not None,
                bool(self.industry_tags),
                self.size_band is not None,
                self.annual_budget is not None,
                bool(self.goals),
            )
            if filled
        )


# =============================================================================
# Grant
# =============================================================================


class GrantEligibility(BaseModel):
    tags: list[str] = Field(default_factory=list, description="Entity-type-like labels")
    raw_text: Optional[str] = Field(default=None, description="Free-text eligibility criteria")


class GrantLocation(BaseModel):
    type: GeographyScope
    value: Optional[str] = None

    @field_validator("value")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else value

    @property
    def is_national(self) -> bool:
        if self.type == GeographyScope.NATIONAL:
            return True
        return bool(self.value) and self.value.lower() in NATIONAL_LOCATION_VALUES

    @property
    def state_code(self) -> Optional[str]:
        if self.type != GeographyScope.STATE:
            return None
        return normalize_state(self.value)

    @classmethod
    def parse(cls, raw: Any) -> "GrantLocation":
        """Build a location from a string, a dict, or an existing location."""
        if isinstance(raw, GrantLocation):
            return raw
        if isinstance(raw, dict):
            if "type" not in raw and raw.get("state"):
                return cls(type=GeographyScope.STATE, value=raw["state"])
            return cls.model_validate(raw)
        text = str(raw).strip()
        if text.lower() in NATIONAL_LOCATION_VALUES:
            return cls(type=GeographyScope.NATIONAL)
        if normalize_state(text):
            return cls(type=GeographyScope.STATE, value=normalize_state(text))
        return cls(type=GeographyScope.REGION, value=text)


class GrantData(BaseModel):
    """
    Grant opportunity as seen by the matching engines.

    Serialized storage formats are decoded by the data source adapter;
    this model only accepts structured values.
    """

    id: str = Field(..., min_length=1, description="Grant identifier")
    title: str = Field(..., min_length=1, description="Grant title")
    sponsor: str = Field(default="", description="Funding organization")
    summary: Optional[str] = None
    description: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    eligibility: GrantEligibility = Field(default_factory=GrantEligibility)
    locations: list[GrantLocation] = Field(default_factory=list)
    amount_min: Optional[float] = Field(default=None, ge=0)
    amount_max: Optional[float] = Field(default=None, ge=0)
    amount_text: Optional[str] = None
    funding_type: Optional[str] = None
    purpose_tags: list[str] = Field(default_factory=list)
    deadline_date: Optional[datetime] = Field(default=None, description="None means rolling")
    status: GrantStatus = GrantStatus.OPEN
    quality_score: float = Field(default=50.0, ge=0.0, le=100.0)
    url: str = ""
    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last content change; used as the cache freshness fingerprint",
    )

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("eligibility", mode="before")
    @classmethod
    def _coerce_eligibility(cls, value: Any) -> Any:
        if value is None:
            return GrantEligibility()
        if isinstance(value, (list, tuple)):
            return GrantEligibility(tags=[str(tag) for tag in value])
        if isinstance(value, (dict, GrantEligibility)):
            return value
        raise ValueError(f"eligibility must be a list of labels or an object, not {type(value).__name__}")

    @field_validator("locations", mode="before")
    @classmethod
    def _coerce_locations(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"locations must be a list, not {type(value).__name__}")
        return [GrantLocation.parse(item) for item in value]

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _STATUS_ALIASES.get(lowered, lowered)
        return value

    @field_validator("deadline_date", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def is_rolling(self) -> bool:
        return self.deadline_date is None

    @property
    def funding_display(self) -> str:
        return format_funding_display(self.amount_min, self.amount_max, self.amount_text)

    def searchable_text(self) -> str:
        """Lowercased title, sponsor, summary, description, categories and eligibility tags."""
        parts = [
            self.title,
            self.sponsor,
            self.summary or "",
            self.description or "",
            " ".join(self.categories),
            " ".join(self.eligibility.tags),
        ]
        return " ".join(parts).lower()


# =============================================================================
# Eligibility Results
# =============================================================================


class FilterOutcome(BaseModel):
    filter: EligibilityFilter
    passed: bool
    reason: str
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH


class EligibilityResult(BaseModel):
    """Verdict of the eligibility filters for one (profile, grant) pair."""

    is_eligible: bool
    confidence_level: ConfidenceLevel
    passed_filters: list[EligibilityFilter] = Field(default_factory=list)
    failed_filters: list[EligibilityFilter] = Field(default_factory=list)
    filter_results: list[FilterOutcome] = Field(default_factory=list)
    primary_reason: str = ""
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class IneligibleGrant(BaseModel):
    grant: GrantData
    reason: str
    result: EligibilityResult


class EligibilityStats(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    errored: int = 0
    by_filter: dict[str, int] = Field(default_factory=dict)


class EligibilityBatch(BaseModel):
    eligible: list[GrantData] = Field(default_factory=list)
    ineligible: list[IneligibleGrant] = Field(default_factory=list)
    results: dict[str, EligibilityResult] = Field(default_factory=dict)
    stats: EligibilityStats = Field(default_factory=EligibilityStats)


# =============================================================================
# Scoring Results
# =============================================================================


class ScoreBreakdown(BaseModel):
    """Per-factor points. Each factor is bounded by its weight."""

    entity_match: float = 0.0
    industry_match: float = 0.0
    geography_match: float = 0.0
    budget_match: float = 0.0
    purpose_match: float = 0.0
    preferences_match: float = 0.0
    quality_cap: Optional[int] = Field(
        default=None,
        description="Score ceiling applied because of low listing quality",
    )


class ScoreResult(BaseModel):
    total_score: int = Field(..., ge=0, le=100)
    tier: MatchTier
    tier_label: str
    breakdown: ScoreBreakdown
    match_reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW


class ScoredGrant(BaseModel):
    grant: GrantData
    score: ScoreResult


class RelevanceResult(BaseModel):
    """Search-time fusion of eligibility and scoring."""

    relevance_score: int = Field(..., ge=0, le=100)
    is_eligible: bool
    eligibility_reason: Optional[str] = None
    confidence_level: ConfidenceLevel
    match_reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    breakdown: Optional[ScoreBreakdown] = None


# =============================================================================
# AI Analysis
# =============================================================================


class MatchAnalysis(BaseModel):
    """Structured match explanation from the AI analysis service."""

    match_score: int = Field(..., ge=0, le=100)
    eligibility_status: EligibilityStatus = EligibilityStatus.UNCERTAIN
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    fit_summary: str = ""
    why_match: str = ""
    next_steps: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    what_you_can_fund: list[str] = Field(default_factory=list)
    urgency: Literal["high", "medium", "low"] = "low"

    @field_validator("match_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return max(0, min(100, round(value)))
        return value


# =============================================================================
# Pipeline
# =============================================================================


class PipelineOptions(BaseModel):
    limit: int = Field(default=20, ge=1, le=200)
    min_score: int = Field(default=30, ge=0, le=100)
    sort_by: SortBy = SortBy.BEST_MATCH
    use_cache: bool = True
    use_ai: bool = True
    include_debug: bool = False
    debug_trace_size: Optional[int] = Field(default=None, ge=0)


class RankedGrant(BaseModel):
    """A grant in the final ranked output."""

    grant: GrantData
    match_score: int = Field(..., ge=0, le=100)
    deterministic_score: int = Field(..., ge=0, le=100)
    ai_score: Optional[int] = None
    tier: MatchTier
    tier_label: str
    applies_to_user: AppliesToUser
    eligibility_assessment: EligibilityResult
    score: ScoreResult
    ai_analysis: Optional[MatchAnalysis] = None
    from_cache: bool = False
    funding_display: str
    deadline_display: str


class PipelineStats(BaseModel):
    fetched: int = 0
    invalid: int = 0
    eligible: int = 0
    ineligible: int = 0
    after_scoring: int = 0
    above_min_score: int = 0
    returned: int = 0
    from_cache: int = 0
    from_ai: int = 0
    ai_fallback: bool = False
    by_tier: dict[str, int] = Field(default_factory=dict)
    by_applies: dict[str, int] = Field(default_factory=dict)


class GrantTrace(BaseModel):
    grant_id: str
    title: str
    url: str
    eligibility: EligibilityResult
    score: Optional[ScoreResult] = None


class PipelineDebug(BaseModel):
    eligibility_stats: EligibilityStats
    scoring_distribution: dict[str, int]
    cache_hit_rate: float
    processing_time_ms: float
    timings: dict[str, float] = Field(default_factory=dict)
    traces: list[GrantTrace] = Field(default_factory=list)
    ai_error: Optional[str] = None


class PipelineResult(BaseModel):
    grants: list[RankedGrant] = Field(default_factory=list)
    stats: PipelineStats = Field(default_factory=PipelineStats)
    debug: Optional[PipelineDebug] = None
