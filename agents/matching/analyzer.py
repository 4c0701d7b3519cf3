"""
AI Match Analyzer
Explains and re-scores top candidates with Claude.

The analyzer is strictly optional: the pipeline bounds every call with a
timeout and falls back to deterministic scores when it raises.
"""

import json
import re
from typing import Optional, Sequence

import anthropic
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from backend.core.config import settings
from backend.core.exceptions import AIAnalysisError, AIBudgetExceededError
from backend.core.rate_limit import AIAnalysisBudget

from .models import EligibilityStatus, GrantData, MatchAnalysis, UserProfile
from .taxonomy import ENTITY_TYPE_LABELS, INDUSTRY_LABELS, ConfidenceLevel

logger = structlog.get_logger().bind(agent="analyzer")

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

FALLBACK_SUMMARY = "Unable to generate AI analysis. Review the grant details to confirm fit."


def create_fallback_analysis() -> MatchAnalysis:
    """Neutral, low-confidence analysis used when the AI service is unavailable."""
    return MatchAnalysis(
        match_score=50,
        eligibility_status=EligibilityStatus.UNCERTAIN,
        confidence=ConfidenceLevel.LOW,
        fit_summary=FALLBACK_SUMMARY,
        next_steps=["Review the full eligibility requirements on the sponsor's site"],
    )


def profile_to_prompt_text(profile: UserProfile) -> str:
    lines = []
    if profile.entity_type:
        lines.append(f"Organization type: {ENTITY_TYPE_LABELS[profile.entity_type]}")
    if profile.state:
        lines.append(f"Location: {profile.state}, {profile.country}")
    if profile.industry_tags:
        labels = sorted(INDUSTRY_LABELS[tag] for tag in profile.industry_tags)
        lines.append(f"Focus areas: {', '.join(labels)}")
    if profile.size_band:
        lines.append(f"Organization size: {profile.size_band.value}")
    if profile.stage:
        lines.append(f"Stage: {profile.stage.value}")
    if profile.annual_budget:
        lines.append(f"Annual budget: {profile.annual_budget.value}")
    if profile.goals:
        lines.append(f"Funding goals: {', '.join(profile.goals)}")
    return "\n".join(lines) or "No profile details provided"


def grant_to_prompt_text(grant: GrantData) -> str:
    lines = [
        f"Grant ID: {grant.id}",
        f"Title: {grant.title}",
        f"Sponsor: {grant.sponsor or 'Unknown'}",
        f"Funding: {grant.funding_display}",
        f"Deadline: {grant.deadline_date.date().isoformat() if grant.deadline_date else 'Rolling'}",
    ]
    if grant.categories:
        lines.append(f"Categories: {', '.join(grant.categories)}")
    if grant.eligibility.tags:
        lines.append(f"Eligible applicants: {', '.join(grant.eligibility.tags)}")
    if grant.eligibility.raw_text:
        lines.append(f"Eligibility details: {grant.eligibility.raw_text[:500]}")
    if grant.summary:
        lines.append(f"Summary: {grant.summary[:800]}")
    return "\n".join(lines)


def parse_analysis_response(response_text: str, grant_ids: Sequence[str]) -> dict[str, MatchAnalysis]:
    """
    Parse the model's JSON array into analyses keyed by grant id.

    The array may be bare or wrapped in a markdown code fence. Items for
    unknown grants or with invalid fields are dropped.

    Raises:
        AIAnalysisError: If the response is not a JSON array.
    """
    text = response_text.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        items = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIAnalysisError(f"AI response is not valid JSON: {e}") from e

    if not isinstance(items, list):
        raise AIAnalysisError("AI response is not a JSON array")

    known = set(grant_ids)
    analyses = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        grant_id = str(item.get("grant_id", ""))
        if grant_id not in known:
            continue
        try:
            analyses[grant_id] = MatchAnalysis.model_validate(item)
        except ValidationError as e:
            logger.warning("analysis_item_invalid", grant_id=grant_id, error=str(e))
    return analyses


class MatchAnalyzer:
    """
    Claude-backed match analysis.

    One request evaluates a batch of grants for a single profile. Each
    request spends one unit of the user's AI analysis budget.
    """

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        budget: Optional[AIAnalysisBudget] = None,
    ):
        self.client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.budget = budget or AIAnalysisBudget()

    def _build_prompt(self, profile: UserProfile, grants: Sequence[GrantData]) -> str:
        grants_text = "\n\n".join(
            f"--- Grant {i} ---\n{grant_to_prompt_text(grant)}" for i, grant in enumerate(grants, 1)
        )

        return f"""You are evaluating how well grant opportunities fit an applicant organization.

APPLICANT PROFILE:
{profile_to_prompt_text(profile)}

GRANTS TO EVALUATE:
{grants_text}

Return a JSON array with one object per grant, in the same order as provided:
[
  {{
    "grant_id": "<grant id>",
    "match_score": <0-100>,
    "eligibility_status": "eligible" | "likely_eligible" | "uncertain" | "not_eligible",
    "confidence": "high" | "medium" | "low",
    "fit_summary": "<one sentence>",
    "why_match": "<short explanation>",
    "next_steps": ["<step1>", ...],
    "concerns": ["<concern1>", ...],
    "what_you_can_fund": ["<use1>", ...],
    "urgency": "high" | "medium" | "low"
  }},
  ...
]

Scoring Guidelines:
- 80-100: Applicant clearly qualifies and the grant funds their core work
- 60-79: Applicant likely qualifies with good topical overlap
- 40-59: Partial fit or unclear eligibility
- 0-39: Poor fit or applicant is probably not eligible

Use "low" confidence when the listing lacks the details needed to judge.

Return ONLY the JSON array, no additional text."""

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((anthropic.APIConnectionError, anthropic.RateLimitError)),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "llm_api_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,
        ),
    )
    async def _create_message(self, prompt: str) -> str:
        response = await self.client.messages.create(
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            messages=[
                {"role": "user", "content": prompt},
            ],
        )
        return response.content[0].text

    async def analyze(self, profile: UserProfile, grants: Sequence[GrantData]) -> dict[str, MatchAnalysis]:
        """
        Analyze a batch of grants for one profile.

        Returns:
            Analyses keyed by grant id. Grants the model skipped are absent.

        Raises:
            AIBudgetExceededError: If the user has no analyses left this window.
            AIAnalysisError: If the response cannot be parsed.
            anthropic.APIError: On API failures.
        """
        if not grants:
            return {}

        if profile.user_id:
            allowed, retry_after = await self.budget.consume(profile.user_id)
            if not allowed:
                logger.warning("ai_budget_exceeded", user_id=profile.user_id, retry_after=retry_after)
                raise AIBudgetExceededError(profile.user_id, retry_after)

        prompt = self._build_prompt(profile, grants)

        try:
            response_text = await self._create_message(prompt)
            analyses = parse_analysis_response(response_text, [grant.id for grant in grants])
        except AIAnalysisError as e:
            logger.error("llm_response_parse_error", user_id=profile.user_id, error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error("llm_api_error", user_id=profile.user_id, error=str(e))
            raise

        logger.info(
            "match_analysis_complete",
            user_id=profile.user_id,
            requested=len(grants),
            analyzed=len(analyses),
        )
        return analyses
