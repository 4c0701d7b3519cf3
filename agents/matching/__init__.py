"""
Matching Agent Module
Rule-based grant eligibility, weighted scoring, and ranked discovery.
"""
from .analyzer import MatchAnalyzer, create_fallback_analysis
from .eligibility import filter_eligible_grants, run_eligibility_engine
from .models import (
    EligibilityBatch,
    EligibilityResult,
    GrantData,
    MatchAnalysis,
    PipelineOptions,
    PipelineResult,
    RankedGrant,
    RelevanceResult,
    ScoreResult,
    UserProfile,
)
from .pipeline import run_discovery_pipeline
from .relevance import (
    MIN_RELEVANCE_SCORE,
    calculate_relevance,
    filter_and_sort_by_relevance,
    get_relevance_tier,
)
from .scoring import calculate_score, explain_score, get_top_grants, score_and_sort_grants

__all__ = [
    # Pipeline
    "run_discovery_pipeline",
    # Eligibility
    "filter_eligible_grants",
    "run_eligibility_engine",
    # Scoring
    "calculate_score",
    "explain_score",
    "get_top_grants",
    "score_and_sort_grants",
    # Relevance
    "MIN_RELEVANCE_SCORE",
    "calculate_relevance",
    "filter_and_sort_by_relevance",
    "get_relevance_tier",
    # AI Analysis
    "MatchAnalyzer",
    "create_fallback_analysis",
    # Models
    "EligibilityBatch",
    "EligibilityResult",
    "GrantData",
    "MatchAnalysis",
    "PipelineOptions",
    "PipelineResult",
    "RankedGrant",
    "RelevanceResult",
    "ScoreResult",
    "UserProfile",
]
