"""
FastAPI Dependencies
Shared dependencies for database access, matching collaborators, and admin checks.
"""
import secrets
from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from agents.matching.analyzer import MatchAnalyzer
from backend.core.config import settings
from backend.core.exceptions import AuthorizationError
from backend.database import AsyncSessionLocal, get_db
from backend.services.match_cache import MatchCache

# =============================================================================
# Database Dependency
# =============================================================================

AsyncSessionDep = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Matching Collaborators
# =============================================================================


def get_match_cache() -> MatchCache:
    """Match cache backed by the application session factory."""
    return MatchCache(AsyncSessionLocal)


def get_match_analyzer() -> Optional[MatchAnalyzer]:
    """AI analyzer, or None when no API key is configured."""
    if not settings.anthropic_api_key:
        return None
    return MatchAnalyzer()


MatchCacheDep = Annotated[MatchCache, Depends(get_match_cache)]
AnalyzerDep = Annotated[Optional[MatchAnalyzer], Depends(get_match_analyzer)]


# =============================================================================
# Admin Access
# =============================================================================


async def require_admin_key(
    x_admin_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Require the configured admin key in the X-Admin-Key header.

    Raises AuthorizationError when no key is configured or the header does not match.
    """
    # SECURITY: debug endpoints stay closed unless ADMIN_API_KEY is set
    if not settings.admin_api_key:
        raise AuthorizationError("Debug endpoints are disabled")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise AuthorizationError("Invalid or missing admin key")


AdminKeyDep = Depends(require_admin_key)
