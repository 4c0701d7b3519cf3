"""
Backend services for the matching pipeline's storage collaborators.
"""

from backend.services.data_sources import (
    apply_profile_update,
    load_grants,
    load_user_profile,
)
from backend.services.match_cache import MatchCache

__all__ = [
    # Grant and profile data sources
    "apply_profile_update",
    "load_grants",
    "load_user_profile",
    # Match cache
    "MatchCache",
]
