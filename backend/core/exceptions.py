"""
Custom Exception Classes for GrantMatch.

HTTP exceptions give API endpoints consistent error responses. Matching
exceptions are raised by the pipeline and its collaborators; only
PipelineInputError is meant to reach a caller.
"""
from fastapi import HTTPException, status


# =============================================================================
# HTTP Exceptions
# =============================================================================


class NotFoundError(HTTPException):
    """Exception raised when a requested resource is not found."""

    def __init__(self, resource: str, id: str = None):
        detail = f"{resource} not found" + (f": {id}" if id else "")
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthorizationError(HTTPException):
    """Exception raised when a user is not authorized to access a resource."""

    def __init__(self, message: str = "Not authorized to access this resource"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=message)


class ValidationError(HTTPException):
    """Exception raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


# =============================================================================
# Matching Exceptions
# =============================================================================


class MatchingError(Exception):
    """Base class for matching pipeline errors."""


class PipelineInputError(MatchingError):
    """Raised when the profile or candidate grant pool is missing entirely."""


class AIAnalysisError(MatchingError):
    """Raised when the AI analysis service returns an unusable response."""


class AIBudgetExceededError(AIAnalysisError):
    """Raised when a user has used up their AI analysis budget."""

    def __init__(self, user_id: str, retry_after: int):
        self.user_id = user_id
        self.retry_after = retry_after
        super().__init__(f"AI analysis budget exhausted for user {user_id}; retry in {retry_after}s")
