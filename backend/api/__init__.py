"""
GrantMatch API Routers
FastAPI router modules for grant matching.
"""
from backend.api import debug, matching

__all__ = [
    "debug",
    "matching",
]
