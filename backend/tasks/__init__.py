"""
GrantMatch Celery Tasks

Task Modules:
    - cleanup: Match cache maintenance

Queue Priorities:
    - normal: Periodic maintenance

Usage:
    from backend.tasks import cleanup

    # Sweep expired and orphaned match cache entries now
    cleanup.cleanup_match_cache.delay()
"""

# Task modules are auto-discovered by Celery via celery_app.py include config
__all__ = [
    "cleanup",
]
