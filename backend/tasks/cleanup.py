"""
GrantMatch Cleanup Tasks

Periodic maintenance of the match cache.

Tasks:
    - cleanup_match_cache: Daily sweep of expired and orphaned cache entries

Queue: normal
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.celery_app import celery_app
from backend.database import get_sync_db
from backend.models import Grant, GrantMatchCache, User

logger = logging.getLogger(__name__)


def sweep_match_cache(db: Session, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Delete expired cache entries and entries whose grant or user is gone.

    Each step commits on its own; a failing step is rolled back, recorded in
    the returned errors, and the sweep continues.

    Args:
        db: Synchronous database session.
        now: Reference time for expiry.

    Returns:
        dict with expired_deleted, orphaned_deleted, total_cache_entries,
        errors and duration_ms.
    """
    started = time.perf_counter()
    now = now or datetime.now(timezone.utc)
    stats: dict[str, Any] = {
        "expired_deleted": 0,
        "orphaned_deleted": 0,
        "total_cache_entries": 0,
        "errors": [],
        "duration_ms": 0.0,
    }

    # =====================================================================
    # 1. Expired entries
    # =====================================================================
    try:
        result = db.execute(
            delete(GrantMatchCache)
            .where(GrantMatchCache.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        stats["expired_deleted"] = result.rowcount or 0
        db.commit()
        logger.info(f"Deleted {stats['expired_deleted']} expired match cache entries")
    except SQLAlchemyError as e:
        db.rollback()
        error_msg = f"Failed to delete expired match cache entries: {e}"
        logger.error(error_msg, exc_info=True)
        stats["errors"].append(error_msg)

    # =====================================================================
    # 2. Orphans (grant or user deleted)
    # =====================================================================
    try:
        orphaned_grants = db.execute(
            delete(GrantMatchCache)
            .where(GrantMatchCache.grant_id.not_in(select(Grant.id)))
            .execution_options(synchronize_session=False)
        )
        orphaned_users = db.execute(
            delete(GrantMatchCache)
            .where(GrantMatchCache.user_id.not_in(select(User.id)))
            .execution_options(synchronize_session=False)
        )
        stats["orphaned_deleted"] = (orphaned_grants.rowcount or 0) + (orphaned_users.rowcount or 0)
        db.commit()
        logger.info(f"Deleted {stats['orphaned_deleted']} orphaned match cache entries")
    except SQLAlchemyError as e:
        db.rollback()
        error_msg = f"Failed to delete orphaned match cache entries: {e}"
        logger.error(error_msg, exc_info=True)
        stats["errors"].append(error_msg)

    # =====================================================================
    # 3. Remaining size
    # =====================================================================
    try:
        stats["total_cache_entries"] = db.scalar(select(func.count()).select_from(GrantMatchCache)) or 0
    except SQLAlchemyError as e:
        db.rollback()
        error_msg = f"Failed to count match cache entries: {e}"
        logger.error(error_msg, exc_info=True)
        stats["errors"].append(error_msg)

    stats["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return stats


@celery_app.task(
    name="backend.tasks.cleanup.cleanup_match_cache",
    queue="normal",
    soft_time_limit=600,  # 10 minutes
    time_limit=900,  # 15 minutes
)
def cleanup_match_cache() -> dict[str, Any]:
    """
    Daily sweep of the match cache.

    Returns:
        dict: Sweep statistics.
    """
    logger.info("Starting match cache sweep")
    db = get_sync_db()
    try:
        stats = sweep_match_cache(db)
    finally:
        db.close()

    logger.info(
        f"Match cache sweep complete: {stats['expired_deleted']} expired, "
        f"{stats['orphaned_deleted']} orphaned, {stats['total_cache_entries']} remaining, "
        f"{len(stats['errors'])} errors"
    )
    return stats
