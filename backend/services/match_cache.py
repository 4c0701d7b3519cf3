"""
Match Cache Service

Persists AI match analyses per (user, grant) so repeat discovery requests skip
the AI call. An entry is only served while it is unexpired, was computed for
the current profile_version, and is at least as new as the grant's
updated_at. Every database failure is logged and treated as a miss.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agents.matching.models import GrantData, MatchAnalysis
from backend.core.config import settings
from backend.models import GrantMatchCache

logger = logging.getLogger(__name__)

# Concurrent lookups per batch; bounded by the connection pool.
LOOKUP_CONCURRENCY = 10

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_KEY_COLUMNS = ("user_id", "grant_id")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Conversion Helpers
# =============================================================================


def match_analysis_to_cache_data(
    user_id: str,
    grant: GrantData,
    analysis: MatchAnalysis,
    profile_version: int,
    ttl_days: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Column values for a cache row."""
    now = now or datetime.now(timezone.utc)
    return {
        "user_id": user_id,
        "grant_id": grant.id,
        "profile_version": profile_version,
        "grant_updated_at": grant.updated_at,
        "match_score": analysis.match_score,
        "eligibility_status": analysis.eligibility_status.value,
        "confidence": analysis.confidence.value,
        "fit_summary": analysis.fit_summary,
        "why_match": analysis.why_match,
        "next_steps": list(analysis.next_steps),
        "concerns": list(analysis.concerns),
        "what_you_can_fund": list(analysis.what_you_can_fund),
        "urgency": analysis.urgency,
        "created_at": now,
        "expires_at": now + timedelta(days=ttl_days),
    }


def cache_data_to_match_result(entry: GrantMatchCache) -> MatchAnalysis:
    return MatchAnalysis(
        match_score=entry.match_score,
        eligibility_status=entry.eligibility_status,
        confidence=entry.confidence,
        fit_summary=entry.fit_summary or "",
        why_match=entry.why_match or "",
        next_steps=entry.next_steps or [],
        concerns=entry.concerns or [],
        what_you_can_fund=entry.what_you_can_fund or [],
        urgency=entry.urgency,
    )


def is_entry_fresh(
    entry: GrantMatchCache,
    profile_version: int,
    grant_updated_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Whether a cached entry may be served for the current profile and grant."""
    if _as_utc(entry.expires_at) <= now:
        return False
    if entry.profile_version != profile_version:
        return False
    if grant_updated_at is not None:
        cached_at = _as_utc(entry.grant_updated_at)
        if cached_at is None or cached_at < _as_utc(grant_updated_at):
            return False
    return True


# =============================================================================
# Match Cache
# =============================================================================


class MatchCache:
    """
    Database-backed cache of AI match analyses.

    Each lookup uses its own session so batch lookups can run concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_days: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.ttl_days = ttl_days if ttl_days is not None else settings.match_cache_ttl_days

    async def get_cached_match(
        self,
        user_id: str,
        grant_id: str,
        profile_version: int,
        grant_updated_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[MatchAnalysis]:
        """
        Look up a fresh cached analysis.

        Returns:
            The cached analysis, or None on a miss, a stale entry, or a database error.
        """
        now = now or datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(GrantMatchCache).where(
                        GrantMatchCache.user_id == user_id,
                        GrantMatchCache.grant_id == grant_id,
                    )
                )
                entry = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"Match cache lookup failed for user {user_id}, grant {grant_id}: {e}")
            return None

        if entry is None or not is_entry_fresh(entry, profile_version, grant_updated_at, now):
            return None
        return cache_data_to_match_result(entry)

    async def get_cached_matches(
        self,
        user_id: str,
        grants: Sequence[GrantData],
        profile_version: int,
        now: Optional[datetime] = None,
    ) -> dict[str, Optional[MatchAnalysis]]:
        """
        Look up many grants concurrently.

        Returns:
            Analyses (or None for misses) keyed by grant id, in input order.
        """
        semaphore = asyncio.Semaphore(LOOKUP_CONCURRENCY)

        async def lookup(grant: GrantData) -> Optional[MatchAnalysis]:
            async with semaphore:
                return await self.get_cached_match(user_id, grant.id, profile_version, grant.updated_at, now)

        results = await asyncio.gather(*(lookup(grant) for grant in grants))
        hits = sum(1 for result in results if result is not None)
        logger.debug(f"Match cache: {hits}/{len(grants)} hits for user {user_id}")
        return {grant.id: result for grant, result in zip(grants, results)}

    async def _upsert(self, session: AsyncSession, values: dict[str, Any]) -> None:
        insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if insert is None:
            await session.execute(
                delete(GrantMatchCache).where(
                    GrantMatchCache.user_id == values["user_id"],
                    GrantMatchCache.grant_id == values["grant_id"],
                )
            )
            session.add(GrantMatchCache(**values))
            return

        stmt = insert(GrantMatchCache).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY_COLUMNS),
            set_={name: stmt.excluded[name] for name in values if name not in _KEY_COLUMNS},
        )
        await session.execute(stmt)

    async def set_cached_match(
        self,
        user_id: str,
        grant: GrantData,
        analysis: MatchAnalysis,
        profile_version: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """Insert or replace the entry for (user, grant). Returns False on failure."""
        return await self.set_cached_matches(user_id, profile_version, [(grant, analysis)], now) == 1

    async def set_cached_matches(
        self,
        user_id: str,
        profile_version: int,
        items: Sequence[tuple[GrantData, MatchAnalysis]],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Upsert several analyses in one transaction.

        Returns:
            Number of entries written (0 on failure).
        """
        if not items:
            return 0

        async with self.session_factory() as session:
            try:
                for grant, analysis in items:
                    values = match_analysis_to_cache_data(
                        user_id, grant, analysis, profile_version, self.ttl_days, now
                    )
                    await self._upsert(session, values)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.warning(f"Failed to cache {len(items)} match analyses for user {user_id}: {e}")
                return 0

        logger.debug(f"Cached {len(items)} match analyses for user {user_id}")
        return len(items)

    async def _delete_where(self, *criteria) -> int:
        async with self.session_factory() as session:
            try:
                result = await session.execute(delete(GrantMatchCache).where(*criteria))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Match cache invalidation failed: {e}", exc_info=True)
                return 0
        return result.rowcount or 0

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached analysis for a user."""
        deleted = await self._delete_where(GrantMatchCache.user_id == user_id)
        logger.info(f"Invalidated {deleted} cached matches for user {user_id}")
        return deleted

    async def invalidate_grant(self, grant_id: str) -> int:
        """Drop every cached analysis for a grant."""
        deleted = await self._delete_where(GrantMatchCache.grant_id == grant_id)
        logger.info(f"Invalidated {deleted} cached matches for grant {grant_id}")
        return deleted

    async def get_stats(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(GrantMatchCache))
                expired = await session.scalar(
                    select(func.count()).select_from(GrantMatchCache).where(GrantMatchCache.expires_at <= now)
                )
                users = await session.scalar(select(func.count(func.distinct(GrantMatchCache.user_id))))
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read match cache stats: {e}")
            return {"total_entries": 0, "active_entries": 0, "expired_entries": 0, "unique_users": 0}

        return {
            "total_entries": total or 0,
            "active_entries": (total or 0) - (expired or 0),
            "expired_entries": expired or 0,
            "unique_users": users or 0,
        }
