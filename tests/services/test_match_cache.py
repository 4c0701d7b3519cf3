"""
Tests for the match cache service.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from agents.matching.models import EligibilityStatus
from backend.models import GrantMatchCache
from backend.services.match_cache import (
    MatchCache,
    cache_data_to_match_result,
    is_entry_fresh,
    match_analysis_to_cache_data,
)
from tests.fixtures.factories import GrantDataFactory, MatchAnalysisFactory, MatchCacheRowFactory


@pytest.fixture
def cache(session_factory):
    return MatchCache(session_factory, ttl_days=7)


class TestFreshness:
    """Tests for is_entry_fresh."""

    def test_fresh_entry(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", grant_updated_at=now - timedelta(days=2))
        assert is_entry_fresh(entry, 1, now - timedelta(days=2), now)

    def test_expired_entry(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", expires_at=now - timedelta(seconds=1))
        assert not is_entry_fresh(entry, 1, None, now)

    def test_profile_version_mismatch(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", profile_version=1)
        assert not is_entry_fresh(entry, 2, None, now)

    def test_grant_updated_after_analysis(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", grant_updated_at=now - timedelta(days=2))
        assert not is_entry_fresh(entry, 1, now - timedelta(hours=1), now)

    def test_missing_grant_timestamp_on_entry(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", grant_updated_at=None)
        assert not is_entry_fresh(entry, 1, now - timedelta(hours=1), now)

    def test_naive_database_timestamps(self, now):
        entry = MatchCacheRowFactory.create("u1", "g1", expires_at=(now + timedelta(days=1)).replace(tzinfo=None))
        assert is_entry_fresh(entry, 1, None, now)


class TestConversion:
    def test_cache_data_round_trip(self, now):
        grant = GrantDataFactory.create(id="g1", updated_at=now - timedelta(days=1))
        analysis = MatchAnalysisFactory.create(match_score=81, next_steps=["Apply early"])

        data = match_analysis_to_cache_data("u1", grant, analysis, 3, ttl_days=7, now=now)

        assert data["expires_at"] == now + timedelta(days=7)
        assert data["profile_version"] == 3
        assert data["eligibility_status"] == "eligible"
        assert cache_data_to_match_result(GrantMatchCache(**data)) == analysis


class TestMatchCache:
    """Tests for MatchCache against a database."""

    async def test_miss_then_hit(self, cache, now):
        grant = GrantDataFactory.create(id="g1")
        analysis = MatchAnalysisFactory.create(match_score=88)

        assert await cache.get_cached_match("u1", "g1", 1, now=now) is None
        assert await cache.set_cached_match("u1", grant, analysis, 1, now=now)

        cached = await cache.get_cached_match("u1", "g1", 1, now=now)
        assert cached.match_score == 88
        assert cached.eligibility_status == EligibilityStatus.ELIGIBLE

    async def test_upsert_replaces_entry(self, cache, session_factory, now):
        grant = GrantDataFactory.create(id="g1")
        await cache.set_cached_match("u1", grant, MatchAnalysisFactory.create(match_score=40), 1, now=now)
        await cache.set_cached_match("u1", grant, MatchAnalysisFactory.create(match_score=85), 2, now=now)

        async with session_factory() as session:
            rows = (await session.execute(select(GrantMatchCache))).scalars().all()

        assert len(rows) == 1
        assert rows[0].match_score == 85
        assert rows[0].profile_version == 2

    async def test_profile_change_is_a_miss(self, cache, now):
        grant = GrantDataFactory.create(id="g1")
        await cache.set_cached_match("u1", grant, MatchAnalysisFactory.create(), 1, now=now)

        assert await cache.get_cached_match("u1", "g1", 2, now=now) is None

    async def test_expiry_is_a_miss(self, cache, now):
        grant = GrantDataFactory.create(id="g1")
        await cache.set_cached_match("u1", grant, MatchAnalysisFactory.create(), 1, now=now)

        assert await cache.get_cached_match("u1", "g1", 1, now=now + timedelta(days=8)) is None

    async def test_grant_update_is_a_miss(self, cache, now):
        grant = GrantDataFactory.create(id="g1", updated_at=now - timedelta(days=3))
        await cache.set_cached_match("u1", grant, MatchAnalysisFactory.create(), 1, now=now)

        assert await cache.get_cached_match("u1", "g1", 1, now - timedelta(days=3), now=now) is not None
        assert await cache.get_cached_match("u1", "g1", 1, now - timedelta(hours=1), now=now) is None

    async def test_batch_lookup(self, cache, now):
        grants = [GrantDataFactory.create(id=f"g{i}") for i in range(3)]
        written = await cache.set_cached_matches(
            "u1",
            1,
            [(grants[0], MatchAnalysisFactory.create()), (grants[2], MatchAnalysisFactory.create())],
            now=now,
        )

        results = await cache.get_cached_matches("u1", grants, 1, now=now)

        assert written == 2
        assert list(results) == ["g0", "g1", "g2"]
        assert results["g1"] is None
        assert results["g0"] is not None and results["g2"] is not None

    async def test_empty_batch_write(self, cache):
        assert await cache.set_cached_matches("u1", 1, []) == 0

    async def test_invalidate_user_and_grant(self, cache, now):
        grant_a = GrantDataFactory.create(id="ga")
        grant_b = GrantDataFactory.create(id="gb")
        for user_id in ("u1", "u2"):
            await cache.set_cached_matches(
                user_id,
                1,
                [(grant_a, MatchAnalysisFactory.create()), (grant_b, MatchAnalysisFactory.create())],
                now=now,
            )

        assert await cache.invalidate_user("u1") == 2
        assert await cache.invalidate_grant("ga") == 1
        assert await cache.get_cached_match("u2", "gb", 1, now=now) is not None
        assert await cache.get_cached_match("u2", "ga", 1, now=now) is None

    async def test_stats(self, cache, async_session, now):
        async_session.add_all(
            [
                MatchCacheRowFactory.create("u1", "g1"),
                MatchCacheRowFactory.create("u1", "g2"),
                MatchCacheRowFactory.create("u2", "g1", expires_at=now - timedelta(days=1)),
            ]
        )
        await async_session.commit()

        assert await cache.get_stats(now=now) == {
            "total_entries": 3,
            "active_entries": 2,
            "expired_entries": 1,
            "unique_users": 2,
        }

    async def test_database_error_is_a_miss(self):
        factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("database is locked")))
        cache = MatchCache(factory, ttl_days=7)

        assert await cache.get_cached_match("u1", "g1", 1) is None
        assert await cache.get_stats() == {
            "total_entries": 0,
            "active_entries": 0,
            "expired_entries": 0,
            "unique_users": 0,
        }
