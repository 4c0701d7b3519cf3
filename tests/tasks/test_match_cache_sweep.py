"""
Tests for the match cache sweep task.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from backend.models import GrantMatchCache
from backend.tasks.cleanup import cleanup_match_cache, sweep_match_cache
from tests.fixtures.factories import GrantRowFactory, MatchCacheRowFactory, UserFactory


class TestSweepMatchCache:
    """Tests for sweep_match_cache."""

    def _seed(self, session, now):
        session.add_all(
            [
                UserFactory.create(id="u1"),
                GrantRowFactory.create(id="g1"),
                GrantRowFactory.create(id="g2"),
                MatchCacheRowFactory.create("u1", "g1"),
                MatchCacheRowFactory.create("u1", "g2", expires_at=now - timedelta(hours=1)),
                MatchCacheRowFactory.create("u1", "deleted-grant"),
                MatchCacheRowFactory.create("deleted-user", "g1"),
            ]
        )
        session.commit()

    def test_removes_expired_and_orphaned(self, sync_session, now):
        self._seed(sync_session, now)

        stats = sweep_match_cache(sync_session, now=now)

        assert stats["expired_deleted"] == 1
        assert stats["orphaned_deleted"] == 2
        assert stats["total_cache_entries"] == 1
        assert stats["errors"] == []
        remaining = sync_session.execute(select(GrantMatchCache)).scalars().all()
        assert [(entry.user_id, entry.grant_id) for entry in remaining] == [("u1", "g1")]

    def test_empty_cache(self, sync_session, now):
        stats = sweep_match_cache(sync_session, now=now)

        assert stats["expired_deleted"] == 0
        assert stats["orphaned_deleted"] == 0
        assert stats["total_cache_entries"] == 0
        assert stats["duration_ms"] >= 0

    def test_failed_step_is_recorded(self, now):
        db = MagicMock()
        db.execute.side_effect = OperationalError("DELETE", {}, Exception("database is locked"))
        db.scalar.return_value = 3

        stats = sweep_match_cache(db, now=now)

        assert len(stats["errors"]) == 2
        assert stats["total_cache_entries"] == 3
        assert db.rollback.call_count == 2


class TestCleanupTask:
    def test_task_closes_session(self):
        db = MagicMock()
        with patch("backend.tasks.cleanup.get_sync_db", return_value=db), patch(
            "backend.tasks.cleanup.sweep_match_cache",
            return_value={"expired_deleted": 4, "orphaned_deleted": 1, "total_cache_entries": 9, "errors": []},
        ):
            stats = cleanup_match_cache()

        assert stats["expired_deleted"] == 4
        db.close.assert_called_once()
