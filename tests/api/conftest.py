"""
API test fixtures.
An HTTP client wired to the test database, plus seeded grants and profiles.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from backend.api.deps import get_match_analyzer, get_match_cache
from backend.core.config import settings
from backend.database import get_db
from backend.main import app
from backend.services.match_cache import MatchCache
from tests.fixtures.factories import GrantRowFactory, OrganizationProfileFactory, UserFactory

ADMIN_KEY = "test-admin-key"


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client with database, cache and analyzer dependencies overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_match_cache] = lambda: MatchCache(session_factory)
    app.dependency_overrides[get_match_analyzer] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_key(monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", ADMIN_KEY)
    return ADMIN_KEY


@pytest_asyncio.fixture
async def seeded_db(async_session):
    """A California farm business and a small open grant pool."""
    soon = datetime.now(timezone.utc) + timedelta(days=45)
    async_session.add_all(
        [
            UserFactory.create(id="farm-user"),
            OrganizationProfileFactory.create("farm-user", goals=["equipment", "sustainability"]),
            GrantRowFactory.create(id="farm-equipment", deadline=soon),
            GrantRowFactory.create(
                id="orchard-ca",
                title="California Orchard Irrigation Grant",
                locations=["CA"],
                deadline=soon + timedelta(days=10),
            ),
            GrantRowFactory.create(
                id="teacher-pd",
                title="K-12 Teacher Professional Development Grant",
                agency="Department of Education",
                summary="Funds classroom teacher professional development.",
                categories=["Education"],
                eligibility={"tags": ["School districts"]},
                deadline=soon,
            ),
            GrantRowFactory.create(
                id="texas-farms", title="Texas Farm Resilience Grant", locations=["TX"], deadline=soon
            ),
            GrantRowFactory.create(id="no-link", url="", deadline=soon),
            GrantRowFactory.create(
                id="expired-farm",
                title="Farm Drought Relief Grant",
                deadline=datetime.now(timezone.utc) - timedelta(days=3),
            ),
            GrantRowFactory.create(id="closed-farm", status="closed"),
        ]
    )
    await async_session.commit()
    return async_session
