"""Shared test fixtures for OrbitCRM."""

import os
import pytest
from httpx import ASGITransport, AsyncClient


API_KEY = "test-admin-api-key"
SUPER_ADMIN_KEY = "test-super-admin-key"
SECRET_KEY = "test-secret-key-for-unit-tests"


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def app(tmp_path):
    """Create a test app with in-memory DB."""
    os.environ["ORBIT_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["ORBIT_SECRET_KEY"] = SECRET_KEY
    os.environ["ORBIT_API_KEY"] = API_KEY
    os.environ["ORBIT_SUPER_ADMIN_KEY"] = SUPER_ADMIN_KEY
    os.environ["ORBIT_STORAGE_DIR"] = str(tmp_path / "documents")
    os.environ["ORBIT_REDIS_URL"] = ""
    os.environ["ORBIT_EMAIL_PROVIDER"] = ""

    # Clear caches and singletons so new env vars take effect
    from orbit_crm.common.config import get_settings
    get_settings.cache_clear()

    from orbit_crm.deps import reset_singletons
    reset_singletons()

    from orbit_crm.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from orbit_crm.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Orbit-Api-Key": API_KEY}


@pytest.fixture
def super_admin_headers():
    return {"X-Orbit-Api-Key": SUPER_ADMIN_KEY}


@pytest.fixture
def make_tenant(client, super_admin_headers):
    """Factory creating an organization plus one user through the admin API.

    Returns a dict with ``tenant_id``, ``user_id`` and ``headers`` for the
    new user.
    """
    counter = {"n": 0}

    async def _make(tier: str = "pro", role: str = "owner", **org_fields):
        counter["n"] += 1
        resp = await client.post(
            "/api/organizations",
            json={"name": f"Org {counter['n']}", "subscription_tier": tier, **org_fields},
            headers=super_admin_headers,
        )
        assert resp.status_code == 201, resp.text
        org = resp.json()
        resp = await client.post(
            f"/api/organizations/{org['id']}/users",
            json={"email": f"user{counter['n']}@example.com", "full_name": "Test User", "role": role},
            headers=super_admin_headers,
        )
        assert resp.status_code == 201, resp.text
        user = resp.json()
        return {
            "tenant_id": org["id"],
            "user_id": user["id"],
            "headers": {"X-Orbit-Api-Key": user["api_key"]},
        }

    return _make


class FakeEmailSender:
    """Records outgoing mail instead of calling a provider."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    async def send(self, to, content):
        self.sent.append((to, content))
        return self.ok


@pytest.fixture
def fake_sender():
    return FakeEmailSender()
