"""Integration tests for the client portal magic-link flow."""

import pytest
from sqlalchemy import select

from orbit_crm.portal.models import PortalSessionModel


@pytest.fixture
async def tenant(make_tenant):
    return await make_tenant("pro")


@pytest.fixture
async def contact(client, tenant):
    resp = await client.post(
        "/api/contacts",
        json={"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
        headers=tenant["headers"],
    )
    return resp.json()


@pytest.fixture
def sender(client, fake_sender):
    from orbit_crm.deps import get_portal_service
    get_portal_service().email_sender = fake_sender
    return fake_sender


async def latest_token(contact_id: str) -> str:
    from orbit_crm.deps import get_db
    async with get_db().get_session() as session:
        result = await session.execute(
            select(PortalSessionModel.token)
            .where(PortalSessionModel.contact_id == contact_id)
            .order_by(PortalSessionModel.created_at.desc())
        )
        return result.scalars().first()


def session_cookie(resp) -> str:
    header = resp.headers["set-cookie"]
    return header.split(";", 1)[0].split("=", 1)[1]


async def enable_and_invite(client, tenant, contact) -> str:
    resp = await client.post(
        "/api/portal/toggle",
        json={"contact_id": contact["id"], "enabled": True},
        headers=tenant["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["portal_token"]
    resp = await client.post(
        "/api/portal/invite", json={"contact_id": contact["id"]}, headers=tenant["headers"]
    )
    assert resp.status_code == 200, resp.text
    return await latest_token(contact["id"])


async def test_invite_requires_enabled_portal(client, tenant, contact, sender):
    resp = await client.post(
        "/api/portal/invite", json={"contact_id": contact["id"]}, headers=tenant["headers"]
    )
    assert resp.status_code == 400
    assert sender.sent == []


async def test_invite_without_email_provider(client, tenant, contact):
    await client.post(
        "/api/portal/toggle",
        json={"contact_id": contact["id"], "enabled": True},
        headers=tenant["headers"],
    )
    resp = await client.post(
        "/api/portal/invite", json={"contact_id": contact["id"]}, headers=tenant["headers"]
    )
    assert resp.status_code == 502
    assert resp.json()["error"] == "upstream_failure"
    assert await latest_token(contact["id"]) is None


async def test_magic_link_flow(client, tenant, contact, sender):
    token = await enable_and_invite(client, tenant, contact)
    assert sender.sent[0][0] == "ada@example.com"
    assert f"/portal/auth/{token}" in sender.sent[0][1].text

    verify = await client.get(f"/api/portal/verify?token={token}", headers=tenant["headers"])
    assert verify.json()["valid"] is True

    resp = await client.get(f"/portal/auth/{token}")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/portal/dashboard"
    set_cookie = resp.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "path=/portal" in set_cookie
    assert "samesite=lax" in set_cookie
    cookie = session_cookie(resp)
    client.cookies.clear()

    dashboard = await client.get(
        "/portal/api/dashboard", headers={"Cookie": f"portal_session={cookie}"}
    )
    assert dashboard.status_code == 200
    data = dashboard.json()
    assert data["contact_id"] == contact["id"]
    assert data["contact_name"] == "Ada Lovelace"

    # Magic links are single use
    again = await client.get(f"/portal/auth/{token}")
    assert again.status_code == 401


async def test_dashboard_requires_cookie(client):
    resp = await client.get("/portal/api/dashboard")
    assert resp.status_code == 401
    resp = await client.get("/portal/api/dashboard", headers={"Cookie": "portal_session=forged"})
    assert resp.status_code == 401


async def test_dashboard_lists_contact_data(client, tenant, contact, sender):
    headers = tenant["headers"]
    await client.post("/api/projects", json={"name": "Website", "contact_id": contact["id"]}, headers=headers)
    await client.post("/api/invoices", json={"contact_id": contact["id"]}, headers=headers)
    shared = await client.post(
        "/api/documents",
        files={"file": ("report.pdf", b"%PDF-1.4 report", "application/pdf")},
        data={"visibility": "shared", "contact_id": contact["id"]},
        headers=headers,
    )
    assert shared.status_code == 201, shared.text
    internal = await client.post(
        "/api/documents",
        files={"file": ("notes.txt", b"internal", "text/plain")},
        data={"contact_id": contact["id"]},
        headers=headers,
    )

    token = await enable_and_invite(client, tenant, contact)
    cookie = session_cookie(await client.get(f"/portal/auth/{token}"))
    client.cookies.clear()
    portal_headers = {"Cookie": f"portal_session={cookie}"}

    data = (await client.get("/portal/api/dashboard", headers=portal_headers)).json()
    assert [p["name"] for p in data["projects"]] == ["Website"]
    assert [i["invoice_number"] for i in data["invoices"]] == ["INV-00001"]
    assert [d["name"] for d in data["documents"]] == ["report.pdf"]

    download = await client.get(
        f"/portal/api/documents/{shared.json()['id']}/download", headers=portal_headers
    )
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 report"

    blocked = await client.get(
        f"/portal/api/documents/{internal.json()['id']}/download", headers=portal_headers
    )
    assert blocked.status_code == 403


async def test_invite_rate_limited(client, tenant, contact, sender):
    await client.post(
        "/api/portal/toggle",
        json={"contact_id": contact["id"], "enabled": True},
        headers=tenant["headers"],
    )
    for _ in range(5):
        resp = await client.post(
            "/api/portal/invite", json={"contact_id": contact["id"]}, headers=tenant["headers"]
        )
        assert resp.status_code == 200
    resp = await client.post(
        "/api/portal/invite", json={"contact_id": contact["id"]}, headers=tenant["headers"]
    )
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) > 0
    assert len(sender.sent) == 5


async def test_verify_is_tenant_scoped(client, tenant, contact, sender, make_tenant):
    token = await enable_and_invite(client, tenant, contact)
    other = await make_tenant("pro")
    resp = await client.get(f"/api/portal/verify?token={token}", headers=other["headers"])
    assert resp.status_code == 404


async def test_logout_clears_cookie(client):
    resp = await client.post("/portal/logout")
    assert resp.status_code == 200
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith("portal_session=")
    assert "Max-Age=0" in set_cookie
