"""
HTTP tests for organizations, users, notifications, activity, dashboard,
file URLs, health and bearer-token authentication.
"""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import ADMIN_ID, ORG_ID, REVIEWER_ID
from invoicehub.main import app
from invoicehub.middleware.auth import get_current_user
from invoicehub.paths import legacy_activity_path
from invoicehub.schemas.invoice import InvoiceForm
from invoicehub.services.auth_service import create_access_token


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_organization(client, ctx, acting):
    acting["user"] = {
        "user_id": "founder", "email": "f@new.test", "display_name": "Fay",
        "organization_id": None, "role": "reviewer",
    }

    response = await client.post("/api/v1/organizations", json={"name": "  New Co "})

    assert response.status_code == 201
    assert response.json()["name"] == "New Co"
    assert response.json()["adminIds"] == ["founder"]
    assert (await ctx.users.get("founder")).organization == response.json()["id"]


@pytest.mark.asyncio
async def test_register_refused_when_already_member(client, organization):
    response = await client.post("/api/v1/organizations", json={"name": "Second"})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ALREADY_IN_ORGANIZATION"


@pytest.mark.asyncio
async def test_current_organization_read_and_rename(client, acting, organization, reviewer_user):
    current = await client.get("/api/v1/organizations/current")
    renamed = await client.patch("/api/v1/organizations/current", json={"name": "Acme Holdings"})
    acting["user"] = reviewer_user
    refused = await client.patch("/api/v1/organizations/current", json={"name": "Mine"})

    assert current.json()["name"] == "Acme Corp"
    assert renamed.json()["name"] == "Acme Holdings"
    assert refused.status_code == 403


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_and_manage_members(client, ctx, organization):
    added = await client.post(
        "/api/v1/users",
        json={"uid": "new-1", "email": "nia@acme.com", "displayName": "Nia", "role": "reviewer"},
    )
    promoted = await client.patch("/api/v1/users/new-1/role", json={"role": "admin"})
    listed = await client.get("/api/v1/users")
    removed = await client.delete(f"/api/v1/users/{REVIEWER_ID}")

    assert added.status_code == 201
    assert promoted.json()["role"] == "admin"
    assert sorted(u["uid"] for u in listed.json()) == sorted([ADMIN_ID, REVIEWER_ID, "new-1"])
    assert removed.status_code == 204
    org = await ctx.organizations.get(ORG_ID)
    assert set(org.admin_ids) == {ADMIN_ID, "new-1"}


@pytest.mark.asyncio
async def test_demoting_last_admin_conflicts(client, organization):
    response = await client.patch(f"/api/v1/users/{ADMIN_ID}/role", json={"role": "reviewer"})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "MEMBERSHIP_INVALID"


@pytest.mark.asyncio
async def test_add_member_from_other_organization_conflicts(client, backend, organization):
    backend.set("users/elsewhere", {"uid": "elsewhere", "organization": "org-other", "role": "admin"})

    response = await client.post("/api/v1/users", json={"uid": "elsewhere", "email": "e@other.com"})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "USER_IN_OTHER_ORGANIZATION"


@pytest.mark.asyncio
async def test_profile_me(client, acting, organization):
    me = await client.get("/api/v1/users/me")
    edited = await client.patch("/api/v1/users/me", json={"department": "Finance"})
    acting["user"] = {"user_id": "stranger", "email": "s@x.test", "role": "reviewer"}
    fallback = await client.get("/api/v1/users/me")

    assert me.json()["displayName"] == "Ada Admin"
    assert edited.json()["department"] == "Finance"
    assert fallback.json()["uid"] == "stranger"
    assert fallback.json()["organization"] is None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notifications_flow(client, ctx, organization):
    first = await ctx.notifications.create_notification(ADMIN_ID, "one")
    await ctx.notifications.create_notification(ADMIN_ID, "two")

    listed = await client.get("/api/v1/notifications", params={"unread_only": True})
    marked = await client.post(f"/api/v1/notifications/{first}/read")
    missing = await client.post("/api/v1/notifications/unknown/read")
    all_read = await client.post("/api/v1/notifications/read-all")

    assert len(listed.json()) == 2
    assert marked.status_code == 204
    assert missing.status_code == 404
    assert all_read.json() == {"updated": 1}


# ---------------------------------------------------------------------------
# Activity and dashboard
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_activity_listing_and_migration(client, backend, organization):
    backend.set(legacy_activity_path(ORG_ID), {
        "old1": {"type": "Invoice created", "userId": ADMIN_ID, "timestamp": "2023-06-01T00:00:00Z"},
    })

    migrated = await client.post("/api/v1/activity/migrate")
    listed = await client.get("/api/v1/activity", params={"user_id": ADMIN_ID})

    assert migrated.json() == {"organization_id": ORG_ID, "moved": 1}
    assert [e["id"] for e in listed.json()] == ["old1"]


@pytest.mark.asyncio
async def test_dashboard_stats(client, ctx, organization, admin_user):
    for number, amount in (("D-1", 100), ("D-2", 50)):
        await ctx.new_submission(admin_user, ORG_ID).create(
            InvoiceForm(invoice_number=number, vendor_name="V", amount=amount, invoice_date="2024-01-01")
        )

    response = await client.get("/api/v1/dashboard/stats")

    body = response.json()
    assert body["total"] == 2
    assert body["total_amount"] == 150
    assert body["by_status"]["pending"] == 2
    assert len(body["recent_activity"]) == 2


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_presigned_url_for_own_file(client, organization):
    key = f"organizations/{ORG_ID}/invoices/i1/attachments/1_a.pdf"

    response = await client.get(f"/api/v1/files/{key}")

    assert response.status_code == 200
    assert response.json()["presigned_url"] == f"https://blobs.test/{key}?sig=1"
    assert response.json()["expires_in"] == 3600


@pytest.mark.asyncio
async def test_presigned_url_for_other_organization_refused(client, organization):
    response = await client.get("/api/v1/files/organizations/org-other/invoices/i1/attachments/1_a.pdf")

    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Health and authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client, storage):
    healthy = await client.get("/health")
    storage.ping.side_effect = ConnectionError("unreachable")
    unhealthy = await client.get("/health")

    assert healthy.status_code == 200
    assert healthy.json()["checks"] == {"store": "ok", "blob_storage": "ok"}
    assert unhealthy.status_code == 503
    assert unhealthy.json()["checks"]["blob_storage"] == "error"
    assert healthy.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_unexpected_error_is_normalized(ctx, admin_user, monkeypatch):
    monkeypatch.setattr(ctx.invoices, "list", AsyncMock(side_effect=RuntimeError("boom")))
    app.state.context = ctx
    app.dependency_overrides[get_current_user] = lambda: admin_user
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.get("/api/v1/invoices")
    finally:
        app.dependency_overrides.clear()
        app.state.context = None

    assert response.status_code == 500
    assert response.json() == {
        "error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}
    }


@pytest.mark.asyncio
async def test_bearer_token_resolves_stored_profile(ctx, organization):
    app.state.context = ctx
    token = create_access_token(REVIEWER_ID, "rita@acme.test", organization_id="stale-org", role="admin")
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            me = await c.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
            refused = await c.delete(
                "/api/v1/invoices/anything", headers={"Authorization": f"Bearer {token}"}
            )
            bad = await c.get("/api/v1/users/me", headers={"Authorization": "Bearer not-a-token"})
    finally:
        app.state.context = None

    assert me.status_code == 200
    assert me.json()["uid"] == REVIEWER_ID
    assert me.json()["role"] == "reviewer"
    assert refused.status_code == 403
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "AUTH_TOKEN_INVALID"
