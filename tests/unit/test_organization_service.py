"""
Unit tests for organization_service.py, user_service.py and
notification_service.py

Tests: registering an organization, membership changes keeping at least one
       admin, profile upserts, notification read state.
"""

from unittest.mock import AsyncMock

import pytest

from conftest import ADMIN_ID, ORG_ID, REVIEWER_ID
from invoicehub.exceptions import MembershipError, StoreError
from invoicehub.services.notification_service import NotificationService


# ---------------------------------------------------------------------------
# OrganizationService
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_makes_caller_admin(ctx, backend):
    user = {"user_id": "founder", "email": "f@new.test", "display_name": "Fay", "role": "reviewer"}

    org = await ctx.organizations.register("New Co", user)

    assert org.name == "New Co"
    assert org.admin_ids == ["founder"]
    assert org.members["founder"].role == "admin"
    profile = await ctx.users.get("founder")
    assert profile.organization == org.id
    assert profile.role == "admin"
    assert profile.created_at is not None


@pytest.mark.asyncio
async def test_add_member_writes_profile_and_membership(ctx, organization):
    user = await ctx.organizations.add_member(ORG_ID, "new-1", "n@acme.test", "Nia", role="reviewer")

    org = await ctx.organizations.get(ORG_ID)
    assert user.organization == ORG_ID
    assert org.members["new-1"].role == "reviewer"
    assert org.admin_ids == [ADMIN_ID]


@pytest.mark.asyncio
async def test_promote_and_demote_member(ctx, organization):
    promoted = await ctx.organizations.set_member_role(ORG_ID, REVIEWER_ID, "admin")
    org = await ctx.organizations.get(ORG_ID)
    assert promoted.role == "admin"
    assert set(org.admin_ids) == {ADMIN_ID, REVIEWER_ID}

    await ctx.organizations.set_member_role(ORG_ID, ADMIN_ID, "reviewer")
    org = await ctx.organizations.get(ORG_ID)
    assert org.admin_ids == [REVIEWER_ID]
    assert org.members[ADMIN_ID].role == "reviewer"


@pytest.mark.asyncio
async def test_last_admin_cannot_be_demoted_or_removed(ctx, organization):
    with pytest.raises(MembershipError):
        await ctx.organizations.set_member_role(ORG_ID, ADMIN_ID, "reviewer")
    with pytest.raises(MembershipError):
        await ctx.organizations.remove_member(ORG_ID, ADMIN_ID)


@pytest.mark.asyncio
async def test_remove_member_detaches_profile(ctx, organization):
    assert await ctx.organizations.remove_member(ORG_ID, REVIEWER_ID) is True
    assert await ctx.organizations.remove_member(ORG_ID, REVIEWER_ID) is False

    org = await ctx.organizations.get(ORG_ID)
    profile = await ctx.users.get(REVIEWER_ID)
    assert REVIEWER_ID not in org.members
    assert profile.organization is None
    assert [u.uid for u in await ctx.users.list_for_organization(ORG_ID)] == [ADMIN_ID]


# ---------------------------------------------------------------------------
# UserService
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_profile(ctx, organization):
    updated = await ctx.users.update_profile(REVIEWER_ID, display_name="Rita R.", department="Finance")

    assert updated.display_name == "Rita R."
    assert updated.department == "Finance"
    assert updated.role == "reviewer"
    assert await ctx.users.update_profile("ghost", display_name="x") is None


@pytest.mark.asyncio
async def test_list_for_organization_sorted_by_name(ctx, organization):
    users = await ctx.users.list_for_organization(ORG_ID)
    assert [u.display_name for u in users] == ["Ada Admin", "Rita Reviewer"]


# ---------------------------------------------------------------------------
# NotificationService
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notifications_read_state(ctx):
    first = await ctx.notifications.create_notification("u1", "Invoice INV-1 was marked approved")
    await ctx.notifications.create_notification("u1", "You were assigned", type="warning")

    assert len(await ctx.notifications.list_notifications("u1", unread_only=True)) == 2
    assert await ctx.notifications.mark_read("u1", first) is True
    assert await ctx.notifications.mark_read("u1", "missing") is False

    unread = await ctx.notifications.list_notifications("u1", unread_only=True)
    assert [n.message for n in unread] == ["You were assigned"]
    assert await ctx.notifications.mark_all_read("u1") == 1
    assert await ctx.notifications.list_notifications("u1", unread_only=True) == []
    assert len(await ctx.notifications.list_notifications("u1")) == 2


@pytest.mark.asyncio
async def test_notification_failure_is_swallowed():
    db = AsyncMock()
    db.create_item.side_effect = StoreError("set", "notifications/u1", "offline")

    service = NotificationService(db)

    assert await service.create_notification("u1", "hello") is None
    assert await service.notify_many(["u1", "u2"], "hello") == 0
