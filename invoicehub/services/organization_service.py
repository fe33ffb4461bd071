"""
Organizations and their membership.

Membership lives in two places, ``organizations/{org}/members/{uid}`` and the
``role``/``organization`` keys of ``users/{uid}``. Both are written in one
multi-path update from the tree root.
"""

from typing import Optional

import structlog

from invoicehub.exceptions import MembershipError
from invoicehub.models.organization import Organization
from invoicehub.models.user import User, UserRole
from invoicehub.paths import members_path, organization_path, user_path
from invoicehub.services.realtime_db import RealtimeDB, utc_now_iso
from invoicehub.services.user_service import UserService

logger = structlog.get_logger()


class OrganizationService:
    def __init__(self, db: RealtimeDB, users: UserService):
        self.db = db
        self.users = users

    async def get(self, organization_id: str) -> Optional[Organization]:
        node = await self.db.get_data(organization_path(organization_id))
        if node is None:
            return None
        return Organization.from_node(node, id=organization_id)

    async def register(self, name: str, current_user: dict) -> Organization:
        uid = current_user["user_id"]
        now = utc_now_iso()
        key, stored = await self.db.create_item(
            "organizations",
            {
                "name": name,
                "createdBy": uid,
                "adminIds": [uid],
                "members": {uid: {"role": "admin", "joinedAt": now}},
            },
        )
        await self.users.upsert_profile(
            uid,
            email=current_user.get("email"),
            display_name=current_user.get("display_name"),
            role="admin",
            organization=key,
        )
        logger.info("organization_registered", organization_id=key, created_by=uid)
        return Organization.from_node(stored, id=key)

    async def rename(self, organization_id: str, name: str) -> Optional[Organization]:
        if await self.get(organization_id) is None:
            return None
        await self.db.update_data(organization_path(organization_id), {"name": name})
        logger.info("organization_renamed", organization_id=organization_id)
        return await self.get(organization_id)

    async def add_member(
        self,
        organization_id: str,
        uid: str,
        email: str,
        display_name: Optional[str] = None,
        role: UserRole = "reviewer",
    ) -> User:
        now = utc_now_iso()
        profile = await self.users.upsert_profile(
            uid, email=email, display_name=display_name, role=role, organization=organization_id
        )
        updates = {
            f"{members_path(organization_id)}/{uid}": {"role": role, "joinedAt": now},
        }
        if role == "admin":
            updates.update(await self._admin_ids_update(organization_id, add=uid))
        await self.db.update_data("", updates, stamp=False)
        logger.info("member_added", organization_id=organization_id, uid=uid, role=role)
        return profile

    async def set_member_role(self, organization_id: str, uid: str, role: UserRole) -> Optional[User]:
        org = await self.get(organization_id)
        if org is None or not org.is_member(uid):
            return None
        if role != "admin" and org.admin_ids == [uid]:
            raise MembershipError("An organization needs at least one admin")

        updates = {
            f"{members_path(organization_id)}/{uid}/role": role,
            f"{user_path(uid)}/role": role,
            f"{user_path(uid)}/updatedAt": utc_now_iso(),
        }
        if role == "admin":
            updates.update(await self._admin_ids_update(organization_id, add=uid))
        else:
            updates.update(await self._admin_ids_update(organization_id, remove=uid))
        await self.db.update_data("", updates, stamp=False)
        logger.info("member_role_changed", organization_id=organization_id, uid=uid, role=role)
        return await self.users.get(uid)

    async def remove_member(self, organization_id: str, uid: str) -> bool:
        """Drop the membership; the user profile is kept, detached from the organization."""
        org = await self.get(organization_id)
        if org is None or not org.is_member(uid):
            return False
        if org.admin_ids == [uid]:
            raise MembershipError("An organization needs at least one admin")

        updates = {
            f"{members_path(organization_id)}/{uid}": None,
            f"{user_path(uid)}/organization": None,
            f"{user_path(uid)}/updatedAt": utc_now_iso(),
        }
        updates.update(await self._admin_ids_update(organization_id, remove=uid))
        await self.db.update_data("", updates, stamp=False)
        logger.info("member_removed", organization_id=organization_id, uid=uid)
        return True

    async def _admin_ids_update(
        self, organization_id: str, add: Optional[str] = None, remove: Optional[str] = None
    ) -> dict:
        org = await self.get(organization_id)
        admin_ids = list(org.admin_ids) if org else []
        if add and add not in admin_ids:
            admin_ids.append(add)
        if remove and remove in admin_ids:
            admin_ids.remove(remove)
        return {f"{organization_path(organization_id)}/adminIds": admin_ids or None}
