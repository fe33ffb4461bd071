# invoicehub/services/user_service.py
from typing import Any, Optional

from pydantic import ValidationError
import structlog

from invoicehub.models.base import encode_fields
from invoicehub.models.user import User
from invoicehub.paths import user_path, users_path
from invoicehub.services.realtime_db import RealtimeDB, utc_now_iso

logger = structlog.get_logger()


class UserService:
    """User profiles at ``users/{uid}``."""

    def __init__(self, db: RealtimeDB):
        self.db = db

    async def get(self, uid: str) -> Optional[User]:
        node = await self.db.get_data(user_path(uid))
        if node is None:
            return None
        return User.from_node(node, uid=uid)

    async def list_for_organization(self, organization_id: str) -> list[User]:
        users = []
        for uid, node in await self.db.get_items(users_path()):
            if not isinstance(node, dict) or node.get("organization") != organization_id:
                continue
            try:
                users.append(User.from_node(node, uid=uid))
            except ValidationError as e:
                logger.warning("user_decode_failed", uid=uid, error=str(e))
        users.sort(key=lambda u: (u.display_name or u.email or u.uid).casefold())
        return users

    async def upsert_profile(self, uid: str, **fields: Any) -> User:
        """Merge non-None ``fields`` into the profile, creating it when absent."""
        fields = {k: v for k, v in fields.items() if v is not None}
        changes = encode_fields(fields)
        changes["uid"] = uid
        existing = await self.db.get_data(user_path(uid))
        if existing is None:
            changes["createdAt"] = utc_now_iso()
        written = await self.db.update_data(user_path(uid), changes)
        logger.info("user_profile_saved", uid=uid, fields=sorted(fields))
        return User.from_node({**(existing or {}), **written}, uid=uid)

    async def update_profile(
        self, uid: str, display_name: Optional[str] = None, department: Optional[str] = None
    ) -> Optional[User]:
        """Self-service edit; returns None when the profile does not exist."""
        if await self.db.get_data(user_path(uid)) is None:
            return None
        fields = {}
        if display_name is not None:
            fields["display_name"] = display_name
        if department is not None:
            fields["department"] = department
        if fields:
            await self.db.update_data(user_path(uid), encode_fields(fields))
        return await self.get(uid)
