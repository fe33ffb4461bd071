"""Activity log: append-only per-organization history of invoice actions."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError
import structlog

from invoicehub.models.activity import TARGET_INVOICE, ActivityLogEntry
from invoicehub.paths import activity_path, legacy_activity_path
from invoicehub.services.realtime_db import RealtimeDB

logger = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_key(entry: ActivityLogEntry) -> datetime:
    ts = entry.timestamp
    if ts is None:
        return _EPOCH
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class ActivityLogger:
    def __init__(self, db: RealtimeDB):
        self.db = db

    async def log_activity(
        self,
        type: str,
        user_id: Optional[str],
        organization_id: str,
        target_id: Optional[str] = None,
        target_type: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        action: Optional[str] = None,
    ) -> Optional[str]:
        """
        Append an entry under the organization's activity node.

        Never raises: a failed write is logged and None is returned, so the
        action being recorded is not affected.
        """
        entry = ActivityLogEntry(
            type=type,
            action=action,
            user_id=user_id,
            organization_id=organization_id,
            target_id=target_id,
            target_type=target_type,
            details=details or {},
            timestamp=datetime.now(timezone.utc),
        )
        try:
            entry_id = await self.db.push_data(
                activity_path(organization_id), entry.to_node(exclude={"id"})
            )
        except Exception as e:
            logger.error(
                "activity_log_failed",
                type=type,
                organization_id=organization_id,
                target_id=target_id,
                error=str(e),
            )
            return None

        logger.info(
            "activity_logged",
            type=type,
            action=action,
            organization_id=organization_id,
            target_id=target_id,
            entry_id=entry_id,
        )
        return entry_id

    async def get_activity_logs(
        self,
        organization_id: str,
        target_id: Optional[str] = None,
        target_type: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[ActivityLogEntry]:
        """Entries for the organization, newest first, optionally filtered."""
        entries = []
        for key, node in await self.db.get_items(activity_path(organization_id)):
            if not isinstance(node, dict):
                continue
            try:
                entry = ActivityLogEntry.from_node(node, id=key)
            except ValidationError as e:
                logger.warning("activity_decode_failed", entry_id=key, error=str(e))
                continue
            if target_id and entry.target_id != target_id:
                continue
            if target_type and entry.target_type != target_type:
                continue
            if user_id and entry.user_id != user_id:
                continue
            entries.append(entry)

        entries.sort(key=_sort_key, reverse=True)
        return entries[:limit]

    async def get_invoice_activity(
        self, organization_id: str, invoice_id: str, limit: int = 10
    ) -> list[ActivityLogEntry]:
        return await self.get_activity_logs(
            organization_id, target_id=invoice_id, target_type=TARGET_INVOICE, limit=limit
        )

    async def get_user_activity(
        self, organization_id: str, user_id: str, limit: int = 10
    ) -> list[ActivityLogEntry]:
        return await self.get_activity_logs(organization_id, user_id=user_id, limit=limit)

    async def migrate_legacy_activity(self, organization_id: str) -> int:
        """
        Move entries from the legacy ``activity_logs`` node into ``activity``.

        Keys are kept, so running it twice cannot duplicate entries. Returns
        the number of entries moved.
        """
        legacy = await self.db.get_items(legacy_activity_path(organization_id))
        if not legacy:
            return 0

        await self.db.update_data(
            activity_path(organization_id),
            {key: node for key, node in legacy},
            stamp=False,
        )
        await self.db.delete_data(legacy_activity_path(organization_id))
        logger.info(
            "activity_migrated", organization_id=organization_id, moved=len(legacy)
        )
        return len(legacy)
