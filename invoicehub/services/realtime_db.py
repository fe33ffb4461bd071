# invoicehub/services/realtime_db.py
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from invoicehub.exceptions import StoreError
from invoicehub.services.tree_store import Subscription, TreeBackend

logger = structlog.get_logger()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RealtimeDB:
    """Async, path-addressed access to the realtime tree.

    Blocking backend calls run in worker threads. Every failure is logged
    with its operation and path and re-raised as ``StoreError``.
    """

    def __init__(self, backend: TreeBackend):
        self.backend = backend

    async def _call(self, operation: str, path: str, fn: Callable, *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except Exception as e:
            logger.error("store_operation_failed", operation=operation, path=path, error=str(e))
            raise StoreError(operation, path, str(e)) from e

    def new_key(self, collection_path: str) -> str:
        return self.backend.push_key(collection_path)

    async def get_data(self, path: str) -> Optional[Any]:
        return await self._call("get", path, self.backend.get, path)

    async def get_items(self, path: str) -> list[tuple[str, Any]]:
        """Children of ``path`` as (key, value) pairs in key order."""
        value = await self.get_data(path)
        if value is None:
            return []
        if isinstance(value, list):
            return [(str(i), v) for i, v in enumerate(value) if v is not None]
        if not isinstance(value, dict):
            return []
        return sorted(value.items())

    async def set_data(self, path: str, data: dict, merge: bool = False) -> dict:
        now = utc_now_iso()
        if merge:
            return await self.update_data(path, data)
        stamped = {**data, "createdAt": data.get("createdAt") or now, "updatedAt": now}
        await self._call("set", path, self.backend.set, path, stamped)
        return stamped

    async def create_item(self, collection_path: str, data: dict) -> tuple[str, dict]:
        key = self.new_key(collection_path)
        now = utc_now_iso()
        stamped = {**data, "id": key, "createdAt": now, "updatedAt": now}
        path = f"{collection_path}/{key}"
        await self._call("set", path, self.backend.set, path, stamped)
        return key, stamped

    async def push_data(self, collection_path: str, data: dict) -> str:
        """Append ``data`` under a new key without timestamp stamping."""
        key = self.new_key(collection_path)
        path = f"{collection_path}/{key}"
        await self._call("set", path, self.backend.set, path, data)
        return key

    async def update_data(self, path: str, fields: dict, stamp: bool = True) -> dict:
        stamped = {**fields, "updatedAt": utc_now_iso()} if stamp else dict(fields)
        await self._call("update", path, self.backend.update, path, stamped)
        return stamped

    async def delete_data(self, path: str) -> None:
        await self._call("delete", path, self.backend.delete, path)

    async def subscribe(self, path: str, callback: Callable[[Any], None]) -> Subscription:
        subscription = await self._call("subscribe", path, self.backend.listen, path, callback)
        logger.debug("subscription_opened", path=path)
        return subscription
