from typing import List, Optional

from fastapi import APIRouter, Depends, Query
import structlog

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.authorization import get_organization_id, require_roles
from invoicehub.models.activity import ActivityLogEntry
from invoicehub.routes.errors import to_http_exception

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=List[ActivityLogEntry])
async def list_activity(
    target_id: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.activity.get_activity_logs(
            organization_id,
            target_id=target_id,
            target_type=target_type,
            user_id=user_id,
            limit=limit,
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.post("/migrate")
async def migrate_legacy_activity(
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    """Move entries from the legacy ``activity_logs`` node into ``activity``."""
    try:
        moved = await ctx.activity.migrate_legacy_activity(organization_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    return {"organization_id": organization_id, "moved": moved}
