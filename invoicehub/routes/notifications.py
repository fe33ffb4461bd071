from typing import List

from fastapi import APIRouter, Depends, Query, status

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.auth import get_current_user
from invoicehub.models.notification import Notification
from invoicehub.routes.errors import http_error, to_http_exception

router = APIRouter()


@router.get("", response_model=List[Notification])
async def list_notifications(
    unread_only: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    """Notifications for the logged-in user, newest first."""
    try:
        return await ctx.notifications.list_notifications(
            current_user["user_id"], unread_only=unread_only
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.post("/read-all")
async def mark_all_read(
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    try:
        updated = await ctx.notifications.mark_all_read(current_user["user_id"])
    except InvoiceHubError as e:
        raise to_http_exception(e)
    return {"updated": updated}


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    try:
        found = await ctx.notifications.mark_read(current_user["user_id"], notification_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if not found:
        raise http_error(
            status.HTTP_404_NOT_FOUND, "NOTIFICATION_NOT_FOUND", "Notification not found"
        )
