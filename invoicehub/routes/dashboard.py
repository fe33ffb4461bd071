import asyncio

from fastapi import APIRouter, Depends

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.authorization import get_organization_id
from invoicehub.routes.errors import to_http_exception
from invoicehub.services.dashboard_service import invoice_stats

router = APIRouter()

RECENT_ACTIVITY_LIMIT = 10


@router.get("/stats")
async def get_dashboard_stats(
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        invoices, recent = await asyncio.gather(
            ctx.invoices.list(organization_id),
            ctx.activity.get_activity_logs(organization_id, limit=RECENT_ACTIVITY_LIMIT),
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)

    stats = invoice_stats(invoices)
    stats["recent_activity"] = [
        entry.model_dump(mode="json", by_alias=True) for entry in recent
    ]
    return stats
