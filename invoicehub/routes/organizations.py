from fastapi import APIRouter, Depends, status
import structlog

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.auth import get_current_user
from invoicehub.middleware.authorization import get_organization_id, require_roles
from invoicehub.models.organization import Organization
from invoicehub.routes.errors import http_error, to_http_exception
from invoicehub.schemas.organization import OrganizationCreate, OrganizationUpdate

logger = structlog.get_logger()
router = APIRouter()


@router.post("", response_model=Organization, status_code=status.HTTP_201_CREATED)
async def register_organization(
    body: OrganizationCreate,
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    """Create an organization with the caller as its first admin."""
    if current_user.get("organization_id"):
        raise http_error(
            status.HTTP_409_CONFLICT,
            "ALREADY_IN_ORGANIZATION",
            "You already belong to an organization",
        )
    try:
        return await ctx.organizations.register(body.name.strip(), current_user)
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.get("/current", response_model=Organization)
async def get_current_organization(
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        org = await ctx.organizations.get(organization_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if org is None:
        raise http_error(status.HTTP_404_NOT_FOUND, "ORGANIZATION_NOT_FOUND", "Organization not found")
    return org


@router.patch("/current", response_model=Organization)
async def update_current_organization(
    body: OrganizationUpdate,
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        org = await ctx.organizations.rename(organization_id, body.name.strip())
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if org is None:
        raise http_error(status.HTTP_404_NOT_FOUND, "ORGANIZATION_NOT_FOUND", "Organization not found")
    return org
