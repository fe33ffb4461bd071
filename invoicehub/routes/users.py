from typing import List

from fastapi import APIRouter, Depends, status
import structlog

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.auth import get_current_user
from invoicehub.middleware.authorization import get_organization_id, require_roles
from invoicehub.models.user import User
from invoicehub.routes.errors import http_error, to_http_exception
from invoicehub.schemas.organization import MemberCreate, MemberRoleUpdate, ProfileUpdate

logger = structlog.get_logger()
router = APIRouter()


def _user_not_found():
    return http_error(status.HTTP_404_NOT_FOUND, "USER_NOT_FOUND", "User not found")


@router.get("", response_model=List[User])
async def list_users(
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.users.list_for_organization(organization_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.get("/me", response_model=User)
async def get_me(
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    try:
        profile = await ctx.users.get(current_user["user_id"])
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if profile is None:
        # Signed in but never registered or added to an organization
        return User(
            uid=current_user["user_id"],
            email=current_user.get("email"),
            display_name=current_user.get("display_name"),
            role=current_user.get("role", "reviewer"),
        )
    return profile


@router.patch("/me", response_model=User)
async def update_me(
    body: ProfileUpdate,
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
):
    try:
        profile = await ctx.users.update_profile(
            current_user["user_id"], display_name=body.display_name, department=body.department
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if profile is None:
        raise _user_not_found()
    return profile


@router.post("", response_model=User, status_code=status.HTTP_201_CREATED)
async def add_member(
    body: MemberCreate,
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        existing = await ctx.users.get(body.uid)
        if existing and existing.organization and existing.organization != organization_id:
            raise http_error(
                status.HTTP_409_CONFLICT,
                "USER_IN_OTHER_ORGANIZATION",
                "User already belongs to another organization",
            )
        return await ctx.organizations.add_member(
            organization_id, body.uid, body.email, display_name=body.display_name, role=body.role
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.patch("/{uid}/role", response_model=User)
async def change_role(
    uid: str,
    body: MemberRoleUpdate,
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        user = await ctx.organizations.set_member_role(organization_id, uid, body.role)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if user is None:
        raise _user_not_found()
    return user


@router.delete("/{uid}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    uid: str,
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        removed = await ctx.organizations.remove_member(organization_id, uid)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if not removed:
        raise _user_not_found()
