from fastapi import Depends, status
import structlog

from invoicehub.middleware.auth import get_current_user
from invoicehub.routes.errors import http_error

logger = structlog.get_logger()


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for organization roles.

    Usage:
        @router.delete("/{invoice_id}")
        async def delete_invoice(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("admin")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        role = current_user.get("role")
        if role not in allowed_roles:
            logger.warning(
                "role_denied",
                user_id=current_user.get("user_id"),
                role=role,
                required=list(allowed_roles),
            )
            raise http_error(
                status.HTTP_403_FORBIDDEN,
                "INSUFFICIENT_PERMISSIONS",
                f"Role '{role}' cannot perform this action. Required: {', '.join(allowed_roles)}",
            )
        return None

    return check_role


async def get_organization_id(current_user: dict = Depends(get_current_user)) -> str:
    """The caller's organization; every invoice read and write is scoped to it."""
    organization_id = current_user.get("organization_id")
    if not organization_id:
        raise http_error(
            status.HTTP_403_FORBIDDEN,
            "NO_ORGANIZATION",
            "Register or join an organization first",
        )
    return organization_id
