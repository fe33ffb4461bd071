# invoicehub/routes/files.py
import asyncio

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, status
import structlog

from invoicehub.context import AppContext, get_context
from invoicehub.middleware.authorization import get_organization_id
from invoicehub.paths import organization_path
from invoicehub.routes.errors import http_error

logger = structlog.get_logger()
router = APIRouter()


def _assert_organization_owns_file(file_key: str, organization_id: str):
    if not file_key.startswith(f"{organization_path(organization_id)}/"):
        raise http_error(
            status.HTTP_403_FORBIDDEN,
            "INSUFFICIENT_PERMISSIONS",
            "File belongs to another organization",
        )


@router.get("/{file_key:path}")
async def get_file_url(
    file_key: str,
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    """Fresh presigned URL for an attachment blob."""
    _assert_organization_owns_file(file_key, organization_id)
    try:
        url = await asyncio.to_thread(ctx.storage.get_presigned_url, file_key)
    except (BotoCoreError, ClientError) as e:
        logger.error("presigned_url_failed", key=file_key, error=str(e))
        raise http_error(status.HTTP_404_NOT_FOUND, "FILE_NOT_FOUND", "File not found")

    return {
        "file_key": file_key,
        "presigned_url": url,
        "expires_in": ctx.storage.presigned_expires_in,
    }
