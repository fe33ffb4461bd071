import asyncio
import json
from typing import Literal, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError
import structlog

from invoicehub.context import AppContext, get_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.middleware.auth import get_current_user
from invoicehub.middleware.authorization import get_organization_id, require_roles
from invoicehub.models.activity import ActivityLogEntry
from invoicehub.models.invoice import Invoice
from invoicehub.routes.errors import http_error, to_http_exception
from invoicehub.schemas.common import PaginatedResponse, build_pagination
from invoicehub.schemas.invoice import (
    InvoiceDeleteResponse,
    InvoiceForm,
    InvoiceStatusUpdate,
    InvoiceUpdateForm,
    RejectedFileResponse,
    ReviewerAssignment,
    SubmissionResponse,
)
from invoicehub.services.attachment_service import PendingFile, RejectedFile
from invoicehub.services.invoice_query import SORTABLE_FIELDS, query_invoices
from invoicehub.services.invoice_workflow import InFlightSubmissions

logger = structlog.get_logger()
router = APIRouter()

FormT = TypeVar("FormT", bound=BaseModel)

# Seconds between keep-alive comments on an idle event stream
STREAM_KEEPALIVE = 15


def pending_file(upload: UploadFile) -> PendingFile:
    size = upload.size
    if size is None:
        upload.file.seek(0, 2)
        size = upload.file.tell()
        upload.file.seek(0)
    return PendingFile(
        name=upload.filename or "attachment",
        content_type=upload.content_type or "application/octet-stream",
        size=size,
        stream=upload.file,
    )


def _parse_payload(model: Type[FormT], payload: str) -> FormT:
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise http_error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Invalid invoice payload",
            details=e.errors(include_url=False, include_context=False),
        )


def _rejected(files: list[RejectedFile]) -> list[RejectedFileResponse]:
    return [RejectedFileResponse(name=f.name, reason=f.reason) for f in files]


@router.get("", response_model=PaginatedResponse[Invoice])
async def list_invoices(
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    inv_status: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    sort_field: str = Query("createdAt"),
    sort_direction: Literal["asc", "desc"] = Query("desc"),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    if sort_field not in SORTABLE_FIELDS:
        raise http_error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            f"Cannot sort by {sort_field}",
            fields={"sort_field": f"Allowed: {', '.join(SORTABLE_FIELDS)}"},
        )
    try:
        invoices = await ctx.invoices.list(organization_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)

    result = query_invoices(
        invoices,
        status=inv_status,
        search=search,
        sort_field=sort_field,
        sort_direction=sort_direction,
        page=page,
        page_size=page_size or ctx.default_page_size,
    )
    return PaginatedResponse(
        data=result.items,
        pagination=build_pagination(result.page, result.page_size, result.total),
    )


@router.get("/stream")
async def stream_invoices(
    request: Request,
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    """Server-sent events: the full invoice list on subscribe and after every change."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def _on_change(invoices: list[Invoice]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, invoices)

    try:
        subscription = await ctx.invoices.subscribe(organization_id, _on_change)
    except InvoiceHubError as e:
        raise to_http_exception(e)

    async def _events():
        with subscription:
            while not await request.is_disconnected():
                try:
                    invoices = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                data = json.dumps([inv.model_dump(mode="json", by_alias=True) for inv in invoices])
                yield f"event: invoices\ndata: {data}\n\n"
        logger.info("invoice_stream_closed", organization_id=organization_id)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        invoice = await ctx.invoices.get(organization_id, invoice_id)
    except InvoiceHubError as e:
        raise to_http_exception(e)
    if invoice is None:
        raise http_error(status.HTTP_404_NOT_FOUND, "INVOICE_NOT_FOUND", "Invoice not found")
    return invoice


@router.get("/{invoice_id}/activity", response_model=list[ActivityLogEntry])
async def get_invoice_activity(
    invoice_id: str,
    limit: int = Query(10, ge=1, le=100),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.activity.get_invoice_activity(organization_id, invoice_id, limit=limit)
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    payload: str = Form(...),
    files: list[UploadFile] = File(default=[]),
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    """Multipart: ``payload`` is the invoice form as JSON, ``files`` the attachments."""
    form = _parse_payload(InvoiceForm, payload)
    submission = ctx.new_submission(current_user, organization_id)
    key = InFlightSubmissions.key_for_create(organization_id, form.invoice_number)
    try:
        with ctx.submissions.claim(key):
            invoice = await submission.create(form, [pending_file(f) for f in files])
    except InvoiceHubError as e:
        raise to_http_exception(e)

    return SubmissionResponse(
        invoice=invoice,
        rejected_files=_rejected(submission.rejected_files),
        state=submission.state.value,
    )


@router.patch("/{invoice_id}", response_model=SubmissionResponse)
async def update_invoice(
    invoice_id: str,
    payload: str = Form("{}"),
    files: list[UploadFile] = File(default=[]),
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    changes = _parse_payload(InvoiceUpdateForm, payload)
    submission = ctx.new_submission(current_user, organization_id)
    key = InFlightSubmissions.key_for_update(organization_id, invoice_id)
    try:
        with ctx.submissions.claim(key):
            invoice = await submission.update(invoice_id, changes, [pending_file(f) for f in files])
    except InvoiceHubError as e:
        raise to_http_exception(e)

    return SubmissionResponse(
        invoice=invoice,
        rejected_files=_rejected(submission.rejected_files),
        state=submission.state.value,
    )


@router.post("/{invoice_id}/status", response_model=Invoice)
async def update_invoice_status(
    invoice_id: str,
    body: InvoiceStatusUpdate,
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.invoice_service.update_invoice_status(
            organization_id, invoice_id, body.status, current_user, note=body.note
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.put("/{invoice_id}/reviewers", response_model=Invoice)
async def assign_reviewers(
    invoice_id: str,
    body: ReviewerAssignment,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.invoice_service.assign_reviewers(
            organization_id, invoice_id, body.reviewers, current_user
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)


@router.delete("/{invoice_id}", response_model=InvoiceDeleteResponse)
async def delete_invoice(
    invoice_id: str,
    purge_attachments: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin")),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        result = await ctx.invoice_service.delete_invoice(
            organization_id, invoice_id, current_user, purge_attachments=purge_attachments
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)
    return InvoiceDeleteResponse(
        id=result.invoice_id,
        attachments_purged=result.attachments_purged,
        orphaned_paths=result.orphaned_paths,
    )


@router.post("/{invoice_id}/attachments", response_model=SubmissionResponse)
async def add_attachments(
    invoice_id: str,
    files: list[UploadFile] = File(...),
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        invoice, result = await ctx.invoice_service.add_attachments(
            organization_id, invoice_id, [pending_file(f) for f in files], current_user
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)
    return SubmissionResponse(
        invoice=invoice, rejected_files=_rejected(result.rejected), state="done"
    )


@router.delete("/{invoice_id}/attachments", response_model=Invoice)
async def remove_attachment(
    invoice_id: str,
    path: str = Query(..., min_length=1),
    current_user: dict = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
    organization_id: str = Depends(get_organization_id),
):
    try:
        return await ctx.invoice_service.remove_attachment(
            organization_id, invoice_id, path, current_user
        )
    except InvoiceHubError as e:
        raise to_http_exception(e)
