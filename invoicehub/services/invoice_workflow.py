"""
Invoice create/update submission flow.

    IDLE -> VALIDATING -> UPLOADING_ATTACHMENTS -> PERSISTING_RECORD
         -> LOGGING_ACTIVITY -> DONE

A validation failure returns the machine to IDLE with field errors and no
network call made. Upload and persist failures move it to FAILED; a persist
failure first deletes the blobs this submission uploaded. A failed activity
write does not fail the submission.
"""

import math
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Sequence

import structlog

from invoicehub.exceptions import (
    InvoiceNotFoundError,
    InvoiceValidationError,
    SubmissionInProgressError,
)
from invoicehub.models.activity import (
    CREATE_INVOICE,
    INVOICE_CREATED,
    INVOICE_UPDATED,
    TARGET_INVOICE,
    UPDATE_INVOICE,
)
from invoicehub.models.invoice import Attachment, CustomField, Invoice, LineItem
from invoicehub.schemas.invoice import InvoiceForm, InvoiceUpdateForm
from invoicehub.services.activity_service import ActivityLogger
from invoicehub.services.attachment_service import (
    AttachmentUploader,
    PendingFile,
    ProgressCallback,
    RejectedFile,
)
from invoicehub.services.invoice_repository import InvoiceRepository

logger = structlog.get_logger()

DEFAULT_NOTES_MAX_LENGTH = 1000


class SubmissionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    UPLOADING_ATTACHMENTS = "uploading_attachments"
    PERSISTING_RECORD = "persisting_record"
    LOGGING_ACTIVITY = "logging_activity"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    SubmissionState.IDLE: {SubmissionState.VALIDATING, SubmissionState.FAILED},
    SubmissionState.VALIDATING: {
        SubmissionState.IDLE,
        SubmissionState.UPLOADING_ATTACHMENTS,
        SubmissionState.FAILED,
    },
    SubmissionState.UPLOADING_ATTACHMENTS: {
        SubmissionState.PERSISTING_RECORD,
        SubmissionState.FAILED,
    },
    SubmissionState.PERSISTING_RECORD: {
        SubmissionState.LOGGING_ACTIVITY,
        SubmissionState.FAILED,
    },
    SubmissionState.LOGGING_ACTIVITY: {SubmissionState.DONE, SubmissionState.FAILED},
    SubmissionState.DONE: set(),
    # Failed forms keep their input and may be resubmitted
    SubmissionState.FAILED: {SubmissionState.VALIDATING},
}


# ---------- validation ----------

def parse_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(str(value).strip()) if isinstance(value, str) else float(value)
    except ValueError:
        return None
    return amount if math.isfinite(amount) else None


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def validate_invoice_form(
    form: InvoiceForm, notes_max_length: int = DEFAULT_NOTES_MAX_LENGTH
) -> dict[str, str]:
    """Field errors keyed by form field name; empty when the form is valid."""
    errors: dict[str, str] = {}

    if not form.invoice_number.strip():
        errors["invoiceNumber"] = "Invoice number is required"

    invoice_date = parse_date(form.invoice_date)
    if not form.invoice_date:
        errors["invoiceDate"] = "Invoice date is required"
    elif invoice_date is None:
        errors["invoiceDate"] = "Invoice date is invalid"

    amount = parse_amount(form.amount)
    if amount is None or amount <= 0:
        errors["amount"] = "Valid amount is required"

    if not form.vendor_name.strip():
        errors["vendorName"] = "Vendor name is required"

    due_date = parse_date(form.due_date)
    if form.due_date and due_date is None:
        errors["dueDate"] = "Due date is invalid"
    elif invoice_date and due_date and due_date < invoice_date:
        errors["dueDate"] = "Due date cannot be before invoice date"

    if len(form.notes) > notes_max_length:
        errors["notes"] = f"Notes must be less than {notes_max_length} characters"

    if any(not cf.name.strip() for cf in form.custom_fields):
        errors["customFields"] = "Field name is required"

    return errors


def form_from_invoice(invoice: Invoice) -> InvoiceForm:
    """Pre-fill an edit form from a stored invoice."""
    return InvoiceForm(
        invoice_number=invoice.invoice_number,
        vendor_name=invoice.vendor_name,
        amount=invoice.amount,
        currency=invoice.currency,
        invoice_date=invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        due_date=invoice.due_date.isoformat() if invoice.due_date else None,
        description=invoice.description,
        status=invoice.status,
        notes=invoice.notes,
        custom_fields=[cf.model_dump() for cf in invoice.custom_fields],
        line_items=[li.model_dump() for li in invoice.line_items],
        reviewers=list(invoice.reviewers),
    )


def merge_update(existing: Invoice, changes: InvoiceUpdateForm) -> InvoiceForm:
    base = form_from_invoice(existing).model_dump()
    base.update(changes.model_dump(exclude_unset=True, exclude_none=True))
    return InvoiceForm.model_validate(base)


def invoice_fields(form: InvoiceForm) -> dict[str, Any]:
    """Typed invoice values for a validated form."""
    return {
        "invoice_number": form.invoice_number.strip(),
        "vendor_name": form.vendor_name.strip(),
        "amount": parse_amount(form.amount),
        "currency": form.currency or "USD",
        "invoice_date": parse_date(form.invoice_date),
        "due_date": parse_date(form.due_date),
        "description": form.description,
        "notes": form.notes,
        "custom_fields": [
            CustomField(id=cf.id or uuid.uuid4().hex, name=cf.name.strip(), value=cf.value)
            for cf in form.custom_fields
        ],
        "line_items": [
            LineItem(description=li.description, quantity=li.quantity, unit_price=li.unit_price)
            for li in form.line_items
        ],
    }


# ---------- double-submit guard ----------

class InFlightSubmissions:
    """In-process registry of submissions currently running. Not durable."""

    def __init__(self):
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def key_for_create(organization_id: str, invoice_number: str) -> str:
        return f"{organization_id}:new:{invoice_number.strip().lower()}"

    @staticmethod
    def key_for_update(organization_id: str, invoice_id: str) -> str:
        return f"{organization_id}:{invoice_id}"

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    @contextmanager
    def claim(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._keys:
                logger.warning("submission_in_progress", key=key)
                raise SubmissionInProgressError(key)
            self._keys.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._keys.discard(key)


# ---------- state machine ----------

class InvoiceSubmission:
    """One create or update submission for the current user."""

    def __init__(
        self,
        repository: InvoiceRepository,
        uploader: AttachmentUploader,
        activity: ActivityLogger,
        current_user: dict,
        organization_id: str,
        notes_max_length: int = DEFAULT_NOTES_MAX_LENGTH,
    ):
        self.repository = repository
        self.uploader = uploader
        self.activity = activity
        self.current_user = current_user
        self.organization_id = organization_id
        self.notes_max_length = notes_max_length

        self.state = SubmissionState.IDLE
        self.history: list[SubmissionState] = [SubmissionState.IDLE]
        self.errors: dict[str, str] = {}
        self.rejected_files: list[RejectedFile] = []
        self.uploaded: list[Attachment] = []
        self.error: Optional[Exception] = None

    @property
    def user_id(self) -> str:
        return self.current_user["user_id"]

    def _transition(self, new_state: SubmissionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid submission transition {self.state.value} -> {new_state.value}")
        logger.debug("submission_transition", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _fail(self, exc: Exception) -> None:
        self.error = exc
        self._transition(SubmissionState.FAILED)

    def _validate(self, form: InvoiceForm) -> None:
        self._transition(SubmissionState.VALIDATING)
        self.errors = validate_invoice_form(form, self.notes_max_length)
        if self.errors:
            self._transition(SubmissionState.IDLE)
            logger.info(
                "invoice_validation_failed",
                organization_id=self.organization_id,
                fields=sorted(self.errors),
            )
            raise InvoiceValidationError(self.errors)

    async def _upload(
        self,
        files: Sequence[PendingFile],
        invoice_id: str,
        on_progress: Optional[ProgressCallback],
    ) -> list[Attachment]:
        self._transition(SubmissionState.UPLOADING_ATTACHMENTS)
        if not files:
            return []
        try:
            result = await self.uploader.upload_batch(
                files, self.organization_id, invoice_id, on_progress=on_progress
            )
        except Exception as e:
            self._fail(e)
            raise
        self.rejected_files = result.rejected
        self.uploaded = result.uploaded
        return result.uploaded

    async def _persist(self, write: Callable[[], Awaitable[Invoice]]) -> Invoice:
        self._transition(SubmissionState.PERSISTING_RECORD)
        try:
            return await write()
        except Exception as e:
            if self.uploaded:
                orphaned = await self.uploader.discard([a.path for a in self.uploaded])
                logger.warning(
                    "submission_compensated",
                    organization_id=self.organization_id,
                    removed=len(self.uploaded) - len(orphaned),
                    orphaned=orphaned,
                )
            self._fail(e)
            raise

    async def _log(self, type: str, action: str, invoice: Invoice, details: dict) -> None:
        self._transition(SubmissionState.LOGGING_ACTIVITY)
        await self.activity.log_activity(
            type=type,
            user_id=self.user_id,
            organization_id=self.organization_id,
            target_id=invoice.id,
            target_type=TARGET_INVOICE,
            details=details,
            action=action,
        )
        self._transition(SubmissionState.DONE)

    async def create(
        self,
        form: InvoiceForm,
        files: Sequence[PendingFile] = (),
        on_progress: Optional[ProgressCallback] = None,
    ) -> Invoice:
        self._validate(form)
        invoice_id = self.repository.new_id(self.organization_id)
        attachments = await self._upload(files, invoice_id, on_progress)

        invoice = Invoice(
            **invoice_fields(form),
            status=form.status or "pending",
            reviewers=form.reviewers,
            attachments=attachments,
            created_by=self.user_id,
            updated_by=self.user_id,
        )
        stored = await self._persist(
            lambda: self.repository.create(self.organization_id, invoice, invoice_id=invoice_id)
        )
        await self._log(
            INVOICE_CREATED,
            CREATE_INVOICE,
            stored,
            {
                "invoiceNumber": stored.invoice_number,
                "vendorName": stored.vendor_name,
                "amount": stored.amount,
                "attachments": len(attachments),
            },
        )
        return stored

    async def update(
        self,
        invoice_id: str,
        changes: InvoiceUpdateForm,
        files: Sequence[PendingFile] = (),
        on_progress: Optional[ProgressCallback] = None,
    ) -> Invoice:
        existing = await self.repository.get(self.organization_id, invoice_id)
        if existing is None:
            raise InvoiceNotFoundError(self.organization_id, invoice_id)

        form = merge_update(existing, changes)
        self._validate(form)
        attachments = await self._upload(files, invoice_id, on_progress)

        submitted = changes.model_dump(exclude_unset=True, exclude_none=True)
        fields = {k: v for k, v in invoice_fields(form).items() if k in submitted}
        if attachments:
            fields["attachments"] = [*existing.attachments, *attachments]
        fields["updated_by"] = self.user_id

        async def _write() -> Invoice:
            written = await self.repository.update_fields(self.organization_id, invoice_id, fields)
            node = {**existing.to_node(), **written}
            return self.repository.decode(self.organization_id, invoice_id, node)

        stored = await self._persist(_write)
        await self._log(
            INVOICE_UPDATED,
            UPDATE_INVOICE,
            stored,
            {
                "invoiceNumber": stored.invoice_number,
                "changedFields": sorted(submitted),
                "attachmentsAdded": len(attachments),
            },
        )
        return stored
