"""
Admin and reviewer actions on existing invoices.

Status changes, reviewer assignment, deletion and attachment add/remove.
Each action writes the record first and then logs one activity entry.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from invoicehub.exceptions import (
    BlobStorageError,
    InsufficientPermissionsError,
    InvoiceNotFoundError,
    InvoiceValidationError,
)
from invoicehub.models.activity import (
    APPROVE_INVOICE,
    ATTACHMENT_ADDED,
    ATTACHMENT_REMOVED,
    DELETE_ATTACHMENT,
    DELETE_INVOICE,
    INVOICE_DELETED,
    REJECT_INVOICE,
    STATUS_CHANGED,
    TARGET_INVOICE,
    UPDATE_INVOICE,
    UPLOAD_ATTACHMENT,
    USER_ASSIGNED,
)
from invoicehub.models.invoice import INVOICE_STATUSES, Invoice
from invoicehub.services.activity_service import ActivityLogger
from invoicehub.services.attachment_service import (
    AttachmentUploader,
    PendingFile,
    ProgressCallback,
    UploadBatchResult,
)
from invoicehub.services.invoice_repository import InvoiceRepository
from invoicehub.services.notification_service import NotificationService
from invoicehub.services.organization_service import OrganizationService

logger = structlog.get_logger()

# Statuses a reviewer may set on an invoice assigned to them
REVIEWER_STATUSES = ("approved", "rejected")

_STATUS_ACTIONS = {"approved": APPROVE_INVOICE, "rejected": REJECT_INVOICE}


@dataclass
class DeleteResult:
    invoice_id: str
    attachments_purged: bool = False
    orphaned_paths: list[str] = field(default_factory=list)


class InvoiceService:
    def __init__(
        self,
        repository: InvoiceRepository,
        uploader: AttachmentUploader,
        activity: ActivityLogger,
        organizations: OrganizationService,
        notifications: NotificationService,
    ):
        self.repository = repository
        self.uploader = uploader
        self.activity = activity
        self.organizations = organizations
        self.notifications = notifications

    async def _require(self, organization_id: str, invoice_id: str) -> Invoice:
        invoice = await self.repository.get(organization_id, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(organization_id, invoice_id)
        return invoice

    async def _log(
        self, type: str, action: str, current_user: dict, organization_id: str,
        invoice_id: str, details: dict,
    ) -> None:
        await self.activity.log_activity(
            type=type,
            user_id=current_user["user_id"],
            organization_id=organization_id,
            target_id=invoice_id,
            target_type=TARGET_INVOICE,
            details=details,
            action=action,
        )

    async def update_invoice_status(
        self,
        organization_id: str,
        invoice_id: str,
        status: str,
        current_user: dict,
        note: Optional[str] = None,
    ) -> Invoice:
        """
        Set the status and log a ``Status changed`` entry.

        Every call is logged, including one that repeats the current status.
        """
        if status not in INVOICE_STATUSES:
            raise InvoiceValidationError({"status": f"Unknown status: {status}"})

        invoice = await self._require(organization_id, invoice_id)
        if current_user.get("role") != "admin":
            if status not in REVIEWER_STATUSES or current_user["user_id"] not in invoice.reviewers:
                raise InsufficientPermissionsError("Reviewers may only approve or reject assigned invoices")

        previous = invoice.status
        written = await self.repository.update_fields(
            organization_id,
            invoice_id,
            {
                "status": status,
                "status_updated_by": current_user["user_id"],
                "status_updated_at": datetime.now(timezone.utc),
                "status_note": note,
            },
        )
        await self._log(
            STATUS_CHANGED,
            _STATUS_ACTIONS.get(status, UPDATE_INVOICE),
            current_user,
            organization_id,
            invoice_id,
            {"from": previous, "to": status, "note": note or ""},
        )
        logger.info(
            "invoice_status_changed",
            organization_id=organization_id,
            invoice_id=invoice_id,
            from_status=previous,
            to_status=status,
        )

        if invoice.created_by and invoice.created_by != current_user["user_id"]:
            await self.notifications.create_notification(
                invoice.created_by,
                f"Invoice {invoice.invoice_number} was marked {status}",
                type="success" if status in ("approved", "paid") else "info",
                metadata={"invoiceId": invoice_id, "status": status},
            )
        return self.repository.decode(organization_id, invoice_id, {**invoice.to_node(), **written})

    async def assign_reviewers(
        self,
        organization_id: str,
        invoice_id: str,
        reviewers: Sequence[str],
        current_user: dict,
    ) -> Invoice:
        invoice = await self._require(organization_id, invoice_id)
        org = await self.organizations.get(organization_id)
        unique = list(dict.fromkeys(reviewers))
        unknown = [uid for uid in unique if org is None or not org.is_member(uid)]
        if unknown:
            raise InvoiceValidationError(
                {"reviewers": f"Not members of this organization: {', '.join(unknown)}"}
            )

        written = await self.repository.update_fields(
            organization_id, invoice_id,
            {"reviewers": unique, "updated_by": current_user["user_id"]},
        )
        added = [uid for uid in unique if uid not in invoice.reviewers]
        await self._log(
            USER_ASSIGNED,
            UPDATE_INVOICE,
            current_user,
            organization_id,
            invoice_id,
            {"reviewers": unique, "added": added},
        )
        await self.notifications.notify_many(
            added,
            f"You were assigned to review invoice {invoice.invoice_number}",
            metadata={"invoiceId": invoice_id},
        )
        return self.repository.decode(organization_id, invoice_id, {**invoice.to_node(), **written})

    async def delete_invoice(
        self,
        organization_id: str,
        invoice_id: str,
        current_user: dict,
        purge_attachments: bool = False,
    ) -> DeleteResult:
        """
        Remove the invoice node and log ``Invoice deleted``.

        Attachment blobs are left in place unless ``purge_attachments`` is
        set; purge failures are reported as ``orphaned_paths``.
        """
        invoice = await self._require(organization_id, invoice_id)
        await self.repository.delete(organization_id, invoice_id)

        result = DeleteResult(invoice_id=invoice_id)
        paths = [a.path for a in invoice.attachments]
        if purge_attachments and paths:
            result.orphaned_paths = await self.uploader.discard(paths)
            result.attachments_purged = True
        elif paths:
            logger.info(
                "invoice_attachments_retained",
                organization_id=organization_id,
                invoice_id=invoice_id,
                count=len(paths),
            )

        await self._log(
            INVOICE_DELETED,
            DELETE_INVOICE,
            current_user,
            organization_id,
            invoice_id,
            {
                "invoiceNumber": invoice.invoice_number,
                "attachments": len(paths),
                "attachmentsPurged": result.attachments_purged,
            },
        )
        return result

    async def add_attachments(
        self,
        organization_id: str,
        invoice_id: str,
        files: Sequence[PendingFile],
        current_user: dict,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[Invoice, UploadBatchResult]:
        invoice = await self._require(organization_id, invoice_id)
        result = await self.uploader.upload_batch(
            files, organization_id, invoice_id, on_progress=on_progress
        )
        if not result.uploaded:
            return invoice, result

        try:
            written = await self.repository.update_fields(
                organization_id, invoice_id,
                {
                    "attachments": [*invoice.attachments, *result.uploaded],
                    "updated_by": current_user["user_id"],
                },
            )
        except Exception:
            await self.uploader.discard([a.path for a in result.uploaded])
            raise

        await self._log(
            ATTACHMENT_ADDED,
            UPLOAD_ATTACHMENT,
            current_user,
            organization_id,
            invoice_id,
            {"names": [a.name for a in result.uploaded]},
        )
        updated = self.repository.decode(organization_id, invoice_id, {**invoice.to_node(), **written})
        return updated, result

    async def remove_attachment(
        self, organization_id: str, invoice_id: str, path: str, current_user: dict
    ) -> Invoice:
        invoice = await self._require(organization_id, invoice_id)
        remaining = [a for a in invoice.attachments if a.path != path]
        if len(remaining) == len(invoice.attachments):
            raise InvoiceValidationError({"path": "Attachment not found on this invoice"})

        written = await self.repository.update_fields(
            organization_id, invoice_id,
            {"attachments": remaining, "updated_by": current_user["user_id"]},
        )
        try:
            await self.uploader.remove_attachment(path)
        except BlobStorageError as e:
            # The record no longer lists it; the blob is left orphaned
            logger.warning(
                "attachment_blob_orphaned",
                organization_id=organization_id,
                invoice_id=invoice_id,
                path=path,
                error=e.message,
            )
        removed = next(a for a in invoice.attachments if a.path == path)
        await self._log(
            ATTACHMENT_REMOVED,
            DELETE_ATTACHMENT,
            current_user,
            organization_id,
            invoice_id,
            {"name": removed.name, "path": path},
        )
        return self.repository.decode(organization_id, invoice_id, {**invoice.to_node(), **written})
