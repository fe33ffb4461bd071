"""
Explicit wiring of the store, blob storage and services.

``build_context`` runs once in the application lifespan; handlers receive the
result through ``Depends(get_context)`` and tests build their own.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
import structlog

from invoicehub.config import Settings
from invoicehub.services.activity_service import ActivityLogger
from invoicehub.services.attachment_service import AttachmentUploader
from invoicehub.services.invoice_repository import InvoiceRepository
from invoicehub.services.invoice_service import InvoiceService
from invoicehub.services.invoice_workflow import InFlightSubmissions, InvoiceSubmission
from invoicehub.services.notification_service import NotificationService
from invoicehub.services.organization_service import OrganizationService
from invoicehub.services.realtime_db import RealtimeDB
from invoicehub.services.storage import BlobStorage
from invoicehub.services.tree_store import FirebaseTreeBackend, MemoryTreeBackend, TreeBackend
from invoicehub.services.user_service import UserService

logger = structlog.get_logger()


@dataclass
class AppContext:
    db: RealtimeDB
    storage: BlobStorage
    uploader: AttachmentUploader
    activity: ActivityLogger
    invoices: InvoiceRepository
    invoice_service: InvoiceService
    submissions: InFlightSubmissions
    users: UserService
    organizations: OrganizationService
    notifications: NotificationService
    notes_max_length: int = 1000
    default_page_size: int = 10

    def new_submission(self, current_user: dict, organization_id: str) -> InvoiceSubmission:
        return InvoiceSubmission(
            repository=self.invoices,
            uploader=self.uploader,
            activity=self.activity,
            current_user=current_user,
            organization_id=organization_id,
            notes_max_length=self.notes_max_length,
        )


def build_backend(settings: Settings, firebase_app=None) -> TreeBackend:
    if settings.STORE_BACKEND == "firebase":
        if firebase_app is None:
            raise RuntimeError("STORE_BACKEND=firebase requires Firebase credentials")
        return FirebaseTreeBackend(firebase_app)
    if settings.STORE_BACKEND != "memory":
        raise RuntimeError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
    return MemoryTreeBackend()


def build_context(
    settings: Settings,
    backend: Optional[TreeBackend] = None,
    storage: Optional[BlobStorage] = None,
    firebase_app=None,
) -> AppContext:
    db = RealtimeDB(backend or build_backend(settings, firebase_app))
    storage = storage or BlobStorage.from_settings(settings)
    uploader = AttachmentUploader(
        storage,
        max_size_mb=settings.MAX_UPLOAD_SIZE_MB,
        allowed_types=settings.allowed_attachment_types_list,
    )
    activity = ActivityLogger(db)
    invoices = InvoiceRepository(db)
    users = UserService(db)
    organizations = OrganizationService(db, users)
    notifications = NotificationService(db)

    logger.info(
        "context_built",
        store_backend=type(db.backend).__name__,
        bucket=storage.bucket,
    )
    return AppContext(
        db=db,
        storage=storage,
        uploader=uploader,
        activity=activity,
        invoices=invoices,
        invoice_service=InvoiceService(invoices, uploader, activity, organizations, notifications),
        submissions=InFlightSubmissions(),
        users=users,
        organizations=organizations,
        notifications=notifications,
        notes_max_length=settings.NOTES_MAX_LENGTH,
        default_page_size=settings.DEFAULT_PAGE_SIZE,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
