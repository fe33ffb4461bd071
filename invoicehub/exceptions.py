"""Domain errors raised by the services layer.

Routes translate these into HTTPException payloads of the form
``{"error": {"code": ..., "message": ...}}``.
"""

from typing import Optional


class InvoiceHubError(Exception):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreError(InvoiceHubError):
    """A read or write against the realtime tree failed."""

    code = "STORE_ERROR"

    def __init__(self, operation: str, path: str, message: str):
        super().__init__(f"{operation} failed at {path}: {message}")
        self.operation = operation
        self.path = path


class BlobStorageError(InvoiceHubError):
    code = "BLOB_STORAGE_ERROR"

    def __init__(self, key: str, message: str):
        super().__init__(f"blob operation failed for {key}: {message}")
        self.key = key


class InvoiceValidationError(InvoiceHubError):
    code = "VALIDATION_ERROR"

    def __init__(self, fields: dict[str, str]):
        super().__init__("Invoice validation failed")
        self.fields = fields


class UploadBatchError(InvoiceHubError):
    """One or more accepted files failed to upload; the batch was rolled back."""

    code = "UPLOAD_FAILED"

    def __init__(self, failed: dict[str, str], orphaned_paths: Optional[list[str]] = None):
        names = ", ".join(sorted(failed))
        super().__init__(f"Failed to upload: {names}")
        self.failed = failed
        self.orphaned_paths = orphaned_paths or []


class InvoiceNotFoundError(InvoiceHubError):
    code = "INVOICE_NOT_FOUND"

    def __init__(self, organization_id: str, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found")
        self.organization_id = organization_id
        self.invoice_id = invoice_id


class SubmissionInProgressError(InvoiceHubError):
    code = "SUBMISSION_IN_PROGRESS"

    def __init__(self, key: str):
        super().__init__("This invoice is already being submitted")
        self.key = key


class MembershipError(InvoiceHubError):
    """A membership change would leave the organization without an admin."""

    code = "MEMBERSHIP_INVALID"


class InsufficientPermissionsError(InvoiceHubError):
    code = "INSUFFICIENT_PERMISSIONS"
