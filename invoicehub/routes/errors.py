from typing import Any

from fastapi import HTTPException, status

from invoicehub.exceptions import (
    BlobStorageError,
    InsufficientPermissionsError,
    InvoiceHubError,
    InvoiceNotFoundError,
    InvoiceValidationError,
    MembershipError,
    StoreError,
    SubmissionInProgressError,
    UploadBatchError,
)

_STATUS_BY_TYPE = [
    (InvoiceValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvoiceNotFoundError, status.HTTP_404_NOT_FOUND),
    (SubmissionInProgressError, status.HTTP_409_CONFLICT),
    (MembershipError, status.HTTP_409_CONFLICT),
    (InsufficientPermissionsError, status.HTTP_403_FORBIDDEN),
    (UploadBatchError, status.HTTP_502_BAD_GATEWAY),
    (BlobStorageError, status.HTTP_502_BAD_GATEWAY),
    (StoreError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message, **extra}},
    )


def to_http_exception(exc: InvoiceHubError) -> HTTPException:
    status_code = next(
        (s for t, s in _STATUS_BY_TYPE if isinstance(exc, t)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, InvoiceValidationError):
        return http_error(status_code, exc.code, exc.message, fields=exc.fields)
    if isinstance(exc, UploadBatchError):
        return http_error(
            status_code, exc.code, exc.message,
            failed=exc.failed, orphanedPaths=exc.orphaned_paths,
        )
    if isinstance(exc, StoreError):
        code = "STORE_READ_FAILED" if exc.operation in ("get", "decode") else "STORE_WRITE_FAILED"
        return http_error(status_code, code, "Could not reach the invoice store")
    return http_error(status_code, exc.code, exc.message)
