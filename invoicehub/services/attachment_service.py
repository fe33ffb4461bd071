"""
Attachment uploads for invoices.

A batch is validated up front (type, size); rejected files never reach the
blob store and are reported back. Accepted files upload concurrently, one
worker thread each, and the batch is all-or-nothing: if any upload fails the
blobs already written by the batch are deleted before ``UploadBatchError``
is raised.
"""

import asyncio
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Optional, Sequence

import structlog

from invoicehub.exceptions import BlobStorageError, UploadBatchError
from invoicehub.models.invoice import Attachment
from invoicehub.paths import attachment_key
from invoicehub.services.storage import BlobStorage

logger = structlog.get_logger()

DEFAULT_ALLOWED_TYPES = ("application/pdf", "image/jpeg", "image/png", "image/gif")
DEFAULT_MAX_SIZE_MB = 10

# (file_index, file_percent, overall_percent)
ProgressCallback = Callable[[int, float, float], None]


@dataclass
class PendingFile:
    name: str
    content_type: str
    size: int
    stream: BinaryIO


@dataclass
class RejectedFile:
    name: str
    reason: str


@dataclass
class UploadBatchResult:
    uploaded: list[Attachment] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.]", "_", name)


def validate_file(
    file: PendingFile,
    max_size_mb: int = DEFAULT_MAX_SIZE_MB,
    allowed_types: Sequence[str] = DEFAULT_ALLOWED_TYPES,
) -> Optional[str]:
    """Return the rejection reason for ``file``, or None when it may be uploaded."""
    if file.content_type not in allowed_types:
        return f"Invalid file type. Allowed types: {', '.join(allowed_types)}"
    if file.size > max_size_mb * 1024 * 1024:
        return f"File size exceeds maximum limit of {max_size_mb}MB"
    return None


class ProgressTracker:
    """Aggregates byte callbacks from concurrent uploads into percentages."""

    def __init__(self, sizes: list[int], on_progress: Optional[ProgressCallback] = None):
        self._sizes = sizes
        self._sent = [0] * len(sizes)
        self._percent = [0.0] * len(sizes)
        self._on_progress = on_progress
        self._lock = threading.Lock()

    @property
    def overall(self) -> float:
        if not self._percent:
            return 100.0
        return sum(self._percent) / len(self._percent)

    def file_percent(self, index: int) -> float:
        return self._percent[index]

    def callback_for(self, index: int) -> Callable[[int], None]:
        def _on_bytes(bytes_sent: int) -> None:
            with self._lock:
                self._sent[index] += bytes_sent
                size = self._sizes[index]
                percent = min(100.0, self._sent[index] * 100.0 / size) if size else 100.0
                self._percent[index] = percent
                overall = self.overall
            self._report(index, percent, overall)

        return _on_bytes

    def complete(self, index: int) -> None:
        with self._lock:
            self._percent[index] = 100.0
            overall = self.overall
        self._report(index, 100.0, overall)

    def _report(self, index: int, percent: float, overall: float) -> None:
        if self._on_progress is not None:
            self._on_progress(index, percent, overall)


class AttachmentUploader:
    def __init__(
        self,
        storage: BlobStorage,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        allowed_types: Sequence[str] = DEFAULT_ALLOWED_TYPES,
    ):
        self.storage = storage
        self.max_size_mb = max_size_mb
        self.allowed_types = tuple(allowed_types)

    def validate(self, files: Sequence[PendingFile]) -> tuple[list[PendingFile], list[RejectedFile]]:
        accepted, rejected = [], []
        for f in files:
            reason = validate_file(f, self.max_size_mb, self.allowed_types)
            if reason:
                logger.warning("attachment_rejected", name=f.name, reason=reason)
                rejected.append(RejectedFile(name=f.name, reason=reason))
            else:
                accepted.append(f)
        return accepted, rejected

    def _keys_for(self, files: Sequence[PendingFile], organization_id: str, invoice_id: str) -> list[str]:
        millis = int(time.time() * 1000)
        keys, seen = [], set()
        for f in files:
            filename = f"{millis}_{sanitize_filename(f.name)}"
            n = 1
            while filename in seen:
                filename = f"{millis}_{n}_{sanitize_filename(f.name)}"
                n += 1
            seen.add(filename)
            keys.append(attachment_key(organization_id, invoice_id, filename))
        return keys

    def _upload_one(self, index: int, file: PendingFile, key: str, tracker: ProgressTracker) -> Attachment:
        url = self.storage.get_url(key)
        if file.stream.seekable():
            file.stream.seek(0)
        self.storage.upload(
            file.stream, key, content_type=file.content_type, on_bytes=tracker.callback_for(index)
        )
        tracker.complete(index)
        return Attachment(
            name=file.name,
            type=file.content_type,
            size=file.size,
            url=url,
            path=key,
            uploaded_at=datetime.now(timezone.utc),
        )

    async def upload_batch(
        self,
        files: Sequence[PendingFile],
        organization_id: str,
        invoice_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadBatchResult:
        accepted, rejected = self.validate(files)
        if not accepted:
            return UploadBatchResult(uploaded=[], rejected=rejected)

        keys = self._keys_for(accepted, organization_id, invoice_id)
        tracker = ProgressTracker([f.size for f in accepted], on_progress)
        results = await asyncio.gather(
            *[
                asyncio.to_thread(self._upload_one, i, f, keys[i], tracker)
                for i, f in enumerate(accepted)
            ],
            return_exceptions=True,
        )

        failed = {
            accepted[i].name: str(r) for i, r in enumerate(results) if isinstance(r, BaseException)
        }
        if failed:
            written = [r.path for r in results if isinstance(r, Attachment)]
            orphaned = await self.discard(written)
            logger.error(
                "attachment_batch_failed",
                invoice_id=invoice_id,
                failed=sorted(failed),
                rolled_back=len(written) - len(orphaned),
            )
            raise UploadBatchError(failed, orphaned)

        logger.info(
            "attachment_batch_uploaded",
            invoice_id=invoice_id,
            uploaded=len(results),
            rejected=len(rejected),
        )
        return UploadBatchResult(uploaded=list(results), rejected=rejected)

    async def discard(self, paths: Sequence[str]) -> list[str]:
        """Best-effort delete of ``paths``; returns the ones that could not be removed."""
        orphaned = []
        for path in paths:
            try:
                await asyncio.to_thread(self.storage.delete, path)
            except BlobStorageError as e:
                logger.error("attachment_discard_failed", path=path, error=e.message)
                orphaned.append(path)
        return orphaned

    async def remove_attachment(self, path: str) -> None:
        await asyncio.to_thread(self.storage.delete, path)
        logger.info("attachment_removed", path=path)
