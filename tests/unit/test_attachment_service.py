"""
Unit tests for invoicehub/services/attachment_service.py

Tests: validate_file (type before size), rejected files never uploaded,
       blob key layout, progress reporting, all-or-nothing batches.
"""

import re

import pytest

from conftest import ORG_ID, _fake_upload, make_file
from invoicehub.exceptions import BlobStorageError, UploadBatchError
from invoicehub.services.attachment_service import (
    AttachmentUploader,
    ProgressTracker,
    sanitize_filename,
    validate_file,
)


def _uploader(storage, max_size_mb: int = 10) -> AttachmentUploader:
    return AttachmentUploader(storage, max_size_mb=max_size_mb)


# ---------------------------------------------------------------------------
# validate_file
# ---------------------------------------------------------------------------


def test_validate_accepts_pdf_within_limit():
    assert validate_file(make_file()) is None


def test_validate_rejects_disallowed_type():
    reason = validate_file(make_file("notes.txt", "text/plain"))
    assert reason.startswith("Invalid file type. Allowed types: application/pdf")


def test_validate_rejects_oversized_file():
    reason = validate_file(make_file(size=11 * 1024 * 1024), max_size_mb=10)
    assert reason == "File size exceeds maximum limit of 10MB"


def test_validate_checks_type_before_size():
    reason = validate_file(make_file("big.exe", "application/x-msdownload", size=50 * 1024 * 1024))
    assert reason.startswith("Invalid file type")


def test_sanitize_filename_replaces_unsafe_characters():
    assert sanitize_filename("März invoice (1).pdf") == "M_rz_invoice__1_.pdf"


# ---------------------------------------------------------------------------
# upload_batch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rejected_files_are_reported_and_never_uploaded(storage):
    files = [
        make_file("scan.pdf"),
        make_file("script.sh", "text/x-shellscript"),
        make_file("huge.png", "image/png", size=20 * 1024 * 1024),
    ]

    result = await _uploader(storage).upload_batch(files, ORG_ID, "inv-1")

    assert [a.name for a in result.uploaded] == ["scan.pdf"]
    assert [r.name for r in result.rejected] == ["script.sh", "huge.png"]
    uploaded_keys = [c.args[1] for c in storage.upload.call_args_list]
    assert len(uploaded_keys) == 1
    assert uploaded_keys[0].endswith("_scan.pdf")


@pytest.mark.asyncio
async def test_all_rejected_makes_no_storage_calls(storage):
    result = await _uploader(storage).upload_batch([make_file("a.txt", "text/plain")], ORG_ID, "inv-1")

    assert result.uploaded == []
    storage.upload.assert_not_called()


@pytest.mark.asyncio
async def test_attachment_metadata_and_key_layout(storage):
    result = await _uploader(storage).upload_batch([make_file("My Scan.pdf")], ORG_ID, "inv-1")

    attachment = result.uploaded[0]
    assert re.fullmatch(
        rf"organizations/{ORG_ID}/invoices/inv-1/attachments/\d+_My_Scan\.pdf", attachment.path
    )
    assert attachment.url == f"https://blobs.test/{attachment.path}"
    assert attachment.type == "application/pdf"
    assert attachment.size == len(b"%PDF-1.4 test document")
    assert attachment.uploaded_at is not None


@pytest.mark.asyncio
async def test_same_name_files_get_distinct_keys(storage):
    result = await _uploader(storage).upload_batch(
        [make_file("receipt.pdf"), make_file("receipt.pdf")], ORG_ID, "inv-1"
    )

    paths = [a.path for a in result.uploaded]
    assert len(set(paths)) == 2


@pytest.mark.asyncio
async def test_progress_reaches_one_hundred_for_every_file(storage):
    events = []

    await _uploader(storage).upload_batch(
        [make_file("a.pdf"), make_file("b.png", "image/png", data=b"\x89PNG" * 10)],
        ORG_ID,
        "inv-1",
        on_progress=lambda index, percent, overall: events.append((index, percent, overall)),
    )

    final_by_file = {}
    for index, percent, _ in events:
        final_by_file[index] = percent
    assert final_by_file == {0: 100.0, 1: 100.0}
    assert max(overall for _, _, overall in events) == 100.0


def test_progress_tracker_averages_files():
    tracker = ProgressTracker([100, 300])

    tracker.callback_for(0)(50)
    tracker.callback_for(1)(300)

    assert tracker.file_percent(0) == 50.0
    assert tracker.overall == 75.0


@pytest.mark.asyncio
async def test_failed_upload_rolls_back_the_batch(storage):
    def _upload(fileobj, key, content_type, on_bytes=None):
        if key.endswith("broken.pdf"):
            raise BlobStorageError(key, "connection reset")
        return _fake_upload(fileobj, key, content_type, on_bytes)

    storage.upload.side_effect = _upload

    with pytest.raises(UploadBatchError) as exc_info:
        await _uploader(storage).upload_batch(
            [make_file("good.pdf"), make_file("broken.pdf")], ORG_ID, "inv-1"
        )

    assert list(exc_info.value.failed) == ["broken.pdf"]
    assert exc_info.value.orphaned_paths == []
    deleted = [c.args[0] for c in storage.delete.call_args_list]
    assert len(deleted) == 1
    assert deleted[0].endswith("_good.pdf")


@pytest.mark.asyncio
async def test_rollback_failures_are_reported_as_orphans(storage):
    def _upload(fileobj, key, content_type, on_bytes=None):
        if key.endswith("broken.pdf"):
            raise BlobStorageError(key, "connection reset")
        return _fake_upload(fileobj, key, content_type, on_bytes)

    def _delete(key):
        raise BlobStorageError(key, "access denied")

    storage.upload.side_effect = _upload
    storage.delete.side_effect = _delete

    with pytest.raises(UploadBatchError) as exc_info:
        await _uploader(storage).upload_batch(
            [make_file("good.pdf"), make_file("broken.pdf")], ORG_ID, "inv-1"
        )

    assert len(exc_info.value.orphaned_paths) == 1
    assert exc_info.value.orphaned_paths[0].endswith("_good.pdf")


@pytest.mark.asyncio
async def test_url_failure_uploads_nothing_for_that_file(storage):
    def _get_url(key):
        if key.endswith("second.pdf"):
            raise BlobStorageError(key, "signing failed")
        return f"https://blobs.test/{key}"

    storage.get_url.side_effect = _get_url

    with pytest.raises(UploadBatchError) as exc_info:
        await _uploader(storage).upload_batch(
            [make_file("first.pdf"), make_file("second.pdf")], ORG_ID, "inv-1"
        )

    assert list(exc_info.value.failed) == ["second.pdf"]
    uploaded = [c.args[1] for c in storage.upload.call_args_list]
    deleted = [c.args[0] for c in storage.delete.call_args_list]
    assert len(uploaded) == 1
    assert uploaded[0].endswith("_first.pdf")
    assert deleted == uploaded
