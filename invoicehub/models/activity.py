from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from invoicehub.models.base import StoreModel

# Labels stored in ``type``; kept verbatim for records written by older clients.
INVOICE_CREATED = "Invoice created"
INVOICE_UPDATED = "Invoice updated"
INVOICE_DELETED = "Invoice deleted"
COMMENT_ADDED = "Comment added"
INVOICE_REVIEWED = "Invoice reviewed"
STATUS_CHANGED = "Status changed"
ATTACHMENT_ADDED = "Attachment added"
ATTACHMENT_REMOVED = "Attachment removed"
USER_ASSIGNED = "User assigned"

# Machine-readable codes stored in ``action``
CREATE_INVOICE = "create_invoice"
UPDATE_INVOICE = "update_invoice"
DELETE_INVOICE = "delete_invoice"
REVIEW_INVOICE = "review_invoice"
APPROVE_INVOICE = "approve_invoice"
REJECT_INVOICE = "reject_invoice"
UPLOAD_ATTACHMENT = "upload_attachment"
DELETE_ATTACHMENT = "delete_attachment"
ADD_COMMENT = "add_comment"

TARGET_INVOICE = "invoice"


class ActivityLogEntry(StoreModel):
    id: Optional[str] = None
    type: str
    action: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
