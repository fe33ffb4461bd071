from typing import List, Optional, Union
from pydantic import Field

from invoicehub.models.invoice import Invoice, InvoiceStatus
from invoicehub.schemas.common import ApiModel


class CustomFieldInput(ApiModel):
    id: Optional[str] = None
    name: str = ""
    value: str = ""


class LineItemInput(ApiModel):
    description: str = ""
    quantity: float = Field(default=1, ge=0)
    unit_price: float = Field(default=0, ge=0)


class InvoiceForm(ApiModel):
    """Create form. Loose types: the submission flow reports field errors itself."""

    invoice_number: str = ""
    vendor_name: str = ""
    amount: Optional[Union[float, str]] = None
    currency: str = "USD"
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    description: str = ""
    status: Optional[InvoiceStatus] = None
    notes: str = ""
    custom_fields: List[CustomFieldInput] = Field(default_factory=list)
    line_items: List[LineItemInput] = Field(default_factory=list)
    reviewers: List[str] = Field(default_factory=list)


class InvoiceUpdateForm(ApiModel):
    """Edit form. Only the fields present in the request are changed."""

    invoice_number: Optional[str] = None
    vendor_name: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    currency: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    custom_fields: Optional[List[CustomFieldInput]] = None
    line_items: Optional[List[LineItemInput]] = None


class RejectedFileResponse(ApiModel):
    name: str
    reason: str


class SubmissionResponse(ApiModel):
    invoice: Invoice
    rejected_files: List[RejectedFileResponse] = Field(default_factory=list)
    state: str


class InvoiceStatusUpdate(ApiModel):
    status: InvoiceStatus
    note: Optional[str] = Field(default=None, max_length=1000)


class ReviewerAssignment(ApiModel):
    reviewers: List[str] = Field(default_factory=list)


class InvoiceDeleteResponse(ApiModel):
    id: str
    deleted: bool = True
    attachments_purged: bool = False
    orphaned_paths: List[str] = Field(default_factory=list)
