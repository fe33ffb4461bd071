from datetime import datetime
from typing import Annotated, Literal, Optional, get_args

from pydantic import AliasChoices, BeforeValidator, Field

from invoicehub.models.base import IsoDate, StoreModel, as_list

InvoiceStatus = Literal["draft", "pending", "approved", "rejected", "paid"]
INVOICE_STATUSES: tuple[str, ...] = get_args(InvoiceStatus)


class CustomField(StoreModel):
    id: str
    name: str
    value: str = ""


class LineItem(StoreModel):
    description: str = ""
    quantity: float = 0
    unit_price: float = 0


class Attachment(StoreModel):
    name: str
    type: str
    size: int
    url: str
    path: str
    # Older records used createdAt for the upload time
    uploaded_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("uploadedAt", "uploaded_at", "createdAt"),
        serialization_alias="uploadedAt",
    )


class Invoice(StoreModel):
    id: Optional[str] = None
    organization_id: Optional[str] = None
    invoice_number: str = ""
    vendor_name: str = ""
    amount: float = 0
    currency: str = "USD"
    invoice_date: Optional[IsoDate] = None
    due_date: Optional[IsoDate] = None
    description: str = ""
    status: InvoiceStatus = "pending"
    notes: str = ""
    custom_fields: Annotated[list[CustomField], BeforeValidator(as_list)] = Field(default_factory=list)
    line_items: Annotated[list[LineItem], BeforeValidator(as_list)] = Field(default_factory=list)
    attachments: Annotated[list[Attachment], BeforeValidator(as_list)] = Field(default_factory=list)
    reviewers: Annotated[list[str], BeforeValidator(as_list)] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    status_updated_by: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    status_note: Optional[str] = None
