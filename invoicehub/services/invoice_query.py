"""In-process filtering, search, sorting and paging over an organization's invoices."""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence

from invoicehub.models.invoice import Invoice

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
EPOCH_DATE = date(1970, 1, 1)

SEARCH_FIELDS = ("invoice_number", "vendor_name", "description", "notes")

DATETIME_FIELDS = {"createdAt": "created_at", "updatedAt": "updated_at"}
DATE_FIELDS = {"invoiceDate": "invoice_date", "dueDate": "due_date"}
NUMERIC_FIELDS = {"amount": "amount"}
TEXT_FIELDS = {
    "invoiceNumber": "invoice_number",
    "vendorName": "vendor_name",
    "status": "status",
}
SORTABLE_FIELDS = tuple({**DATETIME_FIELDS, **DATE_FIELDS, **NUMERIC_FIELDS, **TEXT_FIELDS})


@dataclass
class InvoicePage:
    items: list[Invoice]
    total: int
    page: int
    page_size: int


def filter_invoices(
    invoices: Sequence[Invoice], status: Optional[str] = None, search: Optional[str] = None
) -> list[Invoice]:
    result = list(invoices)
    if status and status != "all":
        result = [inv for inv in result if inv.status == status]
    term = (search or "").strip().lower()
    if term:
        result = [
            inv
            for inv in result
            if any(term in (getattr(inv, f) or "").lower() for f in SEARCH_FIELDS)
        ]
    return result


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def sort_key(sort_field: str) -> Callable[[Invoice], Any]:
    if sort_field in DATETIME_FIELDS:
        attr = DATETIME_FIELDS[sort_field]
        return lambda inv: _aware(getattr(inv, attr)) if getattr(inv, attr) else EPOCH
    if sort_field in DATE_FIELDS:
        attr = DATE_FIELDS[sort_field]
        return lambda inv: getattr(inv, attr) or EPOCH_DATE
    if sort_field in NUMERIC_FIELDS:
        return lambda inv: inv.amount or 0
    if sort_field in TEXT_FIELDS:
        attr = TEXT_FIELDS[sort_field]
        return lambda inv: str(getattr(inv, attr) or "").casefold()
    raise ValueError(f"Unsupported sort field: {sort_field}")


def sort_invoices(
    invoices: Sequence[Invoice], sort_field: str = "createdAt", sort_direction: str = "desc"
) -> list[Invoice]:
    return sorted(invoices, key=sort_key(sort_field), reverse=sort_direction == "desc")


def paginate(items: Sequence[Any], page: int, page_size: int) -> list[Any]:
    start = page * page_size
    return list(items[start : start + page_size])


def query_invoices(
    invoices: Sequence[Invoice],
    status: Optional[str] = None,
    search: Optional[str] = None,
    sort_field: str = "createdAt",
    sort_direction: str = "desc",
    page: int = 0,
    page_size: int = 10,
) -> InvoicePage:
    matched = sort_invoices(filter_invoices(invoices, status, search), sort_field, sort_direction)
    return InvoicePage(
        items=paginate(matched, page, page_size),
        total=len(matched),
        page=page,
        page_size=page_size,
    )
