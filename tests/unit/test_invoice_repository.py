"""
Unit tests for invoicehub/services/invoice_repository.py

Tests: write/read round trip, organization taken from the path, tolerant
       decoding of records written by older clients, partial updates and
       subscriptions.
"""

from datetime import date, datetime, timezone

import pytest

from conftest import ORG_ID
from invoicehub.exceptions import StoreError
from invoicehub.models.invoice import Attachment, CustomField, Invoice, LineItem
from invoicehub.paths import invoice_path, invoices_path


def _invoice() -> Invoice:
    return Invoice(
        invoice_number="INV-2024-017",
        vendor_name="Globex",
        amount=1299.95,
        currency="EUR",
        invoice_date=date(2024, 5, 2),
        due_date=date(2024, 6, 1),
        description="Cloud hosting",
        status="approved",
        notes="Paid by card",
        custom_fields=[CustomField(id="cf1", name="PO", value="PO-88")],
        line_items=[LineItem(description="VM hours", quantity=2, unit_price=649.975)],
        attachments=[
            Attachment(
                name="inv.pdf",
                type="application/pdf",
                size=2048,
                url="https://blobs.test/inv.pdf",
                path=f"organizations/{ORG_ID}/invoices/x/attachments/1_inv.pdf",
                uploaded_at=datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc),
            )
        ],
        reviewers=["reviewer-1"],
        created_by="admin-1",
        updated_by="admin-1",
    )


@pytest.mark.asyncio
async def test_round_trip_preserves_every_field(ctx):
    original = _invoice()

    created = await ctx.invoices.create(ORG_ID, original)
    loaded = await ctx.invoices.get(ORG_ID, created.id)

    expected = original.model_copy(update={"id": created.id, "organization_id": ORG_ID})
    assert loaded.model_dump(exclude={"created_at", "updated_at"}) == expected.model_dump(
        exclude={"created_at", "updated_at"}
    )
    assert loaded.created_at is not None
    assert loaded.updated_at is not None


@pytest.mark.asyncio
async def test_create_with_explicit_id(ctx, backend):
    created = await ctx.invoices.create(ORG_ID, _invoice(), invoice_id="inv-42")

    assert created.id == "inv-42"
    assert backend.get(invoice_path(ORG_ID, "inv-42"))["id"] == "inv-42"


@pytest.mark.asyncio
async def test_organization_comes_from_path(ctx, backend):
    backend.set(invoice_path(ORG_ID, "i1"), {"invoiceNumber": "A-1", "organizationId": "someone-else"})

    invoice = await ctx.invoices.get(ORG_ID, "i1")

    assert invoice.organization_id == ORG_ID
    assert invoice.id == "i1"


@pytest.mark.asyncio
async def test_decodes_legacy_shapes(ctx, backend):
    backend.set(
        invoice_path(ORG_ID, "legacy"),
        {
            "invoiceNumber": "OLD-1",
            "amount": 10,
            "invoiceDate": "2023-11-05T00:00:00.000Z",
            "dueDate": "",
            "reviewers": {"0": "u1", "1": "u2"},
            "attachments": {
                "0": {
                    "name": "a.pdf",
                    "type": "application/pdf",
                    "size": 5,
                    "url": "https://blobs.test/a.pdf",
                    "path": "p/a.pdf",
                    "createdAt": "2023-11-05T10:00:00Z",
                }
            },
        },
    )

    invoice = await ctx.invoices.get(ORG_ID, "legacy")

    assert invoice.invoice_date == date(2023, 11, 5)
    assert invoice.due_date is None
    assert invoice.reviewers == ["u1", "u2"]
    assert invoice.attachments[0].uploaded_at == datetime(2023, 11, 5, 10, 0, tzinfo=timezone.utc)
    assert invoice.status == "pending"


@pytest.mark.asyncio
async def test_list_skips_unreadable_records(ctx, backend):
    backend.set(invoices_path(ORG_ID), {
        "good": {"invoiceNumber": "G-1", "amount": 5},
        "bad": {"invoiceNumber": "B-1", "amount": "not a number"},
        "scalar": "garbage",
    })

    invoices = await ctx.invoices.list(ORG_ID)

    assert [i.id for i in invoices] == ["good"]


@pytest.mark.asyncio
async def test_missing_invoice_is_none(ctx):
    assert await ctx.invoices.get(ORG_ID, "nope") is None
    assert await ctx.invoices.list(ORG_ID) == []


@pytest.mark.asyncio
async def test_update_fields_merges_and_clears(ctx, backend):
    created = await ctx.invoices.create(ORG_ID, _invoice())

    written = await ctx.invoices.update_fields(
        ORG_ID, created.id, {"status": "paid", "notes": None, "id": "hijack"}
    )

    node = backend.get(invoice_path(ORG_ID, created.id))
    assert written["status"] == "paid"
    assert "updatedAt" in written
    assert node["status"] == "paid"
    assert "notes" not in node
    assert node["id"] == created.id
    assert node["vendorName"] == "Globex"


@pytest.mark.asyncio
async def test_subscribe_to_collection_and_single_invoice(ctx):
    lists, singles = [], []
    created = await ctx.invoices.create(ORG_ID, _invoice())

    collection_sub = await ctx.invoices.subscribe(ORG_ID, lists.append)
    single_sub = await ctx.invoices.subscribe(ORG_ID, singles.append, invoice_id=created.id)
    await ctx.invoices.update_fields(ORG_ID, created.id, {"status": "paid"})
    collection_sub.close()
    single_sub.close()
    await ctx.invoices.delete(ORG_ID, created.id)

    assert [len(batch) for batch in lists] == [1, 1]
    assert lists[-1][0].status == "paid"
    assert [s.status for s in singles] == ["approved", "paid"]


@pytest.mark.asyncio
async def test_replace_overwrites_but_keeps_created_at(ctx, backend):
    created = await ctx.invoices.create(ORG_ID, _invoice())

    replacement = Invoice(invoice_number="INV-2024-017", vendor_name="Globex Europe", amount=10,
                          created_at=created.created_at)
    replaced = await ctx.invoices.replace(ORG_ID, created.id, replacement)

    node = backend.get(invoice_path(ORG_ID, created.id))
    assert replaced.vendor_name == "Globex Europe"
    assert replaced.created_at == created.created_at
    assert "attachments" not in node
    assert node["organizationId"] == ORG_ID


@pytest.mark.asyncio
@pytest.mark.parametrize("node", [{"invoiceNumber": "B-1", "amount": "not a number"}, "garbage"])
async def test_unreadable_invoice_raises_store_error(ctx, backend, node):
    backend.set(invoice_path(ORG_ID, "bad"), node)

    with pytest.raises(StoreError) as exc_info:
        await ctx.invoices.get(ORG_ID, "bad")

    assert exc_info.value.operation == "decode"
    assert exc_info.value.path == invoice_path(ORG_ID, "bad")


@pytest.mark.asyncio
async def test_failing_single_invoice_subscription_leaves_no_listener(ctx, backend):
    backend.set(invoice_path(ORG_ID, "bad"), {"invoiceNumber": "B-1", "status": "weird"})

    with pytest.raises(StoreError):
        await ctx.invoices.subscribe(ORG_ID, lambda invoice: None, invoice_id="bad")

    assert backend.listener_count == 0
